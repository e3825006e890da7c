from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Dict, Any

from splitledger.app.config import get_settings
from splitledger.app.database import get_db_session
from splitledger.app.schemas.budgets import (
    BudgetEntryCreate, BudgetEntryInDB, BudgetEntryResult, BudgetMonthlyResponse, BudgetTotalResponse
)
from splitledger.app.services.budget_service import (
    create_budget_entry, delete_budget_entry, get_budget_totals, get_monthly_budget_report,
    list_budget_entries, rebuild_budget_totals
)

router = APIRouter()

@router.post("/", response_model=BudgetEntryResult)
def create_budget_entry_endpoint(
    entry: BudgetEntryCreate,
    db: Session = Depends(get_db_session)
):
    """
    Add a credit (positive) or debit (negative) entry to a budget category
    """
    return create_budget_entry(db, entry)

@router.delete("/{entry_id}", response_model=Dict[str, Any])
def delete_budget_entry_endpoint(
    entry_id: str,
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Delete a budget entry and take it out of the category total
    """
    return delete_budget_entry(db, group_id, entry_id)

@router.get("/", response_model=List[BudgetEntryInDB])
def list_budget_entries_endpoint(
    group_id: str = Query(..., description="ID of the group"),
    name: str = Query(..., description="Budget category"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db_session)
):
    """
    Get the entries of a budget category, newest first
    """
    return list_budget_entries(db, group_id, name, limit, offset)

@router.get("/totals", response_model=List[BudgetTotalResponse])
def get_budget_totals_endpoint(
    group_id: str = Query(..., description="ID of the group"),
    name: str = Query(..., description="Budget category"),
    db: Session = Depends(get_db_session)
):
    """
    Get the running total of a budget category, one per currency
    """
    return get_budget_totals(db, group_id, name)

@router.get("/monthly", response_model=BudgetMonthlyResponse)
def get_monthly_budget_endpoint(
    group_id: str = Query(..., description="ID of the group"),
    name: str = Query(..., description="Budget category"),
    db: Session = Depends(get_db_session)
):
    """
    Get monthly spend for a budget category along with rolling monthly averages
    """
    return get_monthly_budget_report(db, group_id, name)

@router.post("/totals/rebuild", response_model=Dict[str, Any])
def rebuild_budget_totals_endpoint(
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Recompute every budget total of a group from its entries

    - Returns 409 if the group is being written and the wait times out
    """
    rows = rebuild_budget_totals(db, group_id, timeout=get_settings().rebuild_lock_timeout_seconds)
    return {"group_id": group_id, "rows": rows}
