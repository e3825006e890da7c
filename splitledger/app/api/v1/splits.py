from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Dict, Any

from splitledger.app.database import get_db_session
from splitledger.app.schemas.splits import (
    ExpenseCreate, ExpenseResult, SplitRequest, SplitTransfer, TransactionResponse
)
from splitledger.app.services.split_service import (
    apply_expense, compute_split, delete_expense, get_group_transactions,
    validate_split_amounts
)

router = APIRouter()

@router.post("/compute", response_model=List[SplitTransfer])
def compute_split_endpoint(split_request: SplitRequest):
    """
    Preview the transfers an expense would produce, without writing anything.

    - Currency must be supported, percentages must total 100 and payments must total the amount
    """
    validate_split_amounts(
        split_request.amount,
        split_request.paid_by_shares,
        split_request.split_pct_shares,
        split_request.currency,
    )
    return compute_split(
        split_request.amount,
        split_request.paid_by_shares,
        split_request.split_pct_shares,
        split_request.currency,
    )

@router.post("/", response_model=ExpenseResult)
def create_expense_endpoint(expense: ExpenseCreate, db: Session = Depends(get_db_session)):
    """
    Record a shared expense.

    - Splits it into debtor -> creditor shares
    - Adds the shares to the group's running balances in the same commit
    """
    return apply_expense(db, expense)

@router.delete("/{transaction_id}", response_model=Dict[str, Any])
def delete_expense_endpoint(
    transaction_id: str,
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Delete an expense and reverse its balance contributions.

    - Returns 404 if the transaction is missing, already deleted or in another group
    """
    return delete_expense(db, group_id, transaction_id)

@router.get("/", response_model=List[TransactionResponse])
def list_expenses_endpoint(
    group_id: str = Query(..., description="ID of the group"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db_session)
):
    """
    List a group's expenses with their share rows, newest first.
    """
    return get_group_transactions(db, group_id, limit, offset)
