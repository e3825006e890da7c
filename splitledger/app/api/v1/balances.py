from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Dict

from splitledger.app.config import get_settings
from splitledger.app.database import get_db_session
from splitledger.app.schemas.balances import RebuildResult, UserBalanceResponse
from splitledger.app.services.balance_service import get_raw_balances, get_user_balances, rebuild_balances

router = APIRouter()

@router.get("/", response_model=Dict[str, Dict[str, float]])
def get_user_balances_endpoint(
    group_id: str = Query(..., description="ID of the group"),
    user_id: str = Query(..., description="ID of the user"),
    db: Session = Depends(get_db_session)
):
    """
    Net balances of a user against every other member, per currency.

    - Positive: the other member owes this user
    - Negative: this user owes the other member
    """
    return get_user_balances(db, group_id, user_id)

@router.get("/raw", response_model=List[UserBalanceResponse])
def get_raw_balances_endpoint(
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Directed balance rows as stored, without netting.
    """
    return get_raw_balances(db, group_id)

@router.post("/rebuild", response_model=RebuildResult)
def rebuild_balances_endpoint(
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Recompute a group's balances from its transaction shares.

    - Returns 409 if the group's balances are being written and the wait times out
    """
    rows = rebuild_balances(db, group_id, timeout=get_settings().rebuild_lock_timeout_seconds)
    return RebuildResult(group_id=group_id, rows=rows)
