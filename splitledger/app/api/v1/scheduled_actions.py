from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Dict, Any, Optional

from splitledger.app.database import get_db_session
from splitledger.app.models.models import ExecutionStatus
from splitledger.app.schemas.scheduled_actions import (
    ActionExecutionResult,
    ScheduledActionCreate,
    ScheduledActionHistoryListResponse,
    ScheduledActionHistoryResponse,
    ScheduledActionListResponse,
    ScheduledActionResponse,
    ScheduledActionUpdate,
    SchedulerRunResult,
)
from splitledger.app.services.scheduled_action_service import (
    create_scheduled_action,
    delete_scheduled_action,
    get_action_history,
    get_history_entry,
    get_scheduled_action,
    list_scheduled_actions,
    run_due_scheduled_actions,
    run_scheduled_action_now,
    update_scheduled_action,
)

router = APIRouter()

@router.post("/", response_model=ScheduledActionResponse)
def create_action(
    action_data: ScheduledActionCreate,
    db: Session = Depends(get_db_session)
):
    """
    Create a recurring expense or budget entry.

    - Validates the payload against the user's group
    - Schedules the first run from the start date
    """
    return create_scheduled_action(db, action_data)

@router.get("/", response_model=ScheduledActionListResponse)
def list_actions(
    group_id: str = Query(..., description="ID of the group"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db_session)
):
    """
    List the group's scheduled actions, newest first.
    """
    return list_scheduled_actions(db, group_id, limit, offset)

# Registered before /{action_id} so "history" is not taken for an id
@router.get("/history", response_model=ScheduledActionHistoryListResponse)
def list_history(
    group_id: str = Query(..., description="ID of the group"),
    scheduled_action_id: Optional[str] = Query(None, description="Only runs of this action"),
    execution_status: Optional[ExecutionStatus] = Query(None, description="success or failed"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db_session)
):
    """
    Execution history for the group's scheduled actions, most recent first.
    """
    return get_action_history(db, group_id, scheduled_action_id, execution_status, limit, offset)

@router.get("/history/{history_id}", response_model=ScheduledActionHistoryResponse)
def get_history(
    history_id: str,
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Get a single execution record.
    """
    return get_history_entry(db, history_id, group_id)

@router.post("/run-due", response_model=SchedulerRunResult)
def run_due(db: Session = Depends(get_db_session)):
    """
    Run every active action that is due today.

    - A failing action is recorded and does not stop the others
    """
    return run_due_scheduled_actions(db)

@router.get("/{action_id}", response_model=ScheduledActionResponse)
def get_action(
    action_id: str,
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Get a scheduled action.
    """
    return get_scheduled_action(db, action_id, group_id)

@router.put("/{action_id}", response_model=ScheduledActionResponse)
def update_action(
    action_id: str,
    update_data: ScheduledActionUpdate,
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Edit or pause/resume a scheduled action.

    - A new frequency or start date moves the next execution date
    """
    return update_scheduled_action(db, action_id, group_id, update_data)

@router.delete("/{action_id}", response_model=Dict[str, Any])
def delete_action(
    action_id: str,
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Delete a scheduled action together with its history.
    """
    return delete_scheduled_action(db, action_id, group_id)

@router.post("/{action_id}/run-now", response_model=ActionExecutionResult)
def run_now(
    action_id: str,
    group_id: str = Query(..., description="ID of the group"),
    db: Session = Depends(get_db_session)
):
    """
    Run a scheduled action immediately for its pending occurrence.
    """
    return run_scheduled_action_now(db, action_id, group_id)
