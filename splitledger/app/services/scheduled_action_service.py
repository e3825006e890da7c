import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from splitledger.app.database import atomic
from splitledger.app.exceptions import ExecutionError, NotFoundError, ValidationError
from splitledger.app.models.models import (
    ActionType, ExecutionStatus, Group, ScheduledAction, ScheduledActionHistory, User
)
from splitledger.app.schemas.budgets import BudgetEntryCreate
from splitledger.app.schemas.scheduled_actions import (
    ActionExecutionResult, AddExpenseActionData, ActionData,
    ScheduledActionCreate, ScheduledActionUpdate, SchedulerRunResult, parse_action_data
)
from splitledger.app.schemas.splits import ExpenseCreate
from splitledger.app.services.balance_service import group_write_lock
from splitledger.app.services.budget_service import stage_budget_entry
from splitledger.app.services.recurrence import calculate_next_execution_date, utc_today
from splitledger.app.services.split_service import is_valid_currency, stage_expense

logger = logging.getLogger(__name__)


def transaction_id_for(action_id: str, execution_date: date) -> str:
    return f"tx_{action_id}_{execution_date.isoformat()}"


def budget_entry_id_for(action_id: str, execution_date: date) -> str:
    return f"bg_{action_id}_{execution_date.isoformat()}"


# --- Validation ---

def _get_user_group(db: Session, user_id: str) -> Tuple[User, Group]:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"User with id {user_id} not found")
    if not user.group_id:
        raise ValidationError("User not in a group")
    return user, user.group


def validate_action_data(group: Group, action_data: ActionData):
    """Check a payload against the group it will run in"""
    if not is_valid_currency(action_data.currency):
        raise ValidationError(f"Invalid currency: {action_data.currency}")

    if isinstance(action_data, AddExpenseActionData):
        member_ids = {member.id for member in group.members}
        for user_id in action_data.referenced_user_ids():
            if user_id not in member_ids:
                raise ValidationError(f"Invalid user {user_id} - not in group")
    elif action_data.budget_name not in (group.budgets or []):
        raise ValidationError(f"Invalid budget name '{action_data.budget_name}' - not available in group")


def _parse_or_reject(action_type: str, raw: Any) -> ActionData:
    try:
        return parse_action_data(action_type, raw)
    except PydanticValidationError as e:
        logger.debug("Rejected %s payload: %s", action_type, e.errors())
        raise ValidationError(f"Invalid action data: {e.errors()[0]['msg']}")


# --- CRUD ---

def create_scheduled_action(db: Session, action_data: ScheduledActionCreate, today: Optional[date] = None) -> ScheduledAction:
    """Create a recurring action for a user; its first run is computed from the start date"""
    _, group = _get_user_group(db, action_data.user_id)
    payload = _parse_or_reject(action_data.action_type.value, action_data.action_data)
    validate_action_data(group, payload)

    action = ScheduledAction(
        user_id=action_data.user_id,
        action_type=action_data.action_type.value,
        frequency=action_data.frequency.value,
        start_date=action_data.start_date,
        is_active=True,
        action_data=payload.model_dump(mode="json"),
        next_execution_date=calculate_next_execution_date(action_data.start_date, action_data.frequency, today),
    )
    db.add(action)
    db.commit()
    db.refresh(action)

    logger.info("Created scheduled action %s (%s, %s)", action.id, action.action_type, action.frequency)
    return action


def _group_user_ids(db: Session, group_id: str) -> List[str]:
    return [user_id for (user_id,) in db.query(User.id).filter(User.group_id == group_id).all()]


def get_scheduled_action(db: Session, action_id: str, group_id: str) -> ScheduledAction:
    action = db.query(ScheduledAction).filter(
        ScheduledAction.id == action_id,
        ScheduledAction.user_id.in_(_group_user_ids(db, group_id)),
    ).first()
    if not action:
        raise NotFoundError("Scheduled action not found")
    return action


def list_scheduled_actions(db: Session, group_id: str, limit: int = 10, offset: int = 0) -> Dict[str, Any]:
    query = db.query(ScheduledAction).filter(ScheduledAction.user_id.in_(_group_user_ids(db, group_id)))
    total_count = query.count()
    actions = query.order_by(ScheduledAction.created_at.desc()).offset(offset).limit(limit).all()
    return {
        "scheduled_actions": actions,
        "total_count": total_count,
        "has_more": offset + limit < total_count,
    }


def update_scheduled_action(
    db: Session,
    action_id: str,
    group_id: str,
    update_data: ScheduledActionUpdate,
    today: Optional[date] = None,
) -> ScheduledAction:
    """
    Edit or toggle a scheduled action.

    The next execution date is, in order of precedence:

    - ``next_execution_date`` when given, taken as-is
    - with ``skip_next``, the occurrence after the current next execution date
    - recomputed from the start date when the frequency or start date changes

    Toggling ``is_active`` alone leaves it where it is.
    """
    action = get_scheduled_action(db, action_id, group_id)
    changes = update_data.model_dump(exclude_unset=True)

    if changes.get("action_data") is not None:
        payload = _parse_or_reject(action.action_type, changes["action_data"])
        validate_action_data(action.user.group, payload)
        action.action_data = payload.model_dump(mode="json")

    if changes.get("is_active") is not None:
        action.is_active = changes["is_active"]

    reschedule = False
    if changes.get("frequency") is not None:
        action.frequency = update_data.frequency.value
        reschedule = True
    if changes.get("start_date") is not None:
        action.start_date = update_data.start_date
        reschedule = True
    if changes.get("next_execution_date") is not None:
        action.next_execution_date = update_data.next_execution_date
    elif changes.get("skip_next"):
        current_next = action.next_execution_date
        # Stay on the start date's series so month-end clamping does not drift
        base = action.start_date if action.start_date <= current_next else current_next
        action.next_execution_date = calculate_next_execution_date(base, action.frequency, current_next)
    elif reschedule:
        action.next_execution_date = calculate_next_execution_date(action.start_date, action.frequency, today)

    db.commit()
    db.refresh(action)
    return action


def delete_scheduled_action(db: Session, action_id: str, group_id: str) -> Dict[str, Any]:
    action = get_scheduled_action(db, action_id, group_id)
    db.delete(action)
    db.commit()
    logger.info("Deleted scheduled action %s", action_id)
    return {"message": "Scheduled action deleted successfully", "id": action_id}


def get_action_history(
    db: Session,
    group_id: str,
    scheduled_action_id: Optional[str] = None,
    execution_status: Optional[ExecutionStatus] = None,
    limit: int = 10,
    offset: int = 0,
) -> Dict[str, Any]:
    query = db.query(ScheduledActionHistory).filter(
        ScheduledActionHistory.user_id.in_(_group_user_ids(db, group_id))
    )
    if scheduled_action_id:
        query = query.filter(ScheduledActionHistory.scheduled_action_id == scheduled_action_id)
    if execution_status:
        query = query.filter(ScheduledActionHistory.execution_status == ExecutionStatus(execution_status).value)

    total_count = query.count()
    history = query.order_by(ScheduledActionHistory.executed_at.desc()).offset(offset).limit(limit).all()
    return {
        "history": history,
        "total_count": total_count,
        "has_more": offset + limit < total_count,
    }


def get_history_entry(db: Session, history_id: str, group_id: str) -> ScheduledActionHistory:
    entry = db.query(ScheduledActionHistory).filter(
        ScheduledActionHistory.id == history_id,
        ScheduledActionHistory.user_id.in_(_group_user_ids(db, group_id)),
    ).first()
    if not entry:
        raise NotFoundError("History entry not found")
    return entry


# --- Execution ---

def get_due_actions(db: Session, today: date) -> List[ScheduledAction]:
    return db.query(ScheduledAction).filter(
        ScheduledAction.is_active == True,
        ScheduledAction.next_execution_date <= today,
    ).order_by(ScheduledAction.next_execution_date, ScheduledAction.id).all()


def already_succeeded(db: Session, action_id: str, execution_date: date) -> bool:
    return db.query(ScheduledActionHistory).filter(
        ScheduledActionHistory.scheduled_action_id == action_id,
        ScheduledActionHistory.execution_date == execution_date,
        ScheduledActionHistory.execution_status == ExecutionStatus.SUCCESS.value,
    ).first() is not None


def _stage_action(db: Session, action: ScheduledAction, group_id: str, execution_date: date) -> Dict[str, Any]:
    """Stage the downstream writes of one action and return its result data."""
    payload = parse_action_data(action.action_type, action.action_data)

    if action.action_type == ActionType.ADD_EXPENSE.value:
        expense = ExpenseCreate(
            group_id=group_id,
            description=payload.description,
            amount=payload.amount,
            currency=payload.currency,
            paid_by_shares=payload.resolved_paid_by_shares(),
            split_pct_shares=payload.split_pct_shares,
        )
        result = stage_expense(db, expense, transaction_id_for(action.id, execution_date))
        return {"message": result.message, "transaction_id": result.transaction_id}

    if action.action_type == ActionType.ADD_BUDGET.value:
        entry = BudgetEntryCreate(
            group_id=group_id,
            name=payload.budget_name,
            description=payload.description,
            amount=payload.signed_amount(),
            currency=payload.currency,
        )
        result = stage_budget_entry(db, entry, budget_entry_id_for(action.id, execution_date))
        return {"message": result.message, "budget_entry_id": result.entry_id}

    raise ExecutionError(f"Unknown action type: {action.action_type}")


def _advance_past(db: Session, action: ScheduledAction, execution_date: date):
    """Move a still-pending schedule past an occurrence that already ran."""
    if action.next_execution_date > execution_date:
        return
    with atomic(db):
        action.next_execution_date = calculate_next_execution_date(
            action.start_date, action.frequency, execution_date
        )


def _record_failure(
    db: Session,
    action_id: str,
    user_id: str,
    action_type: str,
    action_data: Dict[str, Any],
    execution_date: date,
    error_message: str,
    duration_ms: int,
):
    with atomic(db):
        db.add(ScheduledActionHistory(
            scheduled_action_id=action_id,
            user_id=user_id,
            action_type=action_type,
            execution_date=execution_date,
            executed_at=datetime.now(timezone.utc),
            execution_status=ExecutionStatus.FAILED.value,
            action_data=action_data,
            error_message=error_message,
            execution_duration_ms=duration_ms,
        ))


def execute_scheduled_action(
    db: Session,
    action: ScheduledAction,
    execution_date: date,
    now: Optional[datetime] = None,
) -> ActionExecutionResult:
    """
    Run one scheduled action for ``execution_date`` and record the attempt.

    The downstream writes, the success history row and the action's bookkeeping
    (``last_executed_at``, ``next_execution_date``) commit as one unit. On any failure
    those writes are rolled back, a failed history row is committed on its own and
    ``next_execution_date`` is left unchanged so the next pass retries.

    An occurrence that already succeeded is skipped, but the schedule is still moved past it.

    Never raises: failures are returned and recorded.
    """
    # Plain values so the failure path doesn't touch expired attributes after a rollback
    action_id = action.id
    user_id = action.user_id
    action_type = action.action_type
    action_data = dict(action.action_data or {})

    started = time.perf_counter()
    try:
        if already_succeeded(db, action_id, execution_date):
            _advance_past(db, action, execution_date)
            logger.info("Scheduled action %s already executed for %s, skipping", action_id, execution_date)
            return ActionExecutionResult(action_id=action_id, status="skipped", execution_date=execution_date)

        user = db.query(User).filter(User.id == user_id).first()
        if not user or not user.group_id:
            raise ExecutionError("User groupid is required")
        group_id = user.group_id

        with group_write_lock(group_id):
            with atomic(db):
                result_data = _stage_action(db, action, group_id, execution_date)
                duration_ms = int((time.perf_counter() - started) * 1000)

                executed_at = now or datetime.now(timezone.utc)
                action.last_executed_at = executed_at
                action.next_execution_date = calculate_next_execution_date(
                    action.start_date, action.frequency, execution_date
                )
                db.add(ScheduledActionHistory(
                    scheduled_action_id=action_id,
                    user_id=user_id,
                    action_type=action_type,
                    execution_date=execution_date,
                    executed_at=executed_at,
                    execution_status=ExecutionStatus.SUCCESS.value,
                    action_data=action_data,
                    result_data=result_data,
                    execution_duration_ms=duration_ms,
                ))
    except Exception as e:
        duration_ms = int((time.perf_counter() - started) * 1000)
        error_message = getattr(e, "detail", None) or str(e) or e.__class__.__name__
        logger.warning("Scheduled action %s failed for %s: %s", action_id, execution_date, error_message)
        try:
            _record_failure(db, action_id, user_id, action_type, action_data, execution_date, error_message, duration_ms)
        except Exception:
            logger.exception("Could not record failure of scheduled action %s for %s", action_id, execution_date)
        return ActionExecutionResult(
            action_id=action_id,
            status="failed",
            execution_date=execution_date,
            error_message=error_message,
            execution_duration_ms=duration_ms,
        )

    logger.info("Scheduled action %s executed for %s in %d ms", action_id, execution_date, duration_ms)
    return ActionExecutionResult(
        action_id=action_id,
        status="success",
        execution_date=execution_date,
        result_data=result_data,
        execution_duration_ms=duration_ms,
    )


def run_due_scheduled_actions(db: Session, today: Optional[date] = None) -> SchedulerRunResult:
    """
    Execute every active action whose next execution date has arrived.

    Actions run one after another, each isolated from the others' failures.
    """
    today = today or utc_today()
    due_ids = [action.id for action in get_due_actions(db, today)]
    logger.info("Found %d due scheduled actions for %s", len(due_ids), today)

    results = []
    for action_id in due_ids:
        action = db.query(ScheduledAction).filter(ScheduledAction.id == action_id).first()
        if action is None:
            continue  # deleted while the pass was running
        results.append(execute_scheduled_action(db, action, today))

    return SchedulerRunResult(
        run_date=today,
        total_processed=len(results),
        succeeded=sum(1 for r in results if r.status == "success"),
        failed=sum(1 for r in results if r.status == "failed"),
        skipped=sum(1 for r in results if r.status == "skipped"),
        results=results,
    )


def run_scheduled_action_now(db: Session, action_id: str, group_id: str) -> ActionExecutionResult:
    """Execute an action immediately for its pending occurrence (its next execution date)."""
    action = get_scheduled_action(db, action_id, group_id)
    return execute_scheduled_action(db, action, action.next_execution_date)
