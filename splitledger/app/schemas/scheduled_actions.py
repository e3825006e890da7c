from pydantic import BaseModel, Field, ValidationError, model_validator
from typing import Optional, Dict, Any, List, Literal, Union
from datetime import date, datetime

from splitledger.app.models.models import ActionType, Frequency, ExecutionStatus, BudgetEntryType

class AddExpenseActionData(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    amount: float = Field(gt=0)
    currency: str
    paid_by_user_id: Optional[str] = None
    paid_by_shares: Optional[Dict[str, float]] = None
    split_pct_shares: Dict[str, float]

    @model_validator(mode="after")
    def check_payer(self):
        if (self.paid_by_user_id is None) == (self.paid_by_shares is None):
            raise ValueError("Exactly one of paid_by_user_id or paid_by_shares must be provided")
        return self

    def resolved_paid_by_shares(self) -> Dict[str, float]:
        """A single payer fronts the whole amount."""
        if self.paid_by_shares is not None:
            return dict(self.paid_by_shares)
        return {self.paid_by_user_id: self.amount}

    def referenced_user_ids(self) -> List[str]:
        return list(dict.fromkeys([*self.resolved_paid_by_shares(), *self.split_pct_shares]))

class AddBudgetActionData(BaseModel):
    description: str = Field(min_length=1, max_length=100)
    amount: float = Field(gt=0)
    currency: str
    budget_name: str
    type: BudgetEntryType

    def signed_amount(self) -> float:
        return self.amount if self.type == BudgetEntryType.CREDIT else -self.amount

ActionData = Union[AddExpenseActionData, AddBudgetActionData]

ACTION_DATA_MODELS = {
    ActionType.ADD_EXPENSE.value: AddExpenseActionData,
    ActionType.ADD_BUDGET.value: AddBudgetActionData,
}

def parse_action_data(action_type: str, raw: Any) -> ActionData:
    """Validate a stored or submitted payload into the model selected by ``action_type``."""
    model = ACTION_DATA_MODELS.get(ActionType(action_type).value)
    if isinstance(raw, model):
        return raw
    return model.model_validate(raw)

def _coerce_action_data(values: Any) -> Any:
    if not isinstance(values, dict):
        return values
    action_type = values.get("action_type")
    raw = values.get("action_data")
    if action_type is None or raw is None:
        return values
    try:
        action_type = ActionType(action_type).value
    except ValueError:
        return values  # the action_type field reports the error
    try:
        parsed = parse_action_data(action_type, raw)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "action_data"
        raise ValueError(f"Invalid {action_type} payload: {field}: {error['msg']}")
    return {**values, "action_data": parsed}

class ScheduledActionCreate(BaseModel):
    user_id: str
    action_type: ActionType
    frequency: Frequency
    start_date: date
    action_data: ActionData

    @model_validator(mode="before")
    @classmethod
    def select_action_data_model(cls, values):
        return _coerce_action_data(values)

class ScheduledActionUpdate(BaseModel):
    is_active: Optional[bool] = None
    frequency: Optional[Frequency] = None
    start_date: Optional[date] = None
    action_data: Optional[Dict[str, Any]] = None
    # Explicit override, wins over skip_next and frequency/start_date rescheduling
    next_execution_date: Optional[date] = None
    skip_next: Optional[bool] = None

class ScheduledActionResponse(BaseModel):
    id: str
    user_id: str
    action_type: ActionType
    frequency: Frequency
    start_date: date
    is_active: bool
    action_data: Dict[str, Any]
    last_executed_at: Optional[datetime] = None
    next_execution_date: date
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ScheduledActionListResponse(BaseModel):
    scheduled_actions: List[ScheduledActionResponse]
    total_count: int
    has_more: bool

class ScheduledActionHistoryResponse(BaseModel):
    id: str
    scheduled_action_id: str
    user_id: str
    action_type: ActionType
    execution_date: date
    executed_at: datetime
    execution_status: ExecutionStatus
    action_data: Dict[str, Any]
    result_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    execution_duration_ms: Optional[int] = None

    class Config:
        from_attributes = True

class ScheduledActionHistoryListResponse(BaseModel):
    history: List[ScheduledActionHistoryResponse]
    total_count: int
    has_more: bool

class ActionExecutionResult(BaseModel):
    action_id: str
    status: Literal["success", "failed", "skipped"]
    execution_date: date
    result_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    execution_duration_ms: int = 0

class SchedulerRunResult(BaseModel):
    run_date: date
    total_processed: int
    succeeded: int
    failed: int
    skipped: int
    results: List[ActionExecutionResult]
