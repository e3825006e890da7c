from typing import List
from datetime import date, datetime
from pydantic import BaseModel, Field

class BudgetEntryBase(BaseModel):
    name: str  # budget category
    description: str = Field(min_length=1, max_length=100)
    amount: float  # credit positive, debit negative
    currency: str

class BudgetEntryCreate(BudgetEntryBase):
    group_id: str

class BudgetEntryInDB(BudgetEntryBase):
    id: str
    group_id: str
    added_time: datetime

    class Config:
        from_attributes = True

class BudgetEntryResult(BaseModel):
    message: str
    entry_id: str
    created: bool = True

class BudgetTotalResponse(BaseModel):
    currency: str
    amount: float

class MonthlyAmount(BaseModel):
    currency: str
    amount: float

class MonthlyBudget(BaseModel):
    month: str
    year: int
    amounts: List[MonthlyAmount]

class AverageSpendData(BaseModel):
    currency: str
    average_monthly_spend: float
    total_spend: float
    months_analyzed: int

class AverageSpendPeriod(BaseModel):
    period_months: int
    averages: List[AverageSpendData]

class PeriodAnalyzed(BaseModel):
    start_date: date
    end_date: date

class BudgetMonthlyResponse(BaseModel):
    monthly_budgets: List[MonthlyBudget]
    average_monthly_spend: List[AverageSpendPeriod]
    period_analyzed: PeriodAnalyzed
