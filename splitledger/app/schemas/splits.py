from pydantic import BaseModel, Field
from typing import Optional, Dict, List
from datetime import datetime

class SplitRequest(BaseModel):
    amount: float = Field(gt=0)
    currency: str
    paid_by_shares: Dict[str, float]
    split_pct_shares: Dict[str, float]

class SplitTransfer(BaseModel):
    debtor_id: str
    creditor_id: str
    amount: float
    currency: str

class ExpenseCreate(SplitRequest):
    group_id: str
    description: str = Field(min_length=1, max_length=255)

class TransactionMetadata(BaseModel):
    paid_by_shares: Dict[str, float] = {}
    owed_amounts: Dict[str, float] = {}
    owed_to_amounts: Dict[str, float] = {}

class ExpenseResult(BaseModel):
    message: str
    transaction_id: str
    transfers: List[SplitTransfer] = []
    created: bool = True

class TransactionShareResponse(BaseModel):
    transaction_id: str
    user_id: str
    owed_to_user_id: str
    amount: float
    currency: str

    class Config:
        from_attributes = True

class TransactionResponse(BaseModel):
    id: str
    description: str
    amount: float
    currency: str
    group_id: str
    created_at: datetime
    metadata: Optional[TransactionMetadata] = None
    shares: List[TransactionShareResponse] = []
