from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class UserBalanceResponse(BaseModel):
    group_id: str
    user_id: str
    owed_to_user_id: str
    currency: str
    balance: float
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class RebuildResult(BaseModel):
    group_id: str
    rows: int
