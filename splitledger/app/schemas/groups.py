from pydantic import BaseModel, Field
from typing import Dict, Optional, List
from datetime import datetime

class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    budgets: List[str] = []

class GroupMetadata(BaseModel):
    # user_id -> percentage, covering every member
    default_share: Dict[str, float] = {}
    default_currency: Optional[str] = None

class GroupUpdate(BaseModel):
    """Fields left out are not touched; budgets replaces the whole category list."""
    name: Optional[str] = Field(None, max_length=50)
    budgets: Optional[List[str]] = None
    default_share: Optional[Dict[str, float]] = None
    default_currency: Optional[str] = None

class MemberCreate(BaseModel):
    display_name: Optional[str] = None

class BudgetCategoryCreate(BaseModel):
    name: str = Field(min_length=1)

class MemberResponse(BaseModel):
    id: str
    display_name: Optional[str] = None
    group_id: Optional[str] = None

    class Config:
        from_attributes = True

class GroupResponse(BaseModel):
    id: str
    name: str
    budgets: List[str]
    metadata: Optional[GroupMetadata] = Field(None, validation_alias="group_metadata")
    created_at: datetime
    members: List[MemberResponse] = []

    class Config:
        from_attributes = True
