from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from splitledger.app.database import get_db_session
from splitledger.app.schemas.groups import (
    BudgetCategoryCreate, GroupCreate, GroupResponse, GroupUpdate, MemberCreate, MemberResponse
)
from splitledger.app.services.group_service import (
    add_budget_category, add_member, create_group, get_group, remove_budget_category, update_group
)

router = APIRouter()

@router.post("/", response_model=GroupResponse)
def create_group_route(group_data: GroupCreate, db: Session = Depends(get_db_session)):
    """
    Create a new group.

    - Optionally seeds the budget categories the group can post entries to
    """
    return create_group(db, group_data)

@router.get("/{group_id}", response_model=GroupResponse)
def get_group_route(group_id: str, db: Session = Depends(get_db_session)):
    """
    Get a group with its members and budget categories.
    """
    return get_group(db, group_id)

@router.put("/{group_id}", response_model=GroupResponse)
def update_group_route(group_id: str, update_data: GroupUpdate, db: Session = Depends(get_db_session)):
    """
    Update a group's name, budget categories or default split settings.

    - default_share must give every member a non-negative percentage totalling 100
    - Returns 400 if nothing is provided or a field fails validation
    """
    return update_group(db, group_id, update_data)

@router.post("/{group_id}/members", response_model=MemberResponse)
def add_member_route(group_id: str, member_data: MemberCreate, db: Session = Depends(get_db_session)):
    """
    Add a new member to a group.
    """
    return add_member(db, group_id, member_data)

@router.post("/{group_id}/budgets", response_model=GroupResponse)
def add_budget_category_route(group_id: str, category: BudgetCategoryCreate, db: Session = Depends(get_db_session)):
    """
    Add a budget category to a group.

    - Returns 400 if the category already exists
    """
    return add_budget_category(db, group_id, category)

@router.delete("/{group_id}/budgets/{name}", response_model=GroupResponse)
def remove_budget_category_route(group_id: str, name: str, db: Session = Depends(get_db_session)):
    """
    Remove a budget category that has no live entries.
    """
    return remove_budget_category(db, group_id, name)
