import logging
import re
from typing import Dict, List

from sqlalchemy.orm import Session

from splitledger.app.config import get_settings
from splitledger.app.exceptions import NotFoundError, ValidationError
from splitledger.app.models.models import BudgetEntry, Group, User
from splitledger.app.schemas.groups import BudgetCategoryCreate, GroupCreate, GroupUpdate, MemberCreate
from splitledger.app.services.split_service import is_valid_currency

logger = logging.getLogger(__name__)

BUDGET_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-_]+$")
SHARE_TOLERANCE = 0.001


def create_group(db: Session, group_data: GroupCreate) -> Group:
    """Service function to create a new group with its initial budget categories"""
    group = Group(name=group_data.name, budgets=list(dict.fromkeys(group_data.budgets)))
    db.add(group)
    db.commit()
    db.refresh(group)

    logger.info("Created group %s", group.id)
    return group


def get_group(db: Session, group_id: str) -> Group:
    group = db.query(Group).filter(Group.id == group_id).first()
    if not group:
        raise NotFoundError(f"Group with id {group_id} not found")
    return group


def add_member(db: Session, group_id: str, member_data: MemberCreate) -> User:
    """Create a user inside an existing group"""
    group = get_group(db, group_id)

    user = User(display_name=member_data.display_name, group_id=group.id)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_budget_category(db: Session, group_id: str, category: BudgetCategoryCreate) -> Group:
    group = get_group(db, group_id)

    if category.name in (group.budgets or []):
        raise ValidationError(f"Budget '{category.name}' already exists in group {group_id}")

    # JSON columns only see reassignment, not in-place appends
    group.budgets = [*(group.budgets or []), category.name]
    db.commit()
    db.refresh(group)
    return group


def _live_entry_count(db: Session, group_id: str, name: str) -> int:
    return db.query(BudgetEntry).filter(
        BudgetEntry.group_id == group_id,
        BudgetEntry.name == name,
        BudgetEntry.deleted_at.is_(None),
    ).count()


def remove_budget_category(db: Session, group_id: str, name: str) -> Group:
    """
    Remove a budget category from a group.

    A category that still has live entries is kept, otherwise its entries and totals
    would be orphaned.
    """
    group = get_group(db, group_id)

    if name not in (group.budgets or []):
        raise NotFoundError(f"Budget '{name}' not found in group {group_id}")

    live_entries = _live_entry_count(db, group_id, name)
    if live_entries:
        raise ValidationError(f"Budget '{name}' still has {live_entries} entries")

    group.budgets = [budget for budget in group.budgets if budget != name]
    db.commit()
    db.refresh(group)
    return group


def _validate_default_share(group: Group, default_share: Dict[str, float]):
    member_ids = {member.id for member in group.members}
    if not default_share or not member_ids.issubset(default_share):
        raise ValidationError("All group members must have a default share percentage")
    if not set(default_share).issubset(member_ids):
        raise ValidationError("Invalid user IDs: users not in group")
    if any(pct < 0 for pct in default_share.values()):
        raise ValidationError("Default share percentages must be positive")
    if abs(sum(default_share.values()) - 100) > SHARE_TOLERANCE:
        raise ValidationError("Default share percentages must add up to 100%")


def _validate_budget_names(db: Session, group: Group, names: List[str]) -> List[str]:
    for name in names:
        if not BUDGET_NAME_PATTERN.match(name):
            raise ValidationError("Budget names can only contain letters, numbers, spaces, hyphens, and underscores")

    budgets = list(dict.fromkeys(names))
    for dropped in (group.budgets or []):
        if dropped not in budgets and _live_entry_count(db, group.id, dropped):
            raise ValidationError(f"Budget '{dropped}' still has entries and cannot be removed")
    return budgets


def update_group(db: Session, group_id: str, update_data: GroupUpdate) -> Group:
    """
    Rename a group, replace its budget categories or change its default split settings.

    Everything is validated before anything is written:

    - ``name`` is trimmed and must not be empty
    - ``budgets`` names may hold letters, digits, spaces, hyphens and underscores;
      duplicates are dropped, and a category that still has live entries cannot be left out
    - ``default_share`` must cover exactly the group's members, be non-negative and total 100
    - ``default_currency`` must be a supported currency

    When the metadata is first written without a currency, the configured default is filled in.
    """
    group = get_group(db, group_id)
    changes = update_data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No changes provided")

    if "default_currency" in changes and not is_valid_currency(changes["default_currency"]):
        raise ValidationError("Invalid currency code")

    if "default_share" in changes:
        _validate_default_share(group, changes["default_share"])

    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise ValidationError("Group name cannot be empty")

    if "budgets" in changes:
        changes["budgets"] = _validate_budget_names(db, group, changes["budgets"])

    if "name" in changes:
        group.name = changes["name"]
    if "budgets" in changes:
        group.budgets = changes["budgets"]
    if "default_share" in changes or "default_currency" in changes:
        metadata = dict(group.group_metadata or {})
        metadata.update({key: changes[key] for key in ("default_share", "default_currency") if key in changes})
        if not metadata.get("default_currency"):
            metadata["default_currency"] = get_settings().default_currency
        group.group_metadata = metadata

    db.commit()
    db.refresh(group)

    logger.info("Updated group %s (%s)", group_id, ", ".join(sorted(changes)))
    return group
