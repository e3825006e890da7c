from uuid import uuid4
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Column, String, Integer, DateTime, Float, Boolean, ForeignKey, JSON, Date, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)

# --- ENUMS ---

class ActionType(str, Enum):
    ADD_EXPENSE = "add_expense"
    ADD_BUDGET = "add_budget"

class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"

class BudgetEntryType(str, Enum):
    CREDIT = "Credit"
    DEBIT = "Debit"

# --- SQLALCHEMY MODELS ---

class Group(Base):
    __tablename__ = "groups"
    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(50), nullable=False)
    budgets = Column(JSON, nullable=False, default=list)  # budget category names usable by the group
    group_metadata = Column("metadata", JSON, nullable=True, default=dict)  # default_share, default_currency
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    members = relationship("User", back_populates="group")

class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    display_name = Column(String, nullable=True)
    group_id = Column(String, ForeignKey("groups.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    group = relationship("Group", back_populates="members")
    scheduled_actions = relationship("ScheduledAction", back_populates="user")

class Transaction(Base):
    """An expense as submitted. Never physically removed; ``deleted_at`` marks a reversal."""
    __tablename__ = "transactions"

    id = Column(String(100), primary_key=True, default=lambda: str(uuid4()))
    description = Column(String(255), nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(10), nullable=False)
    group_id = Column(String, ForeignKey("groups.id"), nullable=False)
    transaction_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    shares = relationship("TransactionShare", back_populates="transaction")

    __table_args__ = (
        Index("transactions_group_deleted_created_idx", "group_id", "deleted_at", "created_at"),
    )

class TransactionShare(Base):
    """One debtor -> creditor edge derived from a transaction."""
    __tablename__ = "transaction_shares"

    transaction_id = Column(String(100), ForeignKey("transactions.id"), primary_key=True)
    user_id = Column(String, primary_key=True)
    owed_to_user_id = Column(String, primary_key=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(10), nullable=False)
    group_id = Column(String, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    transaction = relationship("Transaction", back_populates="shares")

    __table_args__ = (
        Index("transaction_shares_balances_idx", "group_id", "deleted_at", "user_id", "owed_to_user_id", "currency"),
    )

class UserBalance(Base):
    """Materialized directed sum of non-deleted shares: what ``user_id`` owes ``owed_to_user_id``."""
    __tablename__ = "user_balances"

    group_id = Column(String, primary_key=True)
    user_id = Column(String, primary_key=True)
    owed_to_user_id = Column(String, primary_key=True)
    currency = Column(String(10), primary_key=True)
    balance = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, default=utcnow)

class BudgetEntry(Base):
    __tablename__ = "budget_entries"

    id = Column(String(100), primary_key=True, default=lambda: str(uuid4()))
    group_id = Column(String, ForeignKey("groups.id"), nullable=False)
    name = Column(String, nullable=False)  # budget category
    description = Column(String(100), nullable=False)
    amount = Column(Float, nullable=False)  # credit positive, debit negative
    currency = Column(String(10), nullable=False)
    added_time = Column(DateTime, default=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("budget_entries_monthly_idx", "group_id", "name", "deleted_at", "added_time"),
    )

class BudgetTotal(Base):
    """Materialized running sum of non-deleted budget entries per category and currency."""
    __tablename__ = "budget_totals"

    group_id = Column(String, primary_key=True)
    name = Column(String, primary_key=True)
    currency = Column(String(10), primary_key=True)
    total_amount = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, default=utcnow)

class ScheduledAction(Base):
    __tablename__ = "scheduled_actions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    action_type = Column(String, nullable=False)
    frequency = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    action_data = Column(JSON, nullable=False)
    last_executed_at = Column(DateTime, nullable=True)
    next_execution_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="scheduled_actions")
    history = relationship(
        "ScheduledActionHistory", back_populates="scheduled_action", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("scheduled_actions_active_next_idx", "is_active", "next_execution_date"),
    )

class ScheduledActionHistory(Base):
    """Append-only record of one execution attempt."""
    __tablename__ = "scheduled_action_history"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    scheduled_action_id = Column(String, ForeignKey("scheduled_actions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    action_type = Column(String, nullable=False)
    execution_date = Column(Date, nullable=False)
    executed_at = Column(DateTime, default=utcnow)
    execution_status = Column(String, nullable=False)
    action_data = Column(JSON, nullable=False)
    result_data = Column(JSON, nullable=True)
    error_message = Column(String, nullable=True)
    execution_duration_ms = Column(Integer, nullable=True)

    # Relationships
    scheduled_action = relationship("ScheduledAction", back_populates="history")

    __table_args__ = (
        Index("scheduled_action_history_action_date_idx", "scheduled_action_id", "execution_date", "execution_status"),
    )
