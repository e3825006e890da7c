import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from splitledger.app.config import get_settings
from splitledger.app.database import atomic
from splitledger.app.exceptions import NotFoundError, ValidationError
from splitledger.app.models.models import Group, Transaction, TransactionShare
from splitledger.app.schemas.splits import ExpenseCreate, ExpenseResult, SplitTransfer, TransactionMetadata
from splitledger.app.services.balance_service import apply_transfers, group_write_lock, shares_to_transfers

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01
NEAR_ZERO = 0.001


def is_valid_currency(currency: str) -> bool:
    return currency in get_settings().supported_currencies


def validate_split_percentages(split_pct_shares: Dict[str, float]) -> bool:
    total_pct = sum(split_pct_shares.values())
    return abs(total_pct - 100) < AMOUNT_TOLERANCE


def validate_paid_amounts(paid_by_shares: Dict[str, float], total_amount: float) -> bool:
    total_paid = sum(paid_by_shares.values())
    return abs(total_paid - total_amount) < AMOUNT_TOLERANCE


def compute_split(
    amount: float,
    paid_by_shares: Dict[str, float],
    split_pct_shares: Dict[str, float],
    currency: str,
) -> List[SplitTransfer]:
    """
    Turn payments and percentage shares into debtor -> creditor transfers.

    Each user's net position is what they paid minus their share of ``amount``. Every
    debtor's shortfall is spread over the creditors in proportion to how much each
    creditor is owed, rounded to cents. Allocations that round to nothing are dropped.

    Args:
        amount: Total expense amount
        paid_by_shares: user_id -> amount that user paid
        split_pct_shares: user_id -> percentage of ``amount`` that user is responsible for
        currency: Currency stamped on every transfer

    Returns:
        Transfers in debtor order, then creditor order
    """
    user_ids = list(dict.fromkeys([*paid_by_shares, *split_pct_shares]))

    net = {}
    for user_id in user_ids:
        owed_amount = amount * split_pct_shares.get(user_id, 0) / 100
        net[user_id] = paid_by_shares.get(user_id, 0) - owed_amount

    creditors = {user_id: value for user_id, value in net.items() if value > NEAR_ZERO}
    debtors = {user_id: abs(value) for user_id, value in net.items() if value < -AMOUNT_TOLERANCE}

    total_creditor = sum(creditors.values())
    if total_creditor == 0:
        return []

    transfers = []
    for debtor_id, owed in debtors.items():
        for creditor_id, credit in creditors.items():
            split_amount = round(owed * (credit / total_creditor), 2)
            if split_amount > NEAR_ZERO:
                transfers.append(SplitTransfer(
                    debtor_id=debtor_id,
                    creditor_id=creditor_id,
                    amount=split_amount,
                    currency=currency,
                ))

    return transfers


def build_transaction_metadata(
    amount: float,
    paid_by_shares: Dict[str, float],
    split_pct_shares: Dict[str, float],
) -> TransactionMetadata:
    owed_amounts = {user_id: amount * pct / 100 for user_id, pct in split_pct_shares.items()}
    owed_to_amounts = {}
    for user_id, paid in paid_by_shares.items():
        net_amount = paid - owed_amounts.get(user_id, 0)
        if net_amount > 0:
            owed_to_amounts[user_id] = net_amount

    return TransactionMetadata(
        paid_by_shares=dict(paid_by_shares),
        owed_amounts=owed_amounts,
        owed_to_amounts=owed_to_amounts,
    )


def validate_split_amounts(
    amount: float,
    paid_by_shares: Dict[str, float],
    split_pct_shares: Dict[str, float],
    currency: str,
):
    """Checks that need no database: currency, percentage total and paid total."""
    if not is_valid_currency(currency):
        raise ValidationError(f"Invalid currency: {currency}")

    if not validate_split_percentages(split_pct_shares):
        raise ValidationError("Split percentages must total 100%")

    if not validate_paid_amounts(paid_by_shares, amount):
        raise ValidationError("Paid amounts must equal total amount")


def validate_split_request(
    db: Session,
    group_id: str,
    amount: float,
    paid_by_shares: Dict[str, float],
    split_pct_shares: Dict[str, float],
    currency: str,
) -> Group:
    """Reject an expense before anything is written. Returns the group it belongs to."""
    group = db.query(Group).filter(Group.id == group_id).first()
    if not group:
        raise NotFoundError(f"Group with id {group_id} not found")

    validate_split_amounts(amount, paid_by_shares, split_pct_shares, currency)

    member_ids = {member.id for member in group.members}
    for user_id in dict.fromkeys([*paid_by_shares, *split_pct_shares]):
        if user_id not in member_ids:
            logger.debug("Rejected expense in group %s: %s is not a member", group_id, user_id)
            raise ValidationError(f"User {user_id} is not a member of group {group_id}")

    return group


def stage_expense(db: Session, expense: ExpenseCreate, transaction_id: Optional[str] = None) -> ExpenseResult:
    """
    Stage the transaction, its shares and the balance upserts without committing.

    With a ``transaction_id`` that already exists (and is not deleted), nothing is staged,
    which makes replays of the same deterministic id harmless.
    """
    validate_split_request(
        db, expense.group_id, expense.amount, expense.paid_by_shares, expense.split_pct_shares, expense.currency
    )

    if transaction_id is not None:
        existing = db.query(Transaction).filter(
            Transaction.id == transaction_id,
            Transaction.deleted_at.is_(None),
        ).first()
        if existing:
            logger.info("Transaction %s already exists, skipping creation", transaction_id)
            return ExpenseResult(
                message=f"Transaction already exists: {expense.description}",
                transaction_id=transaction_id,
                created=False,
            )

    transaction_id = transaction_id or str(uuid4())
    transfers = compute_split(expense.amount, expense.paid_by_shares, expense.split_pct_shares, expense.currency)
    metadata = build_transaction_metadata(expense.amount, expense.paid_by_shares, expense.split_pct_shares)

    db.add(Transaction(
        id=transaction_id,
        description=expense.description,
        amount=expense.amount,
        currency=expense.currency,
        group_id=expense.group_id,
        transaction_metadata=metadata.model_dump(),
        created_at=datetime.now(timezone.utc),
    ))
    for transfer in transfers:
        db.add(TransactionShare(
            transaction_id=transaction_id,
            user_id=transfer.debtor_id,
            owed_to_user_id=transfer.creditor_id,
            amount=transfer.amount,
            currency=transfer.currency,
            group_id=expense.group_id,
        ))
    # Shares must reach the database in the same unit as the balance increments
    db.flush()
    apply_transfers(db, transfers, expense.group_id, sign=1)

    return ExpenseResult(
        message=f"Transaction created: {expense.description}",
        transaction_id=transaction_id,
        transfers=transfers,
    )


def apply_expense(db: Session, expense: ExpenseCreate, transaction_id: Optional[str] = None) -> ExpenseResult:
    """Record an expense and update balances as one atomic unit."""
    with group_write_lock(expense.group_id):
        with atomic(db):
            result = stage_expense(db, expense, transaction_id)

    if result.created:
        logger.info(
            "Created transaction %s in group %s with %d transfers",
            result.transaction_id, expense.group_id, len(result.transfers),
        )
    return result


def delete_expense(db: Session, group_id: str, transaction_id: str) -> Dict[str, Any]:
    """Soft-delete a transaction and reverse its balance contributions."""
    with group_write_lock(group_id):
        with atomic(db):
            transaction = db.query(Transaction).filter(
                Transaction.id == transaction_id,
                Transaction.group_id == group_id,
                Transaction.deleted_at.is_(None),
            ).first()
            if not transaction:
                raise NotFoundError(f"Transaction {transaction_id} not found or already deleted")

            shares = db.query(TransactionShare).filter(
                TransactionShare.transaction_id == transaction_id,
                TransactionShare.group_id == group_id,
                TransactionShare.deleted_at.is_(None),
            ).all()

            deleted_at = datetime.now(timezone.utc)
            transaction.deleted_at = deleted_at
            for share in shares:
                share.deleted_at = deleted_at
            db.flush()

            apply_transfers(db, shares_to_transfers(shares), group_id, sign=-1)

    logger.info("Deleted transaction %s in group %s", transaction_id, group_id)
    return {"message": "Transaction deleted successfully", "transaction_id": transaction_id}


def get_group_transactions(db: Session, group_id: str, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
    """Non-deleted transactions for a group, newest first, each with its share rows"""

    group = db.query(Group).filter(Group.id == group_id).first()
    if not group:
        raise NotFoundError(f"Group with id {group_id} not found")

    transactions = db.query(Transaction).filter(
        Transaction.group_id == group_id,
        Transaction.deleted_at.is_(None),
    ).order_by(Transaction.created_at.desc())\
        .offset(offset).limit(limit).all()

    result = []
    for transaction in transactions:
        shares = [share for share in transaction.shares if share.deleted_at is None]
        result.append({
            "id": transaction.id,
            "description": transaction.description,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "group_id": transaction.group_id,
            "created_at": transaction.created_at,
            "metadata": transaction.transaction_metadata,
            "shares": shares,
        })
    return result