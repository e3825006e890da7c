import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, insert
from sqlalchemy.orm import Session

from splitledger.app.database import additive_upsert, atomic
from splitledger.app.exceptions import ConsistencyError, NotFoundError
from splitledger.app.models.models import Group, TransactionShare, UserBalance
from splitledger.app.schemas.splits import SplitTransfer

logger = logging.getLogger(__name__)

_group_locks: Dict[str, threading.RLock] = {}
_registry_lock = threading.Lock()


def _lock_for(group_id: str) -> threading.RLock:
    with _registry_lock:
        lock = _group_locks.get(group_id)
        if lock is None:
            lock = _group_locks[group_id] = threading.RLock()
        return lock


@contextmanager
def group_write_lock(group_id: str, timeout: Optional[float] = None):
    """
    Exclusive write section for one group's balance rows.

    Incremental balance writes hold it until their commit, and a rebuild holds it for the
    whole delete-and-recompute, so the two can never interleave for the same group.
    """
    lock = _lock_for(group_id)
    acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire()
    if not acquired:
        raise ConsistencyError(f"Balances for group {group_id} are being written; try again shortly")
    try:
        yield
    finally:
        lock.release()


def apply_transfers(db: Session, transfers: Iterable[SplitTransfer], group_id: str, sign: int = 1) -> int:
    """
    Stage additive upserts of ``sign * amount`` for each directed debtor -> creditor pair.

    ``sign`` is +1 when the originating transaction is created and -1 when it is deleted.
    Nothing is committed here; callers run this inside ``atomic`` under ``group_write_lock``.
    """
    if sign not in (1, -1):
        raise ValueError("sign must be +1 or -1")

    count = 0
    for transfer in transfers:
        additive_upsert(
            db,
            UserBalance.__table__,
            {
                "group_id": group_id,
                "user_id": transfer.debtor_id,
                "owed_to_user_id": transfer.creditor_id,
                "currency": transfer.currency,
            },
            "balance",
            sign * transfer.amount,
        )
        count += 1
    return count


def shares_to_transfers(shares: Iterable[TransactionShare]) -> List[SplitTransfer]:
    return [
        SplitTransfer(
            debtor_id=share.user_id,
            creditor_id=share.owed_to_user_id,
            amount=share.amount,
            currency=share.currency,
        )
        for share in shares
    ]


def rebuild_balances(db: Session, group_id: str, timeout: Optional[float] = None) -> int:
    """
    Recompute a group's balance rows from its non-deleted transaction shares.

    Deletes every existing row for the group and re-inserts one row per
    (user, owed_to_user, currency) holding the summed share amounts. Running it twice
    yields the same table.

    Returns:
        Number of balance rows written
    """
    if db.query(Group).filter(Group.id == group_id).first() is None:
        raise NotFoundError(f"Group with id {group_id} not found")

    with group_write_lock(group_id, timeout=timeout):
        with atomic(db):
            db.query(UserBalance).filter(UserBalance.group_id == group_id).delete(synchronize_session=False)

            sums = db.query(
                TransactionShare.user_id,
                TransactionShare.owed_to_user_id,
                TransactionShare.currency,
                func.sum(TransactionShare.amount),
            ).filter(
                TransactionShare.group_id == group_id,
                TransactionShare.deleted_at.is_(None),
            ).group_by(
                TransactionShare.user_id,
                TransactionShare.owed_to_user_id,
                TransactionShare.currency,
            ).all()

            now = datetime.now(timezone.utc)
            rows = [
                {
                    "group_id": group_id,
                    "user_id": user_id,
                    "owed_to_user_id": owed_to_user_id,
                    "currency": currency,
                    "balance": total or 0.0,
                    "updated_at": now,
                }
                for user_id, owed_to_user_id, currency, total in sums
            ]
            if rows:
                db.execute(insert(UserBalance.__table__), rows)

    logger.info("Rebuilt %d balance rows for group %s", len(sums), group_id)
    return len(sums)


def get_raw_balances(db: Session, group_id: str) -> List[UserBalance]:
    """Directed balance rows exactly as materialized."""
    return db.query(UserBalance).filter(UserBalance.group_id == group_id).order_by(
        UserBalance.user_id, UserBalance.owed_to_user_id, UserBalance.currency
    ).all()


def get_user_balances(db: Session, group_id: str, user_id: str) -> Dict[str, Dict[str, float]]:
    """
    Net balances of one user against every counterpart, per currency.

    Positive values mean the counterpart owes ``user_id``; negative values mean
    ``user_id`` owes the counterpart. Opposing directions are netted here only,
    the materialized rows stay directed.
    """
    balances: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))

    for row in get_raw_balances(db, group_id):
        if row.user_id == row.owed_to_user_id:
            continue  # self-owed rows carry no debt

        if row.user_id == user_id:
            balances[row.owed_to_user_id][row.currency] -= row.balance
        elif row.owed_to_user_id == user_id:
            balances[row.user_id][row.currency] += row.balance

    return {
        counterpart: {currency: round(amount, 2) for currency, amount in by_currency.items()}
        for counterpart, by_currency in balances.items()
    }
