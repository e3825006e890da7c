import calendar
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import extract, func, insert
from sqlalchemy.orm import Session

from splitledger.app.config import get_settings
from splitledger.app.database import additive_upsert, atomic
from splitledger.app.exceptions import NotFoundError, ValidationError
from splitledger.app.models.models import BudgetEntry, BudgetTotal, Group
from splitledger.app.schemas.budgets import BudgetEntryCreate, BudgetEntryResult
from splitledger.app.services.balance_service import group_write_lock
from splitledger.app.services.recurrence import add_months_safely, utc_today
from splitledger.app.services.split_service import is_valid_currency

logger = logging.getLogger(__name__)


def _get_group(db: Session, group_id: str) -> Group:
    group = db.query(Group).filter(Group.id == group_id).first()
    if not group:
        raise NotFoundError(f"Group with id {group_id} not found")
    return group


def validate_budget_entry(db: Session, entry: BudgetEntryCreate) -> Group:
    group = _get_group(db, entry.group_id)

    if entry.name not in (group.budgets or []):
        raise ValidationError(f"Budget '{entry.name}' is not available in group {entry.group_id}")

    if not is_valid_currency(entry.currency):
        raise ValidationError(f"Invalid currency: {entry.currency}")

    if entry.amount == 0:
        raise ValidationError("Budget amount cannot be zero")

    return group


def _upsert_total(db: Session, group_id: str, name: str, currency: str, delta: float):
    additive_upsert(
        db,
        BudgetTotal.__table__,
        {"group_id": group_id, "name": name, "currency": currency},
        "total_amount",
        delta,
    )


def stage_budget_entry(db: Session, entry: BudgetEntryCreate, entry_id: Optional[str] = None) -> BudgetEntryResult:
    """
    Stage a budget entry insert and its running-total increment without committing.

    A deterministic ``entry_id`` that already exists (and is not deleted) stages nothing.
    """
    validate_budget_entry(db, entry)

    if entry_id is not None:
        existing = db.query(BudgetEntry).filter(
            BudgetEntry.id == entry_id,
            BudgetEntry.deleted_at.is_(None),
        ).first()
        if existing:
            logger.info("Budget entry %s already exists, skipping creation", entry_id)
            return BudgetEntryResult(
                message=f"Budget entry already exists: {entry.description}",
                entry_id=entry_id,
                created=False,
            )

    entry_id = entry_id or str(uuid4())
    db.add(BudgetEntry(
        id=entry_id,
        group_id=entry.group_id,
        name=entry.name,
        description=entry.description,
        amount=entry.amount,
        currency=entry.currency,
        added_time=datetime.now(timezone.utc),
    ))
    db.flush()
    _upsert_total(db, entry.group_id, entry.name, entry.currency, entry.amount)

    return BudgetEntryResult(message=f"Budget entry created: {entry.description}", entry_id=entry_id)


def create_budget_entry(db: Session, entry: BudgetEntryCreate, entry_id: Optional[str] = None) -> BudgetEntryResult:
    """Insert a budget entry and add its signed amount to the category total, atomically."""
    with group_write_lock(entry.group_id):
        with atomic(db):
            result = stage_budget_entry(db, entry, entry_id)

    if result.created:
        logger.info("Created budget entry %s (%s %.2f %s)", result.entry_id, entry.name, entry.amount, entry.currency)
    return result


def delete_budget_entry(db: Session, group_id: str, entry_id: str) -> Dict[str, Any]:
    """Mark a budget entry deleted and subtract its amount from the category total, atomically."""
    with group_write_lock(group_id):
        with atomic(db):
            entry = db.query(BudgetEntry).filter(
                BudgetEntry.id == entry_id,
                BudgetEntry.group_id == group_id,
                BudgetEntry.deleted_at.is_(None),
            ).first()
            if not entry:
                raise NotFoundError("Budget entry not found or already deleted")

            entry.deleted_at = datetime.now(timezone.utc)
            db.flush()
            _upsert_total(db, group_id, entry.name, entry.currency, -entry.amount)

    logger.info("Deleted budget entry %s in group %s", entry_id, group_id)
    return {"message": "Budget entry deleted successfully", "entry_id": entry_id}


def list_budget_entries(db: Session, group_id: str, name: str, limit: int = 100, offset: int = 0) -> List[BudgetEntry]:
    """Non-deleted entries for a budget category, newest first"""
    _get_group(db, group_id)
    return db.query(BudgetEntry).filter(
        BudgetEntry.group_id == group_id,
        BudgetEntry.name == name,
        BudgetEntry.deleted_at.is_(None),
    ).order_by(BudgetEntry.added_time.desc())\
        .offset(offset).limit(limit).all()


def get_budget_totals(db: Session, group_id: str, name: str) -> List[Dict[str, Any]]:
    totals = db.query(BudgetTotal).filter(
        BudgetTotal.group_id == group_id,
        BudgetTotal.name == name,
    ).order_by(BudgetTotal.currency).all()
    return [{"currency": total.currency, "amount": round(total.total_amount, 2)} for total in totals]


def rebuild_budget_totals(db: Session, group_id: str, timeout: Optional[float] = None) -> int:
    """
    Recompute every category total of a group from its non-deleted entries.

    Holds the group's write lock so entries posted meanwhile are not lost; raises
    ConsistencyError when ``timeout`` runs out before the lock is free.
    """
    _get_group(db, group_id)

    with group_write_lock(group_id, timeout=timeout):
        with atomic(db):
            db.query(BudgetTotal).filter(BudgetTotal.group_id == group_id).delete(synchronize_session=False)

            sums = db.query(
                BudgetEntry.name,
                BudgetEntry.currency,
                func.sum(BudgetEntry.amount),
            ).filter(
                BudgetEntry.group_id == group_id,
                BudgetEntry.deleted_at.is_(None),
            ).group_by(BudgetEntry.name, BudgetEntry.currency).all()

            now = datetime.now(timezone.utc)
            rows = [
                {"group_id": group_id, "name": name, "currency": currency, "total_amount": total or 0.0, "updated_at": now}
                for name, currency, total in sums
            ]
            if rows:
                db.execute(insert(BudgetTotal.__table__), rows)

    logger.info("Rebuilt %d budget totals for group %s", len(rows), group_id)
    return len(rows)


def _month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def build_month_sequence(
    monthly_data: Sequence[Tuple[int, int, str, float]],
    today: date,
    lookback_years: int = 2,
    default_currency: str = "USD",
) -> Tuple[List[Dict[str, Any]], List[str], date]:
    """
    Lay out spend per month from ``today``'s month back to the oldest month with data.

    Args:
        monthly_data: (year, month, currency, amount) rows
        today: Reference date; its month comes first
        lookback_years: Window used when there is no data at all
        default_currency: Currency used when there is no data at all

    Returns:
        (months most-recent-first with one amount per currency, currencies, oldest month start)
    """
    currencies = sorted({currency for _, _, currency, _ in monthly_data})
    data_map: Dict[Tuple[int, int], Dict[str, float]] = {}
    oldest = _month_start(today)

    for year, month, currency, amount in monthly_data:
        data_map.setdefault((year, month), {})[currency] = amount
        oldest = min(oldest, date(year, month, 1))

    if not monthly_data:
        oldest = _month_start(add_months_safely(today, -12 * lookback_years))
        currencies = [default_currency]

    months = []
    current = _month_start(today)
    while current >= oldest:
        amounts = [
            {"currency": currency, "amount": data_map.get((current.year, current.month), {}).get(currency, 0)}
            for currency in currencies
        ]
        months.append({"month": calendar.month_name[current.month], "year": current.year, "amounts": amounts})
        current = add_months_safely(current, -1)

    return months, currencies, oldest


def calculate_rolling_averages(
    months: List[Dict[str, Any]],
    currencies: List[str],
    default_currency: str = "USD",
) -> List[Dict[str, Any]]:
    """
    Average monthly spend over the first k months for k = 1..len(months).

    Currencies with no spend in a window are left out of that window's averages, unless
    every currency is zero; then a single zero entry for the first currency is kept.
    """
    rolling_averages = []
    for months_back in range(1, len(months) + 1):
        currency_totals = {currency: 0.0 for currency in currencies}
        for month_data in months[:months_back]:
            for amount in month_data["amounts"]:
                currency_totals[amount["currency"]] += abs(amount["amount"])

        averages = [
            {
                "currency": currency,
                "average_monthly_spend": currency_totals[currency] / months_back,
                "total_spend": currency_totals[currency],
                "months_analyzed": months_back,
            }
            for currency in currencies
        ]

        filtered = [average for average in averages if average["total_spend"] > 0]
        if not filtered:
            filtered = [{
                "currency": currencies[0] if currencies else default_currency,
                "average_monthly_spend": 0,
                "total_spend": 0,
                "months_analyzed": months_back,
            }]

        rolling_averages.append({"period_months": months_back, "averages": filtered})

    return rolling_averages


def get_monthly_spend(db: Session, group_id: str, name: str, since: date) -> List[Tuple[int, int, str, float]]:
    """Absolute spend (negative entries) per (year, month, currency) since ``since``."""
    year_col = extract("year", BudgetEntry.added_time)
    month_col = extract("month", BudgetEntry.added_time)

    rows = db.query(
        year_col,
        month_col,
        BudgetEntry.currency,
        func.sum(func.abs(BudgetEntry.amount)),
    ).filter(
        BudgetEntry.group_id == group_id,
        BudgetEntry.name == name,
        BudgetEntry.deleted_at.is_(None),
        BudgetEntry.amount < 0,
        BudgetEntry.added_time >= datetime(since.year, since.month, since.day),
    ).group_by(year_col, month_col, BudgetEntry.currency).all()

    return [(int(year), int(month), currency, float(total)) for year, month, currency, total in rows]


def get_monthly_budget_report(db: Session, group_id: str, name: str, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Monthly spend series and rolling averages for one budget category.

    Returns:
        Dictionary with monthly_budgets, average_monthly_spend and period_analyzed
    """
    settings = get_settings()
    group = _get_group(db, group_id)
    if name not in (group.budgets or []):
        raise ValidationError(f"Budget '{name}' is not available in group {group_id}")

    today = today or utc_today()
    since = add_months_safely(today, -12 * settings.monthly_report_lookback_years)

    monthly_data = get_monthly_spend(db, group_id, name, since)
    months, currencies, oldest = build_month_sequence(
        monthly_data,
        today,
        lookback_years=settings.monthly_report_lookback_years,
        default_currency=settings.default_currency,
    )

    return {
        "monthly_budgets": months,
        "average_monthly_spend": calculate_rolling_averages(months, currencies, settings.default_currency),
        "period_analyzed": {"start_date": oldest, "end_date": today},
    }
