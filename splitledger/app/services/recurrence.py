import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

from splitledger.app.models.models import Frequency


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def add_months_safely(current: date, months_to_add: int, original_target_day: Optional[int] = None) -> date:
    """
    Move ``current`` forward by whole months, keeping the intended day of month.

    When the target month is shorter than the intended day (e.g. the 31st in February),
    the last day of that month is used instead of overflowing into the next month.
    """
    target_day = original_target_day or current.day
    month_index = current.month - 1 + months_to_add
    year = current.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(target_day, last_day))


def calculate_next_execution_date(
    start_date: date,
    frequency: Union[Frequency, str],
    today: Optional[date] = None,
) -> date:
    """
    Calculate the next date a recurring action becomes due.

    Args:
        start_date: First date the action is scheduled for
        frequency: daily, weekly or monthly
        today: Reference date (UTC); defaults to the current UTC date

    Returns:
        ``start_date`` itself if it is still in the future, otherwise the first date in the
        recurrence that is strictly after ``today``
    """
    frequency = Frequency(frequency)
    if today is None:
        today = utc_today()

    if start_date > today:
        return start_date

    # Monthly recurrences always aim for the day of the original start date
    original_target_day = start_date.day
    next_date = start_date

    while next_date <= today:
        if frequency == Frequency.DAILY:
            next_date = next_date + timedelta(days=1)
        elif frequency == Frequency.WEEKLY:
            next_date = next_date + timedelta(days=7)
        else:
            next_date = add_months_safely(next_date, 1, original_target_day)

    return next_date
