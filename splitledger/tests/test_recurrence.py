from datetime import date

import pytest

from splitledger.app.models.models import Frequency
from splitledger.app.services.recurrence import add_months_safely, calculate_next_execution_date

@pytest.mark.parametrize("current, months, target_day, expected", [
    (date(2024, 1, 31), 1, None, date(2024, 2, 29)),
    (date(2023, 1, 31), 1, None, date(2023, 2, 28)),
    (date(2024, 2, 29), 1, 31, date(2024, 3, 31)),
    (date(2024, 11, 15), 3, None, date(2025, 2, 15)),
    (date(2024, 3, 31), -1, None, date(2024, 2, 29)),
    (date(2024, 1, 10), -13, None, date(2022, 12, 10)),
])
def test_add_months_safely(current, months, target_day, expected):
    assert add_months_safely(current, months, target_day) == expected

def test_future_start_date_is_returned_as_is():
    assert calculate_next_execution_date(date(2099, 1, 1), Frequency.MONTHLY, today=date(2024, 6, 1)) == date(2099, 1, 1)

def test_start_date_today_moves_to_next_occurrence():
    assert calculate_next_execution_date(date(2024, 6, 1), "daily", today=date(2024, 6, 1)) == date(2024, 6, 2)

def test_daily_and_weekly():
    today = date(2024, 6, 10)
    assert calculate_next_execution_date(date(2024, 6, 1), Frequency.DAILY, today) == date(2024, 6, 11)
    assert calculate_next_execution_date(date(2024, 6, 1), Frequency.WEEKLY, today) == date(2024, 6, 15)

def test_monthly_clamps_in_leap_year():
    assert calculate_next_execution_date(date(2024, 1, 31), "monthly", today=date(2024, 2, 1)) == date(2024, 2, 29)

def test_monthly_clamps_in_common_year():
    assert calculate_next_execution_date(date(2023, 1, 31), "monthly", today=date(2023, 2, 1)) == date(2023, 2, 28)

def test_monthly_returns_to_original_day_after_short_month():
    # February clamps to the 29th, March goes back to the 31st
    assert calculate_next_execution_date(date(2024, 1, 31), "monthly", today=date(2024, 2, 29)) == date(2024, 3, 31)

def test_next_date_is_always_after_today():
    today = date(2024, 5, 17)
    for frequency in Frequency:
        next_date = calculate_next_execution_date(date(2023, 12, 31), frequency, today)
        assert next_date > today

def test_unknown_frequency():
    with pytest.raises(ValueError):
        calculate_next_execution_date(date(2024, 1, 1), "yearly", today=date(2024, 6, 1))
