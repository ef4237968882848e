from datetime import date, datetime

import pytest

from models import BudgetPeriod
from periods import add_months, budget_period_end, dashboard_window


def test_budget_period_end_per_period() -> None:
    start = date(2025, 1, 1)
    assert budget_period_end(start, BudgetPeriod.weekly) == date(2025, 1, 7)
    assert budget_period_end(start, BudgetPeriod.monthly) == date(2025, 1, 31)
    assert budget_period_end(start, BudgetPeriod.quarterly) == date(2025, 3, 31)
    assert budget_period_end(start, BudgetPeriod.yearly) == date(2025, 12, 31)


def test_add_months_clamps_to_month_length() -> None:
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)


def test_dashboard_windows() -> None:
    now = datetime(2025, 5, 20, 18, 30)

    weekly = dashboard_window("weekly", now)
    assert weekly.start == datetime(2025, 5, 14)
    assert weekly.end == now

    assert dashboard_window("monthly", now).start == datetime(2025, 5, 1)
    assert dashboard_window("quarterly", now).start == datetime(2025, 4, 1)
    assert dashboard_window("yearly", now).start == datetime(2025, 1, 1)
    assert dashboard_window(None, now).slug == "monthly"


def test_window_contains_is_inclusive_by_date() -> None:
    window = dashboard_window("monthly", datetime(2025, 5, 20, 8, 0))
    assert window.contains(date(2025, 5, 1))
    assert window.contains(date(2025, 5, 20))
    assert not window.contains(date(2025, 4, 30))
    assert not window.contains(date(2025, 5, 21))


def test_unknown_dashboard_period_is_rejected() -> None:
    with pytest.raises(ValueError):
        dashboard_window("fortnightly", datetime(2025, 5, 20))


def test_weekly_window_spans_seven_calendar_days() -> None:
    now = datetime(2025, 5, 20, 18, 30)
    window = dashboard_window("weekly", now)
    assert window.contains(date(2025, 5, 14))
    assert not window.contains(date(2025, 5, 13))
