from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import BudgetPeriod

DASHBOARD_PERIODS = ("weekly", "monthly", "quarterly", "yearly")


@dataclass(frozen=True)
class Window:
    slug: str
    start: datetime
    end: datetime

    def contains(self, day: date) -> bool:
        return self.start.date() <= day <= self.end.date()


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def add_months(base: date, months: int) -> date:
    month_index = (base.year * 12) + (base.month - 1) + months
    year = month_index // 12
    month = (month_index % 12) + 1
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    dim = (next_month - date(year, month, 1)).days
    return date(year, month, min(base.day, dim))


def budget_period_end(start: date, period: BudgetPeriod) -> date:
    if period == BudgetPeriod.weekly:
        return start + timedelta(days=6)
    if period == BudgetPeriod.monthly:
        return add_months(start, 1) - date.resolution
    if period == BudgetPeriod.quarterly:
        return add_months(start, 3) - date.resolution
    return add_months(start, 12) - date.resolution


def dashboard_window(period: Optional[str], now: datetime) -> Window:
    slug = (period or "monthly").strip().lower()
    if slug == "weekly":
        # the last seven calendar days, today included
        start = (now - timedelta(days=6)).date()
        return Window(slug, datetime.combine(start, time.min), now)
    if slug == "monthly":
        return Window(slug, datetime(now.year, now.month, 1), now)
    if slug == "quarterly":
        quarter_month = ((now.month - 1) // 3) * 3 + 1
        return Window(slug, datetime(now.year, quarter_month, 1), now)
    if slug == "yearly":
        return Window(slug, datetime(now.year, 1, 1), now)
    raise ValueError(
        f"Unknown period '{period}', expected one of {', '.join(DASHBOARD_PERIODS)}"
    )
