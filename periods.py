from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import BudgetPeriod


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_today() -> date:
    """Today in the configured timezone; every default date goes through here."""
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    """Shift by calendar months; a day missing in the target month snaps to its end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def budget_end_date(start: date, period: BudgetPeriod) -> date:
    if period == BudgetPeriod.yearly:
        return add_months(start, 12)
    return add_months(start, 1)


def month_period(today: date) -> Period:
    first = today.replace(day=1)
    last = first.replace(day=days_in_month(first.year, first.month))
    return Period("this_month", first, last)


def resolve_range(
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    """Dashboard window: the current month unless at least one bound is given."""
    today = today or local_today()
    if not start and not end:
        return month_period(today)
    start_date = date.fromisoformat(start[:10]) if start else date.min
    end_date = date.fromisoformat(end[:10]) if end else date.max
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    return Period("custom", start_date, end_date)
