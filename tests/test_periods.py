from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from config import get_settings
from models import BudgetPeriod, TransactionType
from periods import (
    add_months,
    budget_end_date,
    days_in_month,
    local_today,
    resolve_range,
)
from schemas import BudgetIn, TransactionIn


def test_add_months_snaps_to_end_of_shorter_month() -> None:
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 3, 31), 1) == date(2025, 4, 30)


def test_add_months_rolls_over_year() -> None:
    assert add_months(date(2025, 12, 15), 1) == date(2026, 1, 15)
    assert add_months(date(2025, 11, 30), 3) == date(2026, 2, 28)


def test_budget_end_date_by_period() -> None:
    assert budget_end_date(date(2025, 1, 10), BudgetPeriod.monthly) == date(2025, 2, 10)
    assert budget_end_date(date(2025, 1, 10), BudgetPeriod.yearly) == date(2026, 1, 10)
    assert budget_end_date(date(2024, 2, 29), BudgetPeriod.yearly) == date(2025, 2, 28)


def test_days_in_month() -> None:
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2025, 12) == 31


def test_resolve_range_defaults_to_current_month() -> None:
    period = resolve_range(None, None, today=date(2026, 10, 19))
    assert period.start == date(2026, 10, 1)
    assert period.end == date(2026, 10, 31)


def test_resolve_range_open_ended_bounds() -> None:
    period = resolve_range("2026-01-05T00:00:00.000Z", None)
    assert period.start == date(2026, 1, 5)
    assert period.end == date.max

    period = resolve_range(None, "2026-02-01")
    assert period.start == date.min
    assert period.end == date(2026, 2, 1)


def test_resolve_range_rejects_inverted_bounds() -> None:
    with pytest.raises(ValueError):
        resolve_range("2026-03-01", "2026-02-01")


def test_default_dates_follow_configured_timezone(monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "timezone", "Pacific/Kiritimati")
    expected = datetime.now(ZoneInfo("Pacific/Kiritimati")).date()

    assert local_today() == expected
    txn = TransactionIn(
        type=TransactionType.expense,
        category="Food",
        subcategory="Lunch",
        amount=Decimal("5"),
        payment_mode="Cash",
        payee="Cafe",
        account="Cash",
    )
    assert txn.date == expected
    assert BudgetIn(category="Food", amount=Decimal("10")).start_date == expected
    assert resolve_range(None, None).start == expected.replace(day=1)
