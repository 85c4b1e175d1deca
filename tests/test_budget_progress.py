from datetime import date

from budget_progress import alert_message, compute_progress
from models import Budget, BudgetPeriod, Transaction, TransactionType


def make_budget(amount_cents: int, threshold: float = 80, **kwargs) -> Budget:
    fields = dict(
        user_id=1,
        category="Food",
        amount_cents=amount_cents,
        period=BudgetPeriod.monthly,
        start_date=date(2025, 1, 1),
        end_date=date(2025, 2, 1),
        alerts_enabled=True,
        alert_threshold=threshold,
        is_active=True,
    )
    fields.update(kwargs)
    return Budget(**fields)


def make_txn(amount_cents: int, **kwargs) -> Transaction:
    fields = dict(
        user_id=1,
        type=TransactionType.expense,
        category="Food",
        amount_cents=amount_cents,
        date=date(2025, 1, 15),
    )
    fields.update(kwargs)
    return Transaction(**fields)


def test_alert_fires_at_threshold() -> None:
    progress = compute_progress(make_budget(10_000), [make_txn(8_500)])
    assert progress.spent_cents == 8_500
    assert progress.remaining_cents == 1_500
    assert progress.percentage == 85.0
    assert progress.should_alert is True


def test_overspend_suppresses_alert() -> None:
    progress = compute_progress(make_budget(10_000), [make_txn(15_000)])
    assert progress.percentage == 150.0
    assert progress.display_percentage == 100.0
    assert progress.remaining_cents == -5_000
    assert progress.should_alert is False


def test_only_matching_expenses_in_window_count() -> None:
    budget = make_budget(20_000)
    transactions = [
        make_txn(10_000),
        make_txn(7_000, date=date(2025, 2, 1)),
        make_txn(5_000, date=date(2024, 12, 31)),
        make_txn(5_000, category="Travel"),
        make_txn(5_000, type=TransactionType.income),
        make_txn(5_000, user_id=2),
    ]
    progress = compute_progress(budget, transactions)
    assert progress.spent_cents == 17_000
    assert progress.percentage == 85.0
    assert progress.remaining_cents == 3_000
    assert progress.should_alert is True


def test_below_threshold_or_disabled_does_not_alert() -> None:
    below = compute_progress(make_budget(10_000), [make_txn(7_999)])
    assert below.should_alert is False
    disabled = make_budget(10_000, alerts_enabled=False)
    assert compute_progress(disabled, [make_txn(9_000)]).should_alert is False


def test_missing_end_date_uses_today() -> None:
    budget = make_budget(10_000, end_date=None)
    transactions = [make_txn(1_000), make_txn(2_000, date=date(2025, 3, 1))]
    progress = compute_progress(budget, transactions, today=date(2025, 2, 1))
    assert progress.spent_cents == 1_000


def test_zero_amount_budget_reports_zero_percent() -> None:
    progress = compute_progress(make_budget(0), [make_txn(500)])
    assert progress.percentage == 0.0
    assert progress.remaining_cents == -500
    assert progress.should_alert is False


def test_alert_message_format() -> None:
    assert alert_message("Food", 85) == "You've spent 85.0% of your Food budget"
