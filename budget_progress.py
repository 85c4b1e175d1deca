from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from models import Budget, Transaction, TransactionType
from periods import local_today


@dataclass(frozen=True)
class BudgetProgress:
    spent_cents: int
    remaining_cents: int
    # Unclamped; drives alerting.
    percentage: float
    # Clamped to 100 for progress bars.
    display_percentage: float
    should_alert: bool


def budget_window(budget: Budget, today: Optional[date] = None) -> tuple[date, date]:
    end = budget.end_date or today or local_today()
    return budget.start_date, end


def counts_toward(budget: Budget, txn: Transaction, start: date, end: date) -> bool:
    return (
        txn.user_id == budget.user_id
        and txn.type == TransactionType.expense
        and txn.category == budget.category
        and start <= txn.date <= end
    )


def compute_progress(
    budget: Budget,
    transactions: Iterable[Transaction],
    *,
    today: Optional[date] = None,
) -> BudgetProgress:
    """
    Progress of one budget against the owner's transactions.

    Only expenses in the budget's category dated inside the inclusive window
    count. Once spending reaches the cap (remaining <= 0) the threshold alert
    no longer fires, even though the percentage is above the threshold.
    """
    start, end = budget_window(budget, today)
    spent = sum(
        t.amount_cents
        for t in transactions
        if counts_toward(budget, t, start, end)
    )
    remaining = budget.amount_cents - spent
    if budget.amount_cents > 0:
        percentage = spent * 100 / budget.amount_cents
    else:
        percentage = 0.0
    should_alert = (
        bool(budget.alerts_enabled)
        and percentage >= budget.alert_threshold
        and remaining > 0
    )
    return BudgetProgress(
        spent_cents=spent,
        remaining_cents=remaining,
        percentage=percentage,
        display_percentage=min(percentage, 100.0),
        should_alert=should_alert,
    )


def alert_message(category: str, percentage: float) -> str:
    return f"You've spent {percentage:.1f}% of your {category} budget"
