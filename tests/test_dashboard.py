from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import AccountType, TransactionType
from periods import Period
from schemas import AccountIn, TransactionIn
from services import AccountService, DashboardService, TransactionService, month_bucket


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def record(session, user_id, txn_type, category, amount, when) -> None:
    TransactionService(session, user_id).create(
        TransactionIn(
            type=txn_type,
            category=category,
            subcategory="Misc",
            amount=Decimal(amount),
            payment_mode="Cash",
            payee=f"{category} payee",
            account="Cash",
            date=when,
        )
    )


JANUARY = Period("custom", date(2025, 1, 1), date(2025, 1, 31))


def test_january_summary() -> None:
    with make_session() as session:
        record(session, 1, TransactionType.income, "Salary", "500", date(2025, 1, 3))
        record(session, 1, TransactionType.expense, "Rent", "200", date(2025, 1, 5))
        record(session, 1, TransactionType.expense, "Rent", "999", date(2025, 2, 5))
        record(session, 2, TransactionType.expense, "Rent", "999", date(2025, 1, 5))

        stats = DashboardService(session, 1, month_buckets="month_name").stats(JANUARY)

        assert stats["summary"] == {
            "totalIncome": 500,
            "totalExpense": 200,
            "balance": 300,
        }
        assert stats["incomeVsExpense"] == [
            {"month": "Jan", "income": 500, "expense": 200}
        ]
        assert stats["expenseData"] == [{"name": "Rent", "value": 200}]


def test_top_categories_keep_insertion_order_on_ties() -> None:
    with make_session() as session:
        for category, amount in (("A", "50"), ("B", "100"), ("C", "50"), ("D", "10")):
            record(
                session, 1, TransactionType.expense, category, amount, date(2025, 1, 9)
            )

        stats = DashboardService(session, 1).stats(JANUARY)

        assert [row["name"] for row in stats["topCategories"]] == ["B", "A", "C"]
        assert [row["name"] for row in stats["expenseData"]] == ["A", "B", "C", "D"]


def test_month_bucket_modes() -> None:
    with make_session() as session:
        record(session, 1, TransactionType.expense, "Gym", "10", date(2024, 1, 15))
        record(session, 1, TransactionType.expense, "Gym", "20", date(2025, 1, 15))
        span = Period("custom", date(2024, 1, 1), date(2025, 12, 31))

        merged = DashboardService(session, 1, month_buckets="month_name").stats(span)
        split = DashboardService(session, 1, month_buckets="year_month").stats(span)

        assert merged["incomeVsExpense"] == [
            {"month": "Jan", "income": 0, "expense": 30}
        ]
        assert [row["month"] for row in split["incomeVsExpense"]] == [
            "Jan 2024",
            "Jan 2025",
        ]

    assert month_bucket(date(2025, 12, 1), "month_name") == "Dec"


def test_accounts_and_recent_transactions() -> None:
    with make_session() as session:
        AccountService(session, 1).create(
            AccountIn(name="Cash", type=AccountType.cash, balance=Decimal("12.5"))
        )
        for day in range(1, 8):
            record(session, 1, TransactionType.expense, "Food", "1", date(2025, 1, day))

        stats = DashboardService(session, 1).stats(JANUARY)

        assert stats["accountBalances"] == [{"name": "Cash", "balance": 12.5}]
        recent = stats["recentTransactions"]
        assert len(recent) == 5
        assert [row["date"] for row in recent] == [
            "2025-01-07",
            "2025-01-06",
            "2025-01-05",
            "2025-01-04",
            "2025-01-03",
        ]
        assert set(recent[0]) == {
            "id",
            "payee",
            "category",
            "subcategory",
            "amount",
            "type",
            "date",
        }
