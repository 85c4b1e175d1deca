from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from auth import digest_reset_token, hash_password, new_reset_token, verify_password
from budget_progress import BudgetProgress, alert_message, compute_progress
from config import get_settings
from mailer import Mailer, password_reset_html
from models import (
    ACCOUNT_COLORS,
    Account,
    Budget,
    Transaction,
    TransactionType,
    TransferEntry,
    User,
)
from periods import Period, budget_end_date, local_today
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    BudgetUpdate,
    LoginIn,
    OAuthIdentity,
    PasswordChangeIn,
    ProfileUpdate,
    ResetPasswordIn,
    SignupIn,
    TransactionIn,
    TransactionUpdate,
    TransferIn,
)


logger = logging.getLogger(__name__)

RESET_TOKEN_TTL = timedelta(minutes=10)
MONTH_ABBR = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


class NotFound(ValueError):
    pass


class Conflict(ValueError):
    pass


class InsufficientBalance(ValueError):
    pass


class AuthError(ValueError):
    pass


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> float:
    return cents / 100


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    def __init__(self, session: Session, mailer: Optional[Mailer] = None) -> None:
        self.session = session
        self.mailer = mailer

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.email == _normalize_email(email))
        )

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def signup(self, data: SignupIn) -> User:
        if self._by_email(data.email):
            raise Conflict("User already exists")
        user = User(
            name=data.name,
            email=_normalize_email(data.email),
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"signup: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        user = self._by_email(data.email)
        if not user or not verify_password(data.password, user.password_hash):
            raise AuthError("Invalid credentials")
        return user

    def update_profile(self, user_id: int, data: ProfileUpdate) -> User:
        user = self.get(user_id)
        fields = data.model_dump(exclude_unset=True)

        email = fields.get("email")
        if email and _normalize_email(email) != user.email:
            if self._by_email(email):
                raise Conflict("Email already in use")
            user.email = _normalize_email(email)
        if fields.get("name"):
            user.name = fields["name"]
        if "phone" in fields:
            user.phone = fields["phone"]
        if "address" in fields:
            user.address = fields["address"]
        if fields.get("profile_picture"):
            user.profile_picture = fields["profile_picture"]

        self.session.commit()
        self.session.refresh(user)
        return user

    def change_password(self, user_id: int, data: PasswordChangeIn) -> None:
        user = self.get(user_id)
        if not verify_password(data.current_password, user.password_hash):
            raise AuthError("Current password is incorrect")
        user.password_hash = hash_password(data.new_password)
        self.session.commit()

    def request_password_reset(self, email: str) -> Optional[str]:
        """
        Issue a reset token and mail the link. Returns the raw token, or None
        when no user has that email; callers answer identically either way.
        """
        user = self._by_email(email)
        if not user:
            return None
        raw, digest = new_reset_token()
        user.reset_password_token_hash = digest
        user.reset_password_expires_at = datetime.utcnow() + RESET_TOKEN_TTL
        self.session.commit()

        reset_url = f"{get_settings().frontend_url}/reset-password/{raw}"
        mailer = self.mailer or Mailer()
        mailer.send(
            user.email, "Password Reset Request", password_reset_html(reset_url)
        )
        logger.info(f"password_reset_requested: user_id={user.id}")
        return raw

    def reset_password(self, raw_token: str, data: ResetPasswordIn) -> User:
        user = self.session.scalar(
            select(User).where(
                User.reset_password_token_hash == digest_reset_token(raw_token),
                User.reset_password_expires_at > datetime.utcnow(),
            )
        )
        if not user:
            raise ValueError("Invalid or expired reset token")
        user.password_hash = hash_password(data.password)
        user.reset_password_token_hash = None
        user.reset_password_expires_at = None
        self.session.commit()
        self.session.refresh(user)
        return user

    def upsert_oauth_identity(self, identity: OAuthIdentity) -> User:
        """Find or create the user behind an already-verified OAuth identity claim."""
        user = self._by_email(identity.email)
        if user:
            if not user.google_id:
                user.google_id = identity.id
                user.profile_picture = identity.picture
                self.session.commit()
                self.session.refresh(user)
            return user

        raw_password, _ = new_reset_token()
        user = User(
            name=identity.name,
            email=_normalize_email(identity.email),
            google_id=identity.id,
            profile_picture=identity.picture,
            password_hash=hash_password(raw_password),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"signup: user_id={user.id} source=oauth")
        return user


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFound("Account not found")
        return account

    def _count(self) -> int:
        stmt = select(func.count(Account.id)).where(Account.user_id == self.user_id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def _unset_defaults(self, *, keep_id: Optional[int] = None) -> None:
        stmt = update(Account).where(
            Account.user_id == self.user_id, Account.is_default.is_(True)
        )
        if keep_id is not None:
            stmt = stmt.where(Account.id != keep_id)
        self.session.execute(
            stmt.values(is_default=False).execution_options(synchronize_session=False)
        )

    def create(self, data: AccountIn) -> Account:
        count = self._count()
        is_default = data.is_default if data.is_default is not None else count == 0
        try:
            if data.is_default:
                self._unset_defaults()
            account = Account(
                user_id=self.user_id,
                name=data.name,
                type=data.type,
                balance_cents=to_cents(data.balance),
                color=data.color or ACCOUNT_COLORS[count % len(ACCOUNT_COLORS)],
                is_default=is_default,
            )
            self.session.add(account)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        fields = data.model_dump(exclude_unset=True)
        try:
            if fields.get("is_default"):
                self._unset_defaults(keep_id=account.id)
            if fields.get("name") is not None:
                account.name = fields["name"]
            if fields.get("type") is not None:
                account.type = fields["type"]
            if fields.get("balance") is not None:
                account.balance_cents = to_cents(fields["balance"])
            if fields.get("color") is not None:
                account.color = fields["color"]
            if fields.get("is_default") is not None:
                account.is_default = fields["is_default"]
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        # Transactions reference accounts by name and are left untouched.
        account = self.get(account_id)
        self.session.delete(account)
        self.session.commit()

    def _debit(self, account_id: int, amount_cents: int) -> None:
        # Balance check and write happen in one statement.
        result = self.session.execute(
            update(Account)
            .where(
                Account.id == account_id,
                Account.user_id == self.user_id,
                Account.balance_cents >= amount_cents,
            )
            .values(balance_cents=Account.balance_cents - amount_cents)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            still_there = self.session.scalar(
                select(Account.id).where(
                    Account.id == account_id, Account.user_id == self.user_id
                )
            )
            if still_there is None:
                raise NotFound("Account not found")
            raise InsufficientBalance("Insufficient balance")

    def _credit(self, account_id: int, amount_cents: int) -> None:
        result = self.session.execute(
            update(Account)
            .where(Account.id == account_id, Account.user_id == self.user_id)
            .values(balance_cents=Account.balance_cents + amount_cents)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound("Account not found")

    def transfer(self, data: TransferIn) -> tuple[Account, Account]:
        """
        Move funds between two of the owner's accounts.

        Debit, credit and the ledger entry commit together; any failure rolls
        all of them back, so a partial transfer is never persisted.
        """
        if data.from_account_id == data.to_account_id:
            raise ValueError("Source and destination accounts cannot be the same")
        amount_cents = to_cents(data.amount)
        if amount_cents <= 0:
            raise ValueError("Amount must be a positive number")

        source = self.get(data.from_account_id)
        target = self.get(data.to_account_id)

        try:
            self._debit(source.id, amount_cents)
            self._credit(target.id, amount_cents)
            self.session.add(
                TransferEntry(
                    user_id=self.user_id,
                    from_account_id=source.id,
                    to_account_id=target.id,
                    from_account_name=source.name,
                    to_account_name=target.name,
                    amount_cents=amount_cents,
                )
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(source)
        self.session.refresh(target)
        logger.info(
            f"transfer: user_id={self.user_id} from={source.id} to={target.id} "
            f"amount_cents={amount_cents}"
        )
        return source, target

    def list_transfers(self, limit: int = 100) -> list[TransferEntry]:
        stmt = (
            select(TransferEntry)
            .where(TransferEntry.user_id == self.user_id)
            .order_by(TransferEntry.created_at.desc(), TransferEntry.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start: Optional[date] = None
    end: Optional[date] = None


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self, filters: TransactionFilters, limit: int = 50) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.start:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.date <= filters.end)
        return self.session.scalars(stmt).all()

    def all_for_period(self, period: Period) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def recent(self, limit: int = 5) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFound("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            category=data.category,
            subcategory=data.subcategory,
            amount_cents=to_cents(data.amount),
            payment_mode=data.payment_mode,
            payee=data.payee,
            account=data.account,
            date=data.date,
            time=data.time,
            remarks=data.remarks,
            attachment=data.attachment,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        fields = data.model_dump(exclude_unset=True)
        for key, value in fields.items():
            if value is None:
                continue
            if key == "amount":
                txn.amount_cents = to_cents(value)
            else:
                setattr(txn, key, value)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


@dataclass(frozen=True)
class BudgetAlert:
    budget: Budget
    progress: BudgetProgress
    message: str


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def list_all(self, *, is_active: Optional[bool] = None) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        if is_active is not None:
            stmt = stmt.where(Budget.is_active.is_(is_active))
        return self.session.scalars(stmt).all()

    def _candidate_transactions(
        self, budget: Budget, today: date
    ) -> list[Transaction]:
        end = budget.end_date or today
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.type == TransactionType.expense,
            Transaction.category == budget.category,
            Transaction.date.between(budget.start_date, end),
        )
        return self.session.scalars(stmt).all()

    def progress(
        self, budget: Budget, *, today: Optional[date] = None
    ) -> BudgetProgress:
        today = today or local_today()
        return compute_progress(
            budget, self._candidate_transactions(budget, today), today=today
        )

    def list_with_progress(
        self, *, is_active: Optional[bool] = None, today: Optional[date] = None
    ) -> list[tuple[Budget, BudgetProgress]]:
        return [
            (budget, self.progress(budget, today=today))
            for budget in self.list_all(is_active=is_active)
        ]

    def get_with_progress(
        self, budget_id: int, *, today: Optional[date] = None
    ) -> tuple[Budget, BudgetProgress]:
        budget = self.get(budget_id)
        return budget, self.progress(budget, today=today)

    @staticmethod
    def _refresh_derived(budget: Budget) -> None:
        budget.end_date = budget_end_date(budget.start_date, budget.period)
        budget.updated_at = datetime.utcnow()

    def create(self, data: BudgetIn) -> Budget:
        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            amount_cents=to_cents(data.amount),
            period=data.period,
            start_date=data.start_date,
            alerts_enabled=data.alerts.enabled,
            alert_threshold=data.alerts.threshold,
            is_active=data.is_active,
        )
        self._refresh_derived(budget)
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_created: user_id={self.user_id} budget_id={budget.id} "
            f"period={budget.period.value} end_date={budget.end_date}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        fields = data.model_dump(exclude_unset=True)
        if fields.get("category") is not None:
            budget.category = fields["category"]
        if fields.get("amount") is not None:
            budget.amount_cents = to_cents(fields["amount"])
        if fields.get("period") is not None:
            budget.period = fields["period"]
        if fields.get("start_date") is not None:
            budget.start_date = fields["start_date"]
        alerts = fields.get("alerts") or {}
        if alerts.get("enabled") is not None:
            budget.alerts_enabled = alerts["enabled"]
        if alerts.get("threshold") is not None:
            budget.alert_threshold = alerts["threshold"]
        if fields.get("is_active") is not None:
            budget.is_active = fields["is_active"]
        self._refresh_derived(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def check_alerts(self, *, today: Optional[date] = None) -> list[BudgetAlert]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.is_active.is_(True),
                Budget.alerts_enabled.is_(True),
            )
            .order_by(Budget.id.asc())
        )
        alerts: list[BudgetAlert] = []
        for budget in self.session.scalars(stmt).all():
            progress = self.progress(budget, today=today)
            if not progress.should_alert:
                continue
            alerts.append(
                BudgetAlert(
                    budget=budget,
                    progress=progress,
                    message=alert_message(budget.category, progress.percentage),
                )
            )
        return alerts


def alerting_user_ids(session: Session) -> list[int]:
    stmt = (
        select(Budget.user_id)
        .where(Budget.is_active.is_(True), Budget.alerts_enabled.is_(True))
        .distinct()
        .order_by(Budget.user_id)
    )
    return list(session.scalars(stmt).all())


def month_bucket(d: date, mode: str) -> str:
    label = MONTH_ABBR[d.month - 1]
    if mode == "year_month":
        return f"{label} {d.year}"
    return label


class DashboardService:
    def __init__(
        self, session: Session, user_id: int, *, month_buckets: Optional[str] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.month_buckets = month_buckets or get_settings().dashboard_month_buckets

    def stats(self, period: Period) -> dict[str, object]:
        transactions = TransactionService(self.session, self.user_id).all_for_period(
            period
        )

        expense_by_category: dict[str, int] = {}
        by_month: dict[str, dict[str, int]] = {}
        total_income = 0
        total_expense = 0
        for txn in transactions:
            key = month_bucket(txn.date, self.month_buckets)
            bucket = by_month.setdefault(key, {"income": 0, "expense": 0})
            if txn.type == TransactionType.income:
                bucket["income"] += txn.amount_cents
                total_income += txn.amount_cents
            else:
                bucket["expense"] += txn.amount_cents
                total_expense += txn.amount_cents
                expense_by_category[txn.category] = (
                    expense_by_category.get(txn.category, 0) + txn.amount_cents
                )

        expense_data = [
            {"name": name, "value": cents_to_amount(cents)}
            for name, cents in expense_by_category.items()
        ]
        # sorted() is stable, so ties keep first-seen order
        ranked = sorted(expense_data, key=lambda row: row["value"], reverse=True)
        top_categories = ranked[:3]
        income_vs_expense = [
            {
                "month": month,
                "income": cents_to_amount(sums["income"]),
                "expense": cents_to_amount(sums["expense"]),
            }
            for month, sums in by_month.items()
        ]

        accounts = AccountService(self.session, self.user_id).list_all()
        recent = TransactionService(self.session, self.user_id).recent(5)

        return {
            "expenseData": expense_data,
            "incomeVsExpense": income_vs_expense,
            "topCategories": [dict(row) for row in top_categories],
            "accountBalances": [
                {"name": acc.name, "balance": cents_to_amount(acc.balance_cents)}
                for acc in accounts
            ],
            "recentTransactions": [
                {
                    "id": txn.id,
                    "payee": txn.payee,
                    "category": txn.category,
                    "subcategory": txn.subcategory,
                    "amount": cents_to_amount(txn.amount_cents),
                    "type": txn.type.value,
                    "date": txn.date.isoformat(),
                }
                for txn in recent
            ],
            "summary": {
                "totalIncome": cents_to_amount(total_income),
                "totalExpense": cents_to_amount(total_expense),
                "balance": cents_to_amount(total_income - total_expense),
            },
        }
