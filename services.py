from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, joinedload
from werkzeug.security import check_password_hash, generate_password_hash

from aggregation import (
    BudgetEvaluation,
    PeriodSummary,
    evaluate_budget,
    summarize,
    totals,
)
from auth import issue_session_token, read_session_token
from cache import derived_views
from config import get_settings
from errors import NotFoundError
from ledger import BalanceMaintainer
from models import (
    Account,
    Budget,
    BudgetPeriod,
    Category,
    Profile,
    RecurringTransaction,
    Transaction,
    TransactionType,
    User,
    UserSession,
)
from periods import (
    Period,
    budget_period_start,
    local_today,
    month_end,
    month_start,
    report_window,
)
from recurrence import RecurringEngine
from schemas import (
    AccountIn,
    BudgetIn,
    CategoryIn,
    CategoryUpdateIn,
    ProfileUpdateIn,
    RecurringTransactionIn,
    SignInIn,
    SignUpIn,
    TransactionIn,
)


logger = logging.getLogger(__name__)


# name, type, icon, color
DEFAULT_CATEGORIES: tuple[tuple[str, TransactionType, str, str], ...] = (
    ("Salary", TransactionType.income, "briefcase", "#10B981"),
    ("Freelance", TransactionType.income, "laptop", "#3B82F6"),
    ("Food & Dining", TransactionType.expense, "utensils", "#EF4444"),
    ("Transportation", TransactionType.expense, "car", "#F59E0B"),
    ("Shopping", TransactionType.expense, "shopping-bag", "#8B5CF6"),
    ("Entertainment", TransactionType.expense, "film", "#EC4899"),
    ("Bills & Utilities", TransactionType.expense, "receipt", "#6366F1"),
    ("Healthcare", TransactionType.expense, "heart", "#14B8A6"),
)


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    query: Optional[str] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    period: Optional[Period] = None


@dataclass(frozen=True)
class DashboardSummary:
    total_balance_cents: int
    month_income_cents: int
    month_expense_cents: int
    recent: list[Transaction]


class ProvisioningService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def provision(
        self, full_name: Optional[str], currency_code: Optional[str] = None
    ) -> Profile:
        """Seed the owner's profile and system categories exactly once.

        The profile row is the marker: if it exists, nothing is created.
        Everything is committed together with whatever the session already
        holds (sign-up adds the user row first), so a failure leaves neither
        the identity nor a partial seed behind.
        """
        existing = self.session.scalar(
            select(Profile).where(Profile.user_id == self.user_id)
        )
        if existing:
            logger.info(f"provisioning_skipped: user={self.user_id}")
            return existing

        profile = Profile(
            user_id=self.user_id,
            full_name=full_name,
            currency_code=(currency_code or get_settings().default_currency).upper(),
        )
        self.session.add(profile)
        self.session.add_all(
            Category(
                user_id=self.user_id,
                name=name,
                type=txn_type,
                icon=icon,
                color=color,
                is_system=True,
            )
            for name, txn_type, icon, color in DEFAULT_CATEGORIES
        )
        self.session.commit()
        self.session.refresh(profile)
        logger.info(
            f"provisioned: user={self.user_id} categories={len(DEFAULT_CATEGORIES)}"
        )
        return profile


class IdentityService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def sign_up(self, data: SignUpIn) -> User:
        existing = self.session.scalar(select(User).where(User.email == data.email))
        if existing:
            raise ValueError("Email already registered")
        user = User(
            email=data.email, password_hash=generate_password_hash(data.password)
        )
        try:
            self.session.add(user)
            self.session.flush()
            ProvisioningService(self.session, user.id).provision(data.full_name)
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(user)
        return user

    def sign_in(self, data: SignInIn) -> str:
        user = self.session.scalar(select(User).where(User.email == data.email))
        if not user or not check_password_hash(user.password_hash, data.password):
            raise ValueError("Invalid credentials")
        token_id = secrets.token_urlsafe(24)
        self.session.add(UserSession(user_id=user.id, token_id=token_id))
        self.session.commit()
        return issue_session_token(user.id, token_id)

    def sign_out(self, token: str) -> None:
        decoded = read_session_token(token)
        if decoded is None:
            return
        user_id, token_id = decoded
        self.session.execute(
            delete(UserSession).where(
                UserSession.user_id == user_id, UserSession.token_id == token_id
            )
        )
        self.session.commit()

    def current_user_id(self, token: Optional[str]) -> Optional[int]:
        if not token:
            return None
        decoded = read_session_token(token)
        if decoded is None:
            return None
        user_id, token_id = decoded
        active = self.session.scalar(
            select(UserSession.id).where(
                UserSession.user_id == user_id, UserSession.token_id == token_id
            )
        )
        return user_id if active else None


class ProfileService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Profile:
        profile = self.session.scalar(
            select(Profile).where(Profile.user_id == self.user_id)
        )
        if not profile:
            raise NotFoundError("Profile not found")
        return profile

    def update(self, data: ProfileUpdateIn) -> Profile:
        profile = self.get()
        if data.full_name is not None:
            profile.full_name = data.full_name.strip()
        if data.currency_code is not None:
            profile.currency_code = data.currency_code.upper()
        self.session.commit()
        self.session.refresh(profile)
        return profile


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, include_inactive: bool = False) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            opening_balance_cents=data.balance_cents,
            balance_cents=data.balance_cents,
            currency_code=data.currency_code.upper(),
            is_active=True,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        derived_views.invalidate(self.user_id)
        return account

    def rename(self, account_id: int, name: str) -> Account:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Account name cannot be empty")
        account = self.get(account_id)
        account.name = clean_name
        self.session.commit()
        derived_views.invalidate(self.user_id)
        return account

    def _set_active(self, account_id: int, active: bool) -> Account:
        account = self.get(account_id)
        account.is_active = active
        self.session.commit()
        derived_views.invalidate(self.user_id)
        return account

    def deactivate(self, account_id: int) -> Account:
        return self._set_active(account_id, False)

    def reactivate(self, account_id: int) -> Account:
        return self._set_active(account_id, True)

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account.id,
            )
        )
        self.session.execute(
            delete(RecurringTransaction).where(
                RecurringTransaction.user_id == self.user_id,
                RecurringTransaction.account_id == account.id,
            )
        )
        self.session.delete(account)
        self.session.commit()
        derived_views.invalidate(self.user_id)

    def total_balance(self) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
                Account.user_id == self.user_id, Account.is_active.is_(True)
            )
        ).scalar_one()
        return int(total or 0)

    def reconcile(self, account_id: int) -> int:
        return BalanceMaintainer(self.session, self.user_id).reconcile(account_id)


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def _name_taken(
        self, name: str, type: TransactionType, exclude_id: Optional[int] = None
    ) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == type,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: CategoryIn) -> Category:
        clean_name = data.name.strip()
        if not clean_name:
            raise ValueError("Category name cannot be empty")
        if self._name_taken(clean_name, data.type):
            raise ValueError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=clean_name,
            type=data.type,
            icon=data.icon,
            color=data.color,
            is_system=False,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdateIn) -> Category:
        category = self.get(category_id)
        if data.name is not None:
            clean_name = data.name.strip()
            if not clean_name:
                raise ValueError("Category name cannot be empty")
            if self._name_taken(clean_name, category.type, exclude_id=category.id):
                raise ValueError("Category with this name already exists")
            category.name = clean_name
        if data.color is not None:
            category.color = data.color
        if data.icon is not None:
            category.icon = data.icon
        self.session.commit()
        self.session.refresh(category)
        derived_views.invalidate(self.user_id)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if category.is_system:
            raise ValueError("System categories cannot be deleted")

        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.category_id == category.id,
            )
            .values(category_id=None)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(
            update(RecurringTransaction)
            .where(
                RecurringTransaction.user_id == self.user_id,
                RecurringTransaction.category_id == category.id,
            )
            .values(category_id=None)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(
            delete(Budget).where(
                Budget.user_id == self.user_id, Budget.category_id == category.id
            )
        )
        self.session.delete(category)
        self.session.commit()
        self.session.expire_all()
        derived_views.invalidate(self.user_id)


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.maintainer = BalanceMaintainer(session, user_id)

    def create(self, data: TransactionIn) -> Transaction:
        return self.maintainer.apply_create(data)

    def delete(self, transaction_id: int) -> None:
        self.maintainer.apply_delete(transaction_id)

    def replace(self, transaction_id: int, data: TransactionIn) -> Transaction:
        return self.maintainer.replace(transaction_id, data)

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.account))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .outerjoin(Category, Category.id == Transaction.category_id)
            .options(joinedload(Transaction.category), joinedload(Transaction.account))
            .where(Transaction.user_id == self.user_id)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
            .offset(offset)
            .limit(limit)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.period:
            stmt = stmt.where(
                Transaction.date.between(filters.period.start, filters.period.end)
            )
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Transaction.description).like(like),
                    func.lower(func.coalesce(Category.name, "")).like(like),
                )
            )
        return self.session.scalars(stmt).unique().all()

    def recent(self, limit: int = 5) -> list[Transaction]:
        return self.list(limit=limit)

    def between(self, start: date, end: Optional[date] = None) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id, Transaction.date >= start)
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        if end is not None:
            stmt = stmt.where(Transaction.date <= end)
        return self.session.scalars(stmt).unique().all()


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at, Budget.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: BudgetIn) -> Budget:
        category = self.session.get(Category, data.category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        if category.type != TransactionType.expense:
            raise ValueError("Budgets can only be set for expense categories")
        start_date = data.start_date or local_today()
        if data.end_date and data.end_date < start_date:
            raise ValueError("End date must be after start date")

        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            period=data.period,
            start_date=start_date,
            end_date=data.end_date,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        derived_views.invalidate(self.user_id)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        self.session.delete(budget)
        self.session.commit()
        derived_views.invalidate(self.user_id)

    def evaluate_all(
        self, today: Optional[date] = None
    ) -> list[tuple[Budget, BudgetEvaluation]]:
        today = today or local_today()

        def compute() -> list[tuple[Budget, BudgetEvaluation]]:
            budgets = self.list_all()
            if not budgets:
                return []
            earliest = min(
                budget_period_start(BudgetPeriod(b.period), today=today)
                for b in budgets
            )
            fetched = TransactionService(self.session, self.user_id).between(earliest)
            expenses = [t for t in fetched if t.type == TransactionType.expense]
            return [(b, evaluate_budget(b, expenses, today=today)) for b in budgets]

        return derived_views.get_or_compute(
            self.user_id, ("budgets", today.isoformat()), compute
        )


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionService(session, user_id)

    def summary(self, selector: str, today: Optional[date] = None) -> PeriodSummary:
        today = today or local_today()
        window = report_window(selector, today=today)

        def compute() -> PeriodSummary:
            # The year view buckets every transaction of the year, including
            # ones dated after today.
            end = None if selector == "year" else window.end
            fetched = self.transactions.between(window.start, end)
            return summarize(fetched, selector, today=today)

        return derived_views.get_or_compute(
            self.user_id, ("summary", selector, today.isoformat()), compute
        )

    def dashboard(self, today: Optional[date] = None) -> DashboardSummary:
        today = today or local_today()

        def compute() -> DashboardSummary:
            month = self.transactions.between(month_start(today), month_end(today))
            income, expense = totals(month)
            return DashboardSummary(
                total_balance_cents=AccountService(
                    self.session, self.user_id
                ).total_balance(),
                month_income_cents=income,
                month_expense_cents=expense,
                recent=self.transactions.recent(limit=5),
            )

        return derived_views.get_or_compute(
            self.user_id, ("dashboard", today.isoformat()), compute
        )


class RecurringTransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, rule_id: int) -> RecurringTransaction:
        rule = self.session.get(RecurringTransaction, rule_id)
        if not rule or rule.user_id != self.user_id:
            raise NotFoundError("Recurring transaction not found")
        return rule

    def list(self) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .options(joinedload(RecurringTransaction.category))
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(RecurringTransaction.next_occurrence, RecurringTransaction.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: RecurringTransactionIn) -> RecurringTransaction:
        account = self.session.get(Account, data.account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category or category.user_id != self.user_id:
                raise NotFoundError("Category not found")
            if category.type != data.type:
                raise ValueError("Category type mismatch")
        if data.end_date and data.end_date < data.start_date:
            raise ValueError("End date must be after start date")

        rule = RecurringTransaction(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            type=data.type,
            description=data.description.strip(),
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            next_occurrence=data.start_date,
            is_active=True,
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def deactivate(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        rule.is_active = False
        self.session.commit()

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.recurring_transaction_id == rule.id,
            )
            .values(recurring_transaction_id=None)
            .execution_options(synchronize_session=False)
        )
        self.session.delete(rule)
        self.session.commit()
        self.session.expire_all()
        derived_views.invalidate(self.user_id)

    def catch_up_all(self, today: Optional[date] = None) -> int:
        return RecurringEngine(self.session).post_due(today, user_id=self.user_id)


def catch_up_all_owners(session: Session, today: Optional[date] = None) -> int:
    return RecurringEngine(session).post_due(today)
