"""Read-side figures derived from the ledger.

Functions here are pure: they take already-fetched transactions and never touch
the store, so report and budget numbers can be computed and tested without a
database.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from models import Budget, Transaction, TransactionType
from periods import Period, budget_period_start, report_window


UNCATEGORIZED = "Uncategorized"
UNCATEGORIZED_COLOR = "#6B7280"
MONTH_LABELS = (
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


class BudgetStatus(str, Enum):
    ok = "ok"
    warning = "warning"
    exceeded = "exceeded"


@dataclass(frozen=True)
class CategorySpend:
    name: str
    color: str
    amount_cents: int
    percentage: float


@dataclass(frozen=True)
class MonthBucket:
    month: int
    label: str
    income_cents: int
    expense_cents: int


@dataclass(frozen=True)
class PeriodSummary:
    period: Period
    total_income_cents: int
    total_expense_cents: int
    net_cents: int
    savings_rate: float
    categories: list[CategorySpend]
    monthly: Optional[list[MonthBucket]] = None


@dataclass(frozen=True)
class BudgetEvaluation:
    period_start: date
    amount_cents: int
    spent_cents: int
    remaining_cents: int
    percentage: float
    status: BudgetStatus


def in_period(
    transactions: Iterable[Transaction], period: Period
) -> list[Transaction]:
    return [t for t in transactions if period.contains(t.date)]


def totals(transactions: Iterable[Transaction]) -> tuple[int, int]:
    income = 0
    expense = 0
    for txn in transactions:
        if txn.type == TransactionType.income:
            income += txn.amount_cents
        else:
            expense += txn.amount_cents
    return income, expense


def savings_rate(income_cents: int, expense_cents: int) -> float:
    if income_cents == 0:
        return 0.0
    return (income_cents - expense_cents) / income_cents * 100


def category_breakdown(transactions: Iterable[Transaction]) -> list[CategorySpend]:
    """Expense totals per category, largest first.

    Groups are keyed by category id; transactions without a category share
    one ``Uncategorized`` group. Equal amounts keep the order in which their
    category was first seen.
    """
    groups: dict[Optional[int], list] = {}
    for txn in transactions:
        if txn.type != TransactionType.expense:
            continue
        category = txn.category
        key = category.id if category is not None else None
        if key not in groups:
            if category is None:
                groups[key] = [UNCATEGORIZED, UNCATEGORIZED_COLOR, 0]
            else:
                color = category.color or UNCATEGORIZED_COLOR
                groups[key] = [category.name, color, 0]
        groups[key][2] += txn.amount_cents

    total = sum(amount for _name, _color, amount in groups.values())
    breakdown = [
        CategorySpend(
            name=name,
            color=color,
            amount_cents=amount,
            percentage=(amount / total * 100) if total else 0.0,
        )
        for name, color, amount in groups.values()
    ]
    breakdown.sort(key=lambda item: item.amount_cents, reverse=True)
    return breakdown


def monthly_buckets(
    transactions: Iterable[Transaction], year: int
) -> list[MonthBucket]:
    income = [0] * 12
    expense = [0] * 12
    for txn in transactions:
        if txn.date.year != year:
            continue
        index = txn.date.month - 1
        if txn.type == TransactionType.income:
            income[index] += txn.amount_cents
        else:
            expense[index] += txn.amount_cents
    return [
        MonthBucket(
            month=index + 1,
            label=MONTH_LABELS[index],
            income_cents=income[index],
            expense_cents=expense[index],
        )
        for index in range(12)
    ]


def summarize(
    transactions: Iterable[Transaction],
    selector: str,
    *,
    today: Optional[date] = None,
) -> PeriodSummary:
    period = report_window(selector, today=today)
    everything = list(transactions)
    windowed = in_period(everything, period)
    income, expense = totals(windowed)
    monthly = None
    if selector == "year":
        monthly = monthly_buckets(everything, period.end.year)
    return PeriodSummary(
        period=period,
        total_income_cents=income,
        total_expense_cents=expense,
        net_cents=income - expense,
        savings_rate=savings_rate(income, expense),
        categories=category_breakdown(windowed),
        monthly=monthly,
    )


def budget_percentage(spent_cents: int, amount_cents: int) -> float:
    if amount_cents <= 0:
        raise ValueError("Budget amount must be positive")
    return min(spent_cents / amount_cents * 100, 100.0)


def budget_status(spent_cents: int, amount_cents: int) -> BudgetStatus:
    if amount_cents <= 0:
        raise ValueError("Budget amount must be positive")
    if spent_cents >= amount_cents:
        return BudgetStatus.exceeded
    # spent >= 0.8 * amount, kept in integers
    if spent_cents * 5 >= amount_cents * 4:
        return BudgetStatus.warning
    return BudgetStatus.ok


def evaluate_budget(
    budget: Budget,
    transactions: Iterable[Transaction],
    *,
    today: Optional[date] = None,
) -> BudgetEvaluation:
    start = budget_period_start(budget.period, today=today)
    spent = sum(
        t.amount_cents
        for t in transactions
        if t.type == TransactionType.expense
        and t.category_id == budget.category_id
        and t.date >= start
    )
    return BudgetEvaluation(
        period_start=start,
        amount_cents=budget.amount_cents,
        spent_cents=spent,
        remaining_cents=budget.amount_cents - spent,
        percentage=budget_percentage(spent, budget.amount_cents),
        status=budget_status(spent, budget.amount_cents),
    )
