from datetime import date

import pytest

from aggregation import BudgetStatus
from cache import derived_views
from errors import NotFoundError
from factories import make_account, make_category
from models import Account, BudgetPeriod, TransactionType
from schemas import BudgetIn, TransactionIn
from services import BudgetService, TransactionService


TODAY = date(2024, 6, 20)


def _spend(session, account_id: int, category_id: int, amount_cents: int, on: date):
    return TransactionService(session, 1).create(
        TransactionIn(
            account_id=account_id,
            category_id=category_id,
            amount_cents=amount_cents,
            type=TransactionType.expense,
            description="Groceries",
            date=on,
        )
    )


def test_monthly_budget_warning_then_exceeded(session) -> None:
    account = make_account(session, balance_cents=100_000)
    food = make_category(session, "Food")
    budgets = BudgetService(session, 1)
    budget = budgets.create(
        BudgetIn(
            category_id=food.id,
            amount_cents=20_000,
            period=BudgetPeriod.monthly,
            start_date=date(2024, 1, 1),
        )
    )
    _spend(session, account.id, food.id, 10_000, date(2024, 6, 2))
    _spend(session, account.id, food.id, 8_000, date(2024, 6, 19))
    # Previous month does not count toward a monthly budget.
    _spend(session, account.id, food.id, 9_000, date(2024, 5, 31))

    [(evaluated_budget, evaluation)] = budgets.evaluate_all(today=TODAY)
    assert evaluated_budget.id == budget.id
    assert evaluation.spent_cents == 18_000
    assert evaluation.percentage == pytest.approx(90.0)
    assert evaluation.status == BudgetStatus.warning

    _spend(session, account.id, food.id, 3_000, date(2024, 6, 20))

    [(_, evaluation)] = budgets.evaluate_all(today=TODAY)
    assert evaluation.spent_cents == 21_000
    assert evaluation.percentage == 100.0
    assert evaluation.status == BudgetStatus.exceeded
    assert evaluation.remaining_cents == -1_000


def test_weekly_budget_only_counts_its_category(session) -> None:
    account = make_account(session)
    food = make_category(session, "Food")
    fun = make_category(session, "Fun")
    budgets = BudgetService(session, 1)
    budgets.create(
        BudgetIn(
            category_id=food.id,
            amount_cents=5_000,
            period=BudgetPeriod.weekly,
            start_date=date(2024, 1, 1),
        )
    )
    _spend(session, account.id, food.id, 1_000, date(2024, 6, 13))
    _spend(session, account.id, food.id, 1_000, date(2024, 6, 12))
    _spend(session, account.id, fun.id, 4_000, date(2024, 6, 18))

    [(_, evaluation)] = budgets.evaluate_all(today=TODAY)
    assert evaluation.period_start == date(2024, 6, 13)
    assert evaluation.spent_cents == 1_000
    assert evaluation.status == BudgetStatus.ok


def test_budget_requires_expense_category(session) -> None:
    salary = make_category(session, "Salary", TransactionType.income)
    with pytest.raises(ValueError, match="expense categories"):
        BudgetService(session, 1).create(
            BudgetIn(category_id=salary.id, amount_cents=1_000)
        )
    with pytest.raises(NotFoundError):
        BudgetService(session, 2).create(
            BudgetIn(category_id=salary.id, amount_cents=1_000)
        )


def test_delete_budget_has_no_ledger_effect(session) -> None:
    account = make_account(session, balance_cents=5_000)
    food = make_category(session, "Food")
    budgets = BudgetService(session, 1)
    budget = budgets.create(
        BudgetIn(category_id=food.id, amount_cents=1_000, start_date=TODAY)
    )
    _spend(session, account.id, food.id, 700, TODAY)

    budgets.delete(budget.id)

    assert budgets.list_all() == []
    assert session.get(Account, account.id).balance_cents == 4_300
    with pytest.raises(NotFoundError):
        budgets.delete(budget.id)


def test_evaluation_is_cached_until_a_mutation(session) -> None:
    account = make_account(session)
    food = make_category(session, "Food")
    budgets = BudgetService(session, 1)
    budgets.create(
        BudgetIn(category_id=food.id, amount_cents=1_000, start_date=TODAY)
    )
    budgets.evaluate_all(today=TODAY)
    assert (1, ("budgets", TODAY.isoformat())) in derived_views

    _spend(session, account.id, food.id, 100, TODAY)
    assert (1, ("budgets", TODAY.isoformat())) not in derived_views
