from datetime import date

import pytest

from factories import make_account, make_category
from models import Budget, BudgetPeriod, Category, Transaction, TransactionType
from schemas import CategoryIn, CategoryUpdateIn, TransactionIn
from services import CategoryService, ProvisioningService, TransactionService


def test_system_categories_cannot_be_deleted(session) -> None:
    ProvisioningService(session, 1).provision("Owner")
    categories = CategoryService(session, 1)
    salary = next(c for c in categories.list_all() if c.name == "Salary")

    with pytest.raises(ValueError, match="System categories"):
        categories.delete(salary.id)
    assert session.get(Category, salary.id) is not None


def test_list_filters_by_type(session) -> None:
    ProvisioningService(session, 1).provision("Owner")
    income = CategoryService(session, 1).list_all(TransactionType.income)
    assert sorted(c.name for c in income) == ["Freelance", "Salary"]


def test_create_rejects_duplicate_names(session) -> None:
    categories = CategoryService(session, 1)
    categories.create(CategoryIn(name="Pets", type=TransactionType.expense))
    with pytest.raises(ValueError, match="already exists"):
        categories.create(CategoryIn(name=" pets ", type=TransactionType.expense))
    # Same name on the other side of the ledger is fine.
    categories.create(CategoryIn(name="Pets", type=TransactionType.income))


def test_update_changes_presentation(session) -> None:
    category = CategoryService(session, 1).create(
        CategoryIn(name="Pets", type=TransactionType.expense)
    )
    updated = CategoryService(session, 1).update(
        category.id, CategoryUpdateIn(name="Pet care", color="#112233")
    )
    assert updated.name == "Pet care"
    assert updated.color == "#112233"
    assert updated.icon == "folder"


def test_delete_keeps_transactions_uncategorized(session) -> None:
    account = make_account(session, balance_cents=1_000)
    pets = make_category(session, "Pets")
    txn = TransactionService(session, 1).create(
        TransactionIn(
            account_id=account.id,
            category_id=pets.id,
            amount_cents=250,
            type=TransactionType.expense,
            description="Food bowl",
            date=date(2024, 2, 2),
        )
    )
    session.add(
        Budget(
            user_id=1,
            category_id=pets.id,
            amount_cents=1_000,
            period=BudgetPeriod.monthly,
            start_date=date(2024, 1, 1),
        )
    )
    session.commit()

    CategoryService(session, 1).delete(pets.id)

    remaining = session.get(Transaction, txn.id)
    assert remaining is not None
    assert remaining.category_id is None
    assert session.query(Budget).count() == 0
    assert session.get(Category, pets.id) is None
