from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from factories import make_account, make_category
from models import (
    Account,
    RecurringFrequency,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from recurrence import RecurringEngine, calculate_next_date
from schemas import RecurringTransactionIn
from services import RecurringTransactionService, ReportService


def _rule(account_id: int, category_id: int, **overrides) -> RecurringTransaction:
    values = dict(
        user_id=1,
        account_id=account_id,
        category_id=category_id,
        amount_cents=10000,
        type=TransactionType.expense,
        description="Rent",
        frequency=RecurringFrequency.monthly,
        start_date=date(2024, 1, 1),
        next_occurrence=date(2024, 1, 1),
        is_active=True,
    )
    values.update(overrides)
    return RecurringTransaction(**values)


def test_calculate_next_date_snaps_to_month_end():
    anchor = date(2024, 1, 31)
    monthly = RecurringFrequency.monthly
    assert calculate_next_date(monthly, anchor, anchor) == date(2024, 2, 29)
    feb = date(2024, 2, 29)
    assert calculate_next_date(monthly, anchor, feb) == date(2024, 3, 31)
    dec = date(2024, 12, 31)
    assert calculate_next_date(monthly, anchor, dec) == date(2025, 1, 31)


def test_calculate_next_date_other_frequencies():
    start = date(2024, 2, 29)
    daily = calculate_next_date(RecurringFrequency.daily, start, start)
    weekly = calculate_next_date(RecurringFrequency.weekly, start, start)
    yearly = calculate_next_date(RecurringFrequency.yearly, start, start)
    assert daily == date(2024, 3, 1)
    assert weekly == date(2024, 3, 7)
    assert yearly == date(2025, 2, 28)


def test_recurring_engine_idempotent_posts():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        account = make_account(session, balance_cents=50000)
        category = make_category(session, "Rent")
        session.add(_rule(account.id, category.id))
        session.commit()

    with Session(engine) as session:
        rule = session.query(RecurringTransaction).first()
        posted = RecurringEngine(session).catch_up(rule, today=date(2024, 3, 1))
        assert posted == 3

    with Session(engine) as session:
        rule = session.query(RecurringTransaction).first()
        assert rule.next_occurrence == date(2024, 4, 1)
        assert RecurringEngine(session).catch_up(rule, today=date(2024, 3, 1)) == 0
        txn_count = (
            session.query(Transaction)
            .filter(Transaction.recurring_transaction_id == rule.id)
            .count()
        )
        assert txn_count == 3
        account = session.query(Account).first()
        assert account.balance_cents == 50000 - 3 * 10000


def test_recurring_engine_skips_dates_already_posted(session):
    account = make_account(session)
    category = make_category(session, "Rent")
    rule = _rule(account.id, category.id)
    session.add(rule)
    session.flush()
    session.add(
        Transaction(
            user_id=1,
            account_id=account.id,
            category_id=category.id,
            amount_cents=10000,
            type=TransactionType.expense,
            description="Rent",
            date=date(2024, 1, 1),
            recurring_transaction_id=rule.id,
        )
    )
    session.commit()

    posted = RecurringEngine(session).catch_up(rule, today=date(2024, 2, 15))

    assert posted == 1
    assert rule.next_occurrence == date(2024, 3, 1)


def test_recurring_engine_respects_end_date_and_inactive(session):
    account = make_account(session)
    category = make_category(session, "Gym")
    ended = _rule(account.id, category.id, end_date=date(2024, 2, 10))
    paused = _rule(account.id, category.id, is_active=False)
    session.add_all([ended, paused])
    session.commit()

    posted = RecurringEngine(session).post_due(today=date(2024, 6, 1))

    assert posted == 2
    assert session.query(Transaction).count() == 2
    assert session.get(Account, account.id).balance_cents == -20000


def test_recurring_engine_does_not_advance_on_failure(session, monkeypatch):
    def fail_post(self, txn):
        raise RuntimeError("store down")

    monkeypatch.setattr("ledger.BalanceMaintainer.post", fail_post)
    account = make_account(session, balance_cents=1000)
    category = make_category(session, "Rent")
    rule = _rule(account.id, category.id)
    session.add(rule)
    session.commit()

    assert RecurringEngine(session).catch_up(rule, today=date(2024, 3, 1)) == 0

    session.refresh(rule)
    assert rule.next_occurrence == date(2024, 1, 1)
    assert session.get(Account, account.id).balance_cents == 1000


def test_service_creates_rule_and_catches_up(session):
    account = make_account(session)
    category = make_category(session, "Salary", TransactionType.income)
    service = RecurringTransactionService(session, 1)
    rule = service.create(
        RecurringTransactionIn(
            account_id=account.id,
            category_id=category.id,
            amount_cents=300000,
            type=TransactionType.income,
            description="Payroll",
            frequency=RecurringFrequency.weekly,
            start_date=date(2024, 5, 1),
        )
    )
    assert rule.next_occurrence == date(2024, 5, 1)

    assert service.catch_up_all(today=date(2024, 5, 20)) == 3
    assert session.get(Account, account.id).balance_cents == 900000

    service.delete(rule.id)
    assert service.list() == []
    assert session.query(Transaction).count() == 3


def test_deleting_rule_refreshes_cached_dashboard(session):
    account = make_account(session)
    category = make_category(session, "Rent")
    service = RecurringTransactionService(session, 1)
    rule = service.create(
        RecurringTransactionIn(
            account_id=account.id,
            category_id=category.id,
            amount_cents=10000,
            type=TransactionType.expense,
            description="Rent",
            frequency=RecurringFrequency.monthly,
            start_date=date(2024, 5, 1),
        )
    )
    service.catch_up_all(today=date(2024, 5, 2))
    reports = ReportService(session, 1)
    before = reports.dashboard(today=date(2024, 5, 2))
    assert [t.recurring_transaction_id for t in before.recent] == [rule.id]

    service.delete(rule.id)

    after = reports.dashboard(today=date(2024, 5, 2))
    assert after is not before
    assert [t.recurring_transaction_id for t in after.recent] == [None]
