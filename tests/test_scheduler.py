from datetime import date

from sqlalchemy.pool import StaticPool

from config import get_settings
from database import build_engine, build_session_factory, init_db
from factories import make_account, make_category
from models import Account, RecurringFrequency, RecurringTransaction, TransactionType
from scheduler import SchedulerManager


def _factory_with_rule():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    factory = build_session_factory(engine)
    with factory() as session:
        account = make_account(session, balance_cents=5000)
        category = make_category(session, "Streaming")
        session.add(
            RecurringTransaction(
                user_id=1,
                account_id=account.id,
                category_id=category.id,
                amount_cents=1500,
                type=TransactionType.expense,
                description="Streaming",
                frequency=RecurringFrequency.monthly,
                start_date=date(2024, 1, 15),
                next_occurrence=date(2024, 1, 15),
            )
        )
        session.commit()
    return factory


def test_post_due_runs_catch_up_for_every_owner():
    factory = _factory_with_rule()
    manager = SchedulerManager(factory)

    assert manager.post_due("test", today=date(2024, 3, 20)) == 3
    assert manager.post_due("test", today=date(2024, 3, 20)) == 0

    with factory() as session:
        assert session.query(Account).one().balance_cents == 5000 - 3 * 1500


def test_disabled_scheduler_does_not_start(monkeypatch):
    monkeypatch.setenv("BUDGET_RECURRING_POSTING", "off")
    get_settings.cache_clear()
    try:
        manager = SchedulerManager(_factory_with_rule())
        manager.start()
        assert not manager.scheduler.running
    finally:
        get_settings.cache_clear()
