import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from cache import derived_views
from ledger import BalanceMaintainer
from models import RecurringFrequency, RecurringTransaction, Transaction
from periods import local_today


logger = logging.getLogger(__name__)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def calculate_next_date(
    frequency: RecurringFrequency, anchor_date: date, from_date: date
) -> date:
    """Occurrence after ``from_date``.

    Monthly and yearly schedules keep the anchor's day of month, snapping to
    the last day when a month is shorter (Jan 31 -> Feb 29 -> Mar 31).
    """
    if frequency == RecurringFrequency.daily:
        return from_date + timedelta(days=1)
    if frequency == RecurringFrequency.weekly:
        return from_date + timedelta(weeks=1)
    if frequency == RecurringFrequency.monthly:
        return _add_months(from_date, 1, desired_day=anchor_date.day)
    return _add_months(from_date, 12, desired_day=anchor_date.day)


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def catch_up(
        self, rule: RecurringTransaction, today: Optional[date] = None
    ) -> int:
        today = today or local_today()
        rule_id = rule.id
        maintainer = BalanceMaintainer(self.session, rule.user_id)
        posted_count = 0
        iterations = 0
        max_iterations = 400
        while (
            rule.is_active
            and rule.next_occurrence <= today
            and iterations < max_iterations
        ):
            if rule.end_date and rule.next_occurrence > rule.end_date:
                break
            occurrence_date = rule.next_occurrence
            try:
                posted = self._post_occurrence(maintainer, rule, occurrence_date)
                rule.next_occurrence = calculate_next_date(
                    rule.frequency, rule.start_date, occurrence_date
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                logger.exception(
                    f"recurring_post_failed: rule={rule_id} date={occurrence_date}"
                )
                break
            if posted:
                posted_count += 1
            iterations += 1
        if posted_count:
            derived_views.invalidate(rule.user_id)
        return posted_count

    def post_due(
        self, today: Optional[date] = None, user_id: Optional[int] = None
    ) -> int:
        today = today or local_today()
        stmt = (
            select(RecurringTransaction)
            .where(
                RecurringTransaction.is_active.is_(True),
                RecurringTransaction.next_occurrence <= today,
            )
            .order_by(RecurringTransaction.next_occurrence, RecurringTransaction.id)
        )
        if user_id is not None:
            stmt = stmt.where(RecurringTransaction.user_id == user_id)
        rules = self.session.scalars(stmt).all()
        return sum(self.catch_up(rule, today) for rule in rules)

    def _post_occurrence(
        self,
        maintainer: BalanceMaintainer,
        rule: RecurringTransaction,
        occurrence_date: date,
    ) -> bool:
        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == rule.user_id,
                Transaction.recurring_transaction_id == rule.id,
                Transaction.date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False

        maintainer.post(
            Transaction(
                user_id=rule.user_id,
                account_id=rule.account_id,
                category_id=rule.category_id,
                amount_cents=rule.amount_cents,
                type=rule.type,
                description=rule.description,
                date=occurrence_date,
                notes="",
                recurring_transaction_id=rule.id,
            )
        )
        return True
