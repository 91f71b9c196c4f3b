import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import session_scope
from periods import local_today
from services import catch_up_all_owners


logger = logging.getLogger(__name__)


class SchedulerManager:
    """Posts due recurring transactions for every owner in the background."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        settings = get_settings()
        self.enabled = settings.recurring_posting
        self.timezone = settings.timezone
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def post_due(self, source: str = "manual", today: Optional[date] = None) -> int:
        today = today or local_today()
        logger.info(f"recurring_posting: source={source} today={today}")
        with session_scope(self.session_factory) as session:
            count = catch_up_all_owners(session, today)
        logger.info(f"recurring_posting: source={source} occurrences_posted={count}")
        return count

    def start(self) -> None:
        if not self.enabled:
            logger.info("Recurring posting disabled; scheduler not started")
            return

        self.post_due("startup")
        # job id, trigger, label, misfire grace (seconds)
        jobs = (
            (
                "recurring_daily",
                CronTrigger(hour=3, minute=15, timezone=self.timezone),
                "daily_03:15",
                3600,
            ),
            (
                "recurring_hourly_safety",
                IntervalTrigger(hours=1),
                "hourly_safety_net",
                300,
            ),
        )
        for job_id, trigger, label, grace in jobs:
            self.scheduler.add_job(
                self.post_due,
                trigger,
                args=[label],
                id=job_id,
                replace_existing=True,
                misfire_grace_time=grace,
            )
        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
