from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import BudgetPeriod


REPORT_SELECTORS = ("week", "month", "year")

_BUDGET_SELECTOR = {
    BudgetPeriod.weekly: "week",
    BudgetPeriod.monthly: "month",
    BudgetPeriod.yearly: "year",
}


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def report_window(selector: str, *, today: Optional[date] = None) -> Period:
    """Window ending on ``today`` (inclusive) for a week, month or year view.

    ``week`` reaches back seven calendar days, so it spans eight dates.
    """
    today = today or local_today()
    if selector == "week":
        return Period("week", today - timedelta(days=7), today)
    if selector == "month":
        return Period("month", month_start(today), today)
    if selector == "year":
        return Period("year", date(today.year, 1, 1), today)
    raise ValueError(f"Unknown report period: {selector}")


def budget_period_start(period: BudgetPeriod, *, today: Optional[date] = None) -> date:
    return report_window(_BUDGET_SELECTOR[BudgetPeriod(period)], today=today).start


def custom_period(start: Optional[date], end: Optional[date]) -> Period:
    start_date = start or date(1970, 1, 1)
    end_date = end or date(9999, 12, 31)
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    return Period("custom", start_date, end_date)
