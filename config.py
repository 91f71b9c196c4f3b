import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        default_currency: str,
        recurring_posting: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.default_currency = default_currency
        self.recurring_posting = recurring_posting


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("BUDGET_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'budget.db'}"
    timezone = os.getenv("BUDGET_TIMEZONE", "UTC")
    session_secret = os.getenv(
        "BUDGET_SESSION_SECRET",
        "3f0c9a4e1b7d52c86a0f4e9d2b1c7a58e6d3f0b9a2c4e7d1f8b5a3c6e9d2f0a1",
    )
    session_max_age_hours = int(os.getenv("BUDGET_SESSION_MAX_AGE_HOURS", "720"))
    default_currency = os.getenv("BUDGET_DEFAULT_CURRENCY", "USD").upper()
    recurring_posting = _env_flag("BUDGET_RECURRING_POSTING", True)
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        default_currency=default_currency,
        recurring_posting=recurring_posting,
    )
