import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        token_max_age_hours: int,
        budget_alert_threshold: float,
        recurring_cron_hour: int,
        recurring_cron_minute: int,
        run_recurring_on_startup: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.token_max_age_hours = token_max_age_hours
        self.budget_alert_threshold = budget_alert_threshold
        self.recurring_cron_hour = recurring_cron_hour
        self.recurring_cron_minute = recurring_cron_minute
        self.run_recurring_on_startup = run_recurring_on_startup


def _data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_data_dir() / 'finance.db'}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("FINANCE_TIMEZONE", "Europe/Berlin"),
        auth_secret=os.getenv(
            "FINANCE_AUTH_SECRET",
            "4c1d0f8e27b3a95c6e0f1a2b7d8c3e4f5a6b9c0d1e2f3a4b5c6d7e8f9a0b1c2d",
        ),
        token_max_age_hours=int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "24")),
        budget_alert_threshold=float(
            os.getenv("FINANCE_BUDGET_ALERT_THRESHOLD", "80")
        ),
        recurring_cron_hour=int(os.getenv("FINANCE_RECURRING_CRON_HOUR", "0")),
        recurring_cron_minute=int(os.getenv("FINANCE_RECURRING_CRON_MINUTE", "0")),
        run_recurring_on_startup=_env_flag("FINANCE_RUN_RECURRING_ON_STARTUP", True),
    )
