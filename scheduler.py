import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import SessionLocal, session_scope
from periods import local_now
from recurrence import RecurringEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

JOB_ID = "recurring_daily"


class SchedulerManager:
    """Owns the daily recurring-transaction job for one process.

    Build one at startup and hand it to whoever needs to stop it; there is no
    module-level instance. Two processes running their own manager against
    the same database will both advance the same rows.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Optional[Callable[[], datetime]] = None,
        *,
        run_on_start: Optional[bool] = None,
    ) -> None:
        settings = get_settings()
        self.settings = settings
        self.session_factory = session_factory
        self.clock = clock or local_now
        self.run_on_start = (
            settings.run_recurring_on_startup if run_on_start is None else run_on_start
        )
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def run_once(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        try:
            with session_scope(self.session_factory) as session:
                created = RecurringEngine(session, self.clock).post_due()
        except Exception:
            logger.exception(f"scheduler_run_failed: source={source}")
            return 0
        logger.info(f"scheduler_run: source={source} created={created}")
        return created

    def start(self) -> None:
        if self._started:
            logger.info("Recurring scheduler already running; start ignored")
            return

        if self.run_on_start:
            self.run_once("startup")

        trigger = CronTrigger(
            hour=self.settings.recurring_cron_hour,
            minute=self.settings.recurring_cron_minute,
            timezone=self.settings.timezone,
        )
        label = (
            f"daily_{self.settings.recurring_cron_hour:02d}:"
            f"{self.settings.recurring_cron_minute:02d}"
        )
        self.scheduler.add_job(
            self.run_once,
            trigger,
            args=[label],
            id=JOB_ID,
            replace_existing=True,
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self._started = True
        logger.info(f"Recurring scheduler started with {label}")

    def stop(self) -> None:
        if not self._started:
            return
        if self.scheduler.running:
            # A firing already in progress is left to finish.
            self.scheduler.shutdown(wait=False)
        self._started = False
        logger.info("Recurring scheduler stopped")
