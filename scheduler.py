import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from database import session_scope
from periods import local_now, previous_month
from services import ReportService, StorageUnavailable, UserService


logger = logging.getLogger(__name__)


class ReportWarmupScheduler:
    """Caches last month's report for every user once the month has closed."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def run_job(self, source: str = "manual", now: Optional[datetime] = None) -> int:
        now = now or local_now(self.settings.timezone)
        year, month = previous_month(now)
        logger.info(f"report_warmup_run: source={source} year={year} month={month}")

        with session_scope(self.session_factory) as session:
            user_ids = [user.id for user in UserService(session, self.settings).list_all()]

        warmed = 0
        for user_id in user_ids:
            with session_scope(self.session_factory) as session:
                try:
                    ReportService(session, self.settings).get_report(
                        user_id, year, month, now
                    )
                    warmed += 1
                except StorageUnavailable:
                    logger.warning(
                        f"report_warmup_failed: source={source} user_id={user_id}",
                        exc_info=True,
                    )
        logger.info(f"report_warmup_run: source={source} reports_warmed={warmed}")
        return warmed

    def start(self) -> None:
        self.run_job("startup")

        trigger = CronTrigger(day=1, hour=0, minute=30)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["monthly_00:30"],
            id="report_warmup_monthly",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with monthly report warm-up on day 1 at 00:30")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
