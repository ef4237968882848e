import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from periods import local_now
from services import deliver_due_reminders, refresh_all_alerts


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _deliver_reminders(self, source: str = "manual") -> None:
        with session_scope() as session:
            count = deliver_due_reminders(session, local_now())
        if count:
            logger.info(f"reminders_delivered: source={source} count={count}")

    def _refresh_alerts(self, source: str = "manual") -> None:
        logger.info(f"alerts_refresh_run: source={source}")
        with session_scope() as session:
            users = refresh_all_alerts(session, local_now())
        logger.info(f"alerts_refresh_run: source={source} users={users}")

    def start(self) -> None:
        self._deliver_reminders("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._refresh_alerts,
            trigger,
            args=["daily_03:15"],
            id="alerts_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(minutes=5)
        self.scheduler.add_job(
            self._deliver_reminders,
            trigger,
            args=["every_5_minutes"],
            id="reminders_interval",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 alert refresh and 5 minute reminders")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
