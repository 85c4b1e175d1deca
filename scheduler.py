import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import BudgetService, alerting_user_ids


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def sweep_alerts(session) -> int:
    """
    Evaluate budget alerts for every user that has alerting budgets.

    Log-only monitor: nothing is sent to users. Clients fetch their alerts
    from /api/budgets/alerts/check.
    """
    triggered = 0
    for user_id in alerting_user_ids(session):
        alerts = BudgetService(session, user_id).check_alerts()
        for alert in alerts:
            logger.info(
                f"budget_alert: user_id={user_id} budget_id={alert.budget.id} "
                f"percentage={alert.progress.percentage:.1f}"
            )
        triggered += len(alerts)
    return triggered


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.interval_secs = settings.alert_sweep_secs
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        with session_scope() as session:
            count = sweep_alerts(session)
        logger.info(f"alert_sweep: source={source} alerts_triggered={count}")

    def start(self) -> None:
        if self.interval_secs <= 0:
            logger.info("Alert sweep disabled")
            return

        trigger = IntervalTrigger(seconds=self.interval_secs)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="budget_alert_sweep",
            replace_existing=True,
            misfire_grace_time=self.interval_secs,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with {self.interval_secs}s alert sweep")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
