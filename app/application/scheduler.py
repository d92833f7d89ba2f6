"""
Background scheduler — optional in-process trigger for the daily jobs.

The normal trigger is an external call to POST /schedule-daily-jobs. When
SCHEDULER_ENABLED is set, the same orchestrator also runs here on an
interval, inside the FastAPI process.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_daily_jobs():
    from app.infrastructure.db.session import get_session_factory
    from app.application.daily_jobs import DailyJobOrchestrator

    try:
        DailyJobOrchestrator(get_session_factory()).run_daily_jobs()
    except Exception:
        logger.exception("Daily jobs run failed")


def start_scheduler() -> bool:
    """Register the daily jobs interval job and start. Returns False when disabled."""
    settings = get_settings()
    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled, daily jobs rely on the HTTP trigger")
        return False

    scheduler.add_job(
        _run_daily_jobs,
        "interval",
        minutes=settings.SCHEDULER_INTERVAL_MINUTES,
        id="daily_jobs",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started: daily_jobs (every %d min)", settings.SCHEDULER_INTERVAL_MINUTES)
    return True


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
