"""
Background scheduler: runs periodic jobs inside the FastAPI process.

Jobs:
  - Billing sweeps (every SWEEP_INTERVAL_MINUTES)
  - Period rollover sweep (daily, 00:05 in the configured zone)
  - Reminder deliveries (one-shot DateTrigger jobs, see reminder_delivery)
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from subtracker.config import Settings

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "billing_sweep"
ROLLOVER_JOB_ID = "period_rollover"


def build_scheduler(settings: Settings) -> BackgroundScheduler:
    return BackgroundScheduler(daemon=True, timezone=settings.TIMEZONE)


def run_sweeps(store) -> None:
    """Auto-renewal + payment-reset sweep; errors are logged, never raised."""
    try:
        result = store.refresh()
    except Exception:
        logger.exception("Billing sweep job failed")
        return
    if result.changed:
        logger.info(
            "Billing sweep: %d renewed, %d payment flag(s) reset",
            len(result.renewed), len(result.reset),
        )


def start_scheduler(scheduler: BackgroundScheduler, store, settings: Settings) -> None:
    """Register the sweep jobs and start the scheduler."""
    scheduler.add_job(
        run_sweeps,
        "interval",
        minutes=settings.SWEEP_INTERVAL_MINUTES,
        args=[store],
        id=SWEEP_JOB_ID,
        replace_existing=True,
    )

    # Period rollover, just after midnight so "today" has moved on
    scheduler.add_job(
        run_sweeps,
        CronTrigger(hour=0, minute=5, timezone=settings.TIMEZONE),
        args=[store],
        id=ROLLOVER_JOB_ID,
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
    logger.info(
        "Scheduler started: billing_sweep (every %d min), period_rollover (00:05 %s)",
        settings.SWEEP_INTERVAL_MINUTES, settings.TIMEZONE,
    )


def shutdown_scheduler(scheduler: BackgroundScheduler) -> None:
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
