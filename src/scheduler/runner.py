"""Job scheduler for the time-triggered confirmation passes."""
from __future__ import annotations

import signal
import sys
import time
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from core.config import get_settings
from core.logging_config import get_logger, setup_logging
from scheduler.jobs import run_for_tenants, run_process_job, run_schedule_job, run_sweep_job

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def run_monthly_scheduling() -> None:
    """Schedule next month's confirmations for every tenant."""
    LOGGER.info("Starting scheduled monthly confirmation pass...")
    results = run_for_tenants(run_schedule_job)
    LOGGER.info(
        "Monthly scheduling finished: %d/%d tenants succeeded",
        sum(1 for r in results if r["success"]),
        len(results),
    )


def run_daily_dispatch() -> None:
    """Dispatch due confirmations for every tenant."""
    LOGGER.info("Starting scheduled dispatch job...")
    results = run_for_tenants(run_process_job)
    LOGGER.info(
        "Daily dispatch finished: %d/%d tenants succeeded",
        sum(1 for r in results if r["success"]),
        len(results),
    )


def run_daily_sweep() -> None:
    """Fail overdue pending confirmations for every tenant."""
    LOGGER.info("Starting scheduled overdue sweep...")
    results = run_for_tenants(run_sweep_job)
    LOGGER.info(
        "Overdue sweep finished: %d/%d tenants succeeded",
        sum(1 for r in results if r["success"]),
        len(results),
    )


def build_scheduler() -> BackgroundScheduler:
    """Create a scheduler with the configured cron jobs, not yet started."""
    scheduler = BackgroundScheduler(timezone="UTC")

    # Schedule next month's reminders on the configured day of each month
    scheduler.add_job(
        run_monthly_scheduling,
        CronTrigger(day=SETTINGS.scheduler_monthly_day, hour=SETTINGS.scheduler_daily_hour, minute=0),
        id="monthly_scheduling",
        replace_existing=True,
        name="Monthly Owner Confirmation Scheduling",
    )

    # Sweep first so overdue records are not dispatched late
    scheduler.add_job(
        run_daily_sweep,
        CronTrigger(hour=SETTINGS.scheduler_daily_hour, minute=0),
        id="daily_sweep",
        replace_existing=True,
        name="Daily Overdue Sweep",
    )

    scheduler.add_job(
        run_daily_dispatch,
        CronTrigger(hour=SETTINGS.scheduler_daily_hour, minute=15),
        id="daily_dispatch",
        replace_existing=True,
        name="Daily Confirmation Dispatch",
    )
    return scheduler


def start_scheduler() -> BackgroundScheduler:
    """
    Start the background scheduler with configured jobs.

    Returns:
        The running BackgroundScheduler instance.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        LOGGER.warning("Scheduler is already running")
        return _scheduler

    _scheduler = build_scheduler()
    _scheduler.start()
    LOGGER.info("Scheduler started with %d jobs.", len(_scheduler.get_jobs()))

    return _scheduler


def stop_scheduler() -> None:
    """Stop the background scheduler gracefully."""
    global _scheduler

    if _scheduler is not None:
        LOGGER.info("Stopping scheduler...")
        _scheduler.shutdown(wait=True)
        _scheduler = None
        LOGGER.info("Scheduler stopped.")
    else:
        LOGGER.warning("Scheduler is not running")


def _signal_handler(signum: int, frame: object) -> None:
    """Handle shutdown signals."""
    LOGGER.info("Received signal %d, shutting down...", signum)
    stop_scheduler()
    sys.exit(0)


def run_scheduler_blocking() -> None:
    """
    Start the scheduler and block until interrupted.

    This is the entry point for running the scheduler as a standalone process.
    """
    setup_logging(level=SETTINGS.log_level, json_format=SETTINGS.log_format == "json")

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    LOGGER.info("Starting confirmation scheduler...")
    LOGGER.info(
        "Environment: %s, Dry Run: %s, Tenants: %s",
        SETTINGS.environment,
        SETTINGS.dry_run,
        SETTINGS.get_scheduler_tenants(),
    )

    start_scheduler()

    try:
        # Keep main thread alive
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        stop_scheduler()
        LOGGER.info("Scheduler shutdown complete.")


if __name__ == "__main__":
    run_scheduler_blocking()
