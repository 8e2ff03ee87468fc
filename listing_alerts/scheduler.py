"""
Daily scheduling for Listing Alerts.

APScheduler fires the alert job once a day at `DAILY_RUN_HOUR` in the
configured timezone (07:00 America/Lima unless overridden). The HTTP
trigger in `server.py` is the alternative for hosted cron services.

Usage:
    listing-alerts-scheduler                 # block and run daily
    listing-alerts-scheduler --mode once     # run the job now and exit
"""

import logging
from dataclasses import replace
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import AppConfig, get_app_config
from .models import JobSummary
from .pipeline import build_runner, run_job

logger = logging.getLogger(__name__)

JOB_ID = "daily_alerts"


def run_daily_job() -> Optional[JobSummary]:
    """
    Run every active alert.

    Wiring failures (e.g. missing Supabase credentials) are logged so the
    scheduler keeps firing on later days.
    """
    logger.info("Daily alert job starting")
    try:
        summary = run_job(build_runner())
    except Exception as e:
        logger.error(f"Daily alert job could not start: {e}")
        return None
    logger.info(f"Daily alert job finished: {summary.to_dict()}")
    return summary


def create_scheduler(app_config: Optional[AppConfig] = None) -> BlockingScheduler:
    """
    Build a scheduler with the single daily job registered.

    Returns:
        Configured BlockingScheduler (not started)
    """
    config = app_config or get_app_config()
    scheduler = BlockingScheduler(timezone=config.timezone)

    scheduler.add_job(
        run_daily_job,
        trigger=CronTrigger(hour=config.daily_run_hour, minute=0, timezone=config.timezone),
        id=JOB_ID,
        name="Scrape portals and send alert digests",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info(f"Daily job registered for {config.daily_run_hour:02d}:00 {config.timezone}")
    return scheduler


def start_scheduler(app_config: Optional[AppConfig] = None) -> None:
    """Block until interrupted, running the job every day."""
    scheduler = create_scheduler(app_config)
    logger.info("Listing Alerts scheduler running (Ctrl+C to exit)")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler shut down")


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main():
    """CLI entry point for the scheduler."""
    import argparse

    parser = argparse.ArgumentParser(description="Listing Alerts Scheduler")
    parser.add_argument(
        "--mode",
        choices=["schedule", "once"],
        default="schedule",
        help="schedule: run daily until stopped; once: run the job immediately"
    )
    parser.add_argument(
        "--hour",
        type=int,
        choices=range(24),
        metavar="0-23",
        help="Override DAILY_RUN_HOUR for this process"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if args.mode == "once":
        run_daily_job()
        return

    app_config = get_app_config()
    if args.hour is not None:
        app_config = replace(app_config, daily_run_hour=args.hour)
    start_scheduler(app_config)


if __name__ == "__main__":
    main()
