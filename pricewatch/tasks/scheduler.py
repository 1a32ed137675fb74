#!/usr/bin/env python
import sys
import time
import logging
import argparse
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pricewatch.config import configure_logging, load_settings
from pricewatch.tasks.check_prices import PriceCheckRunner, create_runner

logger = logging.getLogger('scheduler')

JOB_ID = 'price_check_job'


def build_scheduler(runner: PriceCheckRunner, interval_hours: float, run_now: bool = False) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()

    job_options = {}
    if run_now:
        job_options["next_run_time"] = datetime.now()

    def check_job():
        logger.info("Running scheduled price check")
        summary = runner.check_all_products()
        logger.info(f"Scheduled price check finished: {summary.updated} products updated")

    scheduler.add_job(
        check_job,
        IntervalTrigger(hours=interval_hours),
        id=JOB_ID,
        name='Check prices and notify price drops',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        **job_options
    )
    return scheduler


def start_scheduler(hours_interval: Optional[float] = None, run_now: bool = False) -> bool:
    settings = load_settings()
    configure_logging(settings)

    interval_hours = hours_interval or settings.scrape_interval_hours
    logger.info(f"Starting scheduler with {interval_hours} hour interval")

    runner = create_runner(settings)
    scheduler = build_scheduler(runner, interval_hours, run_now=run_now)
    scheduler.start()
    logger.info("Scheduler started successfully")

    try:
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Stopping scheduler")
    finally:
        runner.cancel()
        scheduler.shutdown(wait=True)
        runner.close()

    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Start the price watch scheduler")
    parser.add_argument("--interval", type=float, help="Interval in hours between price checks")
    parser.add_argument("--run-now", action="store_true", help="Run a sweep immediately on start")

    args = parser.parse_args()

    sys.exit(0 if start_scheduler(hours_interval=args.interval, run_now=args.run_now) else 1)
