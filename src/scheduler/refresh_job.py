"""Scheduled refresh of products, protocols and tokens"""
import logging
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.collectors.pipeline import RefreshPipeline

logger = logging.getLogger(__name__)


def run_refresh(pipeline: RefreshPipeline, resource: str):
    """Run one refresh, logging instead of raising so the scheduler keeps going"""
    logger.info("Starting scheduled %s refresh", resource)
    refresh = getattr(pipeline, f"refresh_{resource}")
    try:
        result = refresh()
        logger.info("Scheduled %s refresh finished: %s", resource, result)
        return result
    except Exception as e:
        logger.error("Scheduled %s refresh failed: %s", resource, e, exc_info=True)
        return None


def build_scheduler(pipeline: RefreshPipeline, interval_minutes: int = 5,
                    scheduler: Optional[BlockingScheduler] = None) -> BlockingScheduler:
    """
    Register the refresh jobs.

    Products refresh every ``interval_minutes``; tokens and protocols once a
    day at 00:00 and 00:10 UTC so enrichment metadata is in place first.
    """
    scheduler = scheduler or BlockingScheduler(timezone="UTC")

    scheduler.add_job(
        run_refresh,
        trigger=CronTrigger(hour=0, minute=0),
        args=[pipeline, "tokens"],
        id='daily_tokens_refresh',
        name='Daily Token List Refresh',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_refresh,
        trigger=CronTrigger(hour=0, minute=10),
        args=[pipeline, "protocols"],
        id='daily_protocols_refresh',
        name='Daily Protocol List Refresh',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_refresh,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[pipeline, "products"],
        id='products_refresh',
        name='Products Refresh',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def start_scheduler(interval_minutes: int = 5):
    """Refresh products once, then hand over to the scheduler"""
    pipeline = RefreshPipeline()
    scheduler = build_scheduler(pipeline, interval_minutes)
    try:
        run_refresh(pipeline, "products")
        logger.info("Scheduler started. Products refresh every %s minutes.", interval_minutes)
        scheduler.start()
    finally:
        pipeline.close()


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    start_scheduler()
