"""
Scheduler for cache warming

Uses APScheduler to rebuild page-metrics and keyword-rank caches for every
project ahead of the day's traffic.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import time

from ranklens.config import get_settings
from ranklens.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


async def warm_caches(warmer):
    """Rebuild caches for all projects x configured windows"""
    start = time.time()
    try:
        log.info("Starting scheduled cache warm...")
        result = await warmer.refresh(windows=settings.warm_window_days)
        log.info(
            f"Cache warm completed: {len(result['refreshed'])} pairs refreshed, "
            f"{len(result['failed'])} failed in {time.time() - start:.1f}s"
        )
        return result
    except Exception as e:
        log.error(f"Cache warm error: {str(e)}")
        return None


def setup_scheduler(warmer):
    """Register the cache warming job"""
    scheduler.add_job(
        warm_caches,
        trigger=CronTrigger.from_crontab(settings.warm_schedule),
        args=[warmer],
        id='cache_warm',
        name='Rank Cache Warm',
        replace_existing=True,
        max_instances=1
    )
    log.info(f"Scheduler configured with cache warm job ({settings.warm_schedule})")


def start_scheduler(warmer):
    """Start the scheduler"""
    setup_scheduler(warmer)
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")
