"""Background scheduler for periodic tasks.

Uses APScheduler to refresh every tracked account on a fixed interval.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import async_session
from services.account_refresh import refresh_tracked_accounts
from services.errors import StorageError
from services.run_store import RunStore

logger = logging.getLogger(__name__)
settings = get_settings()

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def refresh_all_accounts():
    """Background task to refresh every tracked account.

    The run report is stored like an interactive one so the latest result
    is visible through the API.
    """
    logger.info("Starting scheduled account refresh...")

    async with async_session() as db:
        try:
            report = await refresh_tracked_accounts(db)
        except StorageError as e:
            logger.error(f"Scheduled refresh aborted: {e}")
            return

    if await RunStore.health_check():
        await RunStore.save_run(report, trigger="scheduled")
    else:
        logger.warning("Redis not available - scheduled run report not stored")

    failed = sum(1 for result in report["results"] if result.get("error"))
    logger.info(f"Scheduled refresh done: {report['total']} accounts, {failed} failed")


def start_scheduler():
    """Start the background scheduler with all jobs."""
    if not settings.scheduler_enabled:
        logger.info("Background scheduler disabled")
        return

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    scheduler.add_job(
        refresh_all_accounts,
        trigger=IntervalTrigger(hours=settings.refresh_interval_hours),
        id="tracked_accounts_refresh",
        name="Refresh tracked creator accounts",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(
        f"Background scheduler started (account refresh every {settings.refresh_interval_hours} hours)"
    )


def stop_scheduler():
    """Stop the background scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped")
