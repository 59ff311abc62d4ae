"""Red Zone Scheduler - Periodic re-check of customers against red zone rules.

Raises alerts for customers that newly match an enabled rule and
auto-resolves open alerts whose resolution conditions now hold. The interval
comes from REDZONE_CHECK_INTERVAL_MINUTES; only one run is active at a time.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from redzone.config import settings
from redzone.database import async_session_maker
from redzone.services.red_zone_monitor import RedZoneCheckResult, RedZoneMonitor

logger = logging.getLogger(__name__)

JOB_ID = "red_zone_check"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def run_red_zone_check() -> Optional[RedZoneCheckResult]:
    """
    Main job: evaluate every customer against the enabled rules.

    Uses its own session. Errors are logged rather than raised so the
    scheduler keeps the job on its interval.
    """
    logger.info("Starting red zone check...")

    try:
        async with async_session_maker() as db:
            result = await RedZoneMonitor(db).run_check()
    except Exception as e:
        logger.error(f"Fatal error in red zone check: {e}", exc_info=True)
        return None

    logger.info(
        f"Red zone check complete. Customers: {result.customers_evaluated}, "
        f"Rules: {result.rules_evaluated}, Raised: {result.alerts_raised}, "
        f"Resolved: {result.alerts_resolved}, Errors: {len(result.errors)} "
        f"({result.execution_time_ms:.0f}ms)"
    )
    return result


def start_red_zone_scheduler(interval_minutes: Optional[int] = None):
    """Start the scheduler with the red zone check job."""
    global scheduler

    scheduler = get_scheduler()

    scheduler.add_job(
        run_red_zone_check,
        IntervalTrigger(minutes=interval_minutes or settings.REDZONE_CHECK_INTERVAL_MINUTES),
        id=JOB_ID,
        name="Red zone check",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info("Red zone scheduler started")
        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


def stop_red_zone_scheduler():
    """Stop the red zone scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Red zone scheduler stopped")
