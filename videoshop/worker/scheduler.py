"""APScheduler job definitions."""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from videoshop.config import settings
from videoshop.fulfillment.tasks import delayed_tasks
from videoshop.worker.tasks import TaskRunner, task_runner

logger = logging.getLogger(__name__)


def setup_scheduler(runner: Optional[TaskRunner] = None) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Pipeline run every settings.pipeline_interval_hours when enabled
    - Video quota counter reset daily at midnight UTC
    - Supplier price sync weekly, Sunday 2 AM
    - Fulfillment retry sweep only when settings.retry_sweep_enabled

    The same scheduler backs the delayed fulfillment status checks.

    Returns:
        Configured scheduler instance
    """
    runner = runner or task_runner
    scheduler = AsyncIOScheduler(timezone="UTC")

    if settings.pipeline_enabled:
        scheduler.add_job(
            runner.run_pipeline,
            IntervalTrigger(hours=max(1, settings.pipeline_interval_hours)),
            kwargs={"trigger": "scheduled"},
            id="pipeline_run",
            name="Discovery pipeline run",
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
            misfire_grace_time=600,
            replace_existing=True,
        )

    scheduler.add_job(
        runner.reset_video_quota,
        CronTrigger(hour=0, minute=0),
        id="video_quota_reset",
        name="Reset video API quota counter",
        max_instances=1,
        replace_existing=True,
    )

    scheduler.add_job(
        runner.sync_prices,
        CronTrigger(day_of_week="sun", hour=2, minute=0),
        id="price_sync",
        name="Sync supplier prices",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    if settings.retry_sweep_enabled:
        scheduler.add_job(
            runner.retry_fulfillments,
            IntervalTrigger(minutes=max(1, settings.retry_sweep_interval_minutes)),
            id="fulfillment_retry",
            name="Retry failed fulfillments",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    delayed_tasks.attach(scheduler)

    logger.info(
        "Scheduler configured: %s, quota reset daily, price sync on Sundays at 2 AM, %s",
        f"pipeline every {settings.pipeline_interval_hours}h" if settings.pipeline_enabled else "pipeline disabled",
        f"retry sweep every {settings.retry_sweep_interval_minutes} minutes"
        if settings.retry_sweep_enabled
        else "retry sweep on demand",
    )

    return scheduler
