"""Delayed one-shot tasks (supplier status polls) behind a small scheduler seam."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)

TaskFunc = Callable[..., Awaitable[Any]]


class DelayedTaskScheduler(Protocol):
    """Runs a coroutine function once, ``delay_seconds`` from now."""

    def schedule(self, delay_seconds: float, func: TaskFunc, *args: Any, name: Optional[str] = None) -> str:
        ...


class APSchedulerDelayedTasks:
    """DateTrigger jobs on the shared AsyncIOScheduler."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler

    def attach(self, scheduler: AsyncIOScheduler):
        self.scheduler = scheduler

    def schedule(self, delay_seconds: float, func: TaskFunc, *args: Any, name: Optional[str] = None) -> str:
        if self.scheduler is None:
            raise RuntimeError("Delayed task scheduler is not attached to a running scheduler")
        job_id = f"{name or func.__name__}:{uuid4().hex[:12]}"
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        self.scheduler.add_job(
            func,
            DateTrigger(run_date=run_date),
            args=list(args),
            id=job_id,
            name=name or func.__name__,
            misfire_grace_time=300,
            replace_existing=True,
        )
        logger.debug(f"Scheduled {job_id} for {run_date.isoformat()}")
        return job_id


# Attached to the application scheduler at startup
delayed_tasks = APSchedulerDelayedTasks()
