"""Background tasks: pipeline runs, fulfillment retry sweep, price sync and quota reset."""

import asyncio
import logging
from contextlib import suppress
from typing import Any, Optional
from uuid import uuid4

import redis.asyncio as redis
from sqlalchemy import select

from videoshop import metrics
from videoshop.config import settings
from videoshop.db.models import PipelineRun, utcnow
from videoshop.db.session import AsyncSessionLocal
from videoshop.fulfillment.engine import FulfillmentEngine, fulfillment_engine
from videoshop.pipeline.catalog import ProductCatalog
from videoshop.pipeline.orchestrator import (
    PipelineOptions,
    PipelineOrchestrator,
    RunStatus,
    pipeline_orchestrator,
)
from videoshop.worker.run_lock import RunLockManager, run_lock_manager

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runner for background tasks.

    Every pipeline run, scheduled or manual, goes through ``run_pipeline`` so
    it holds the run lock and leaves a PipelineRun record behind.
    """

    def __init__(
        self,
        orchestrator: Optional[PipelineOrchestrator] = None,
        fulfillment: Optional[FulfillmentEngine] = None,
        lock: Optional[RunLockManager] = None,
        session_factory=None,
    ):
        self.orchestrator = orchestrator or pipeline_orchestrator
        self.fulfillment = fulfillment or fulfillment_engine
        self.lock = lock or run_lock_manager
        self.session_factory = session_factory or AsyncSessionLocal
        self.cancel_event = asyncio.Event()

    async def close(self):
        await self.lock.close()

    def cancel_current_run(self):
        """Ask the active run to stop before its next stage."""
        self.cancel_event.set()

    async def run_pipeline(
        self,
        trigger: str = "scheduled",
        options: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Run the pipeline under the run lock and record the outcome.

        Args:
            trigger: "scheduled" | "manual"
            options: time_window / scan_limit / max_products_to_match overrides

        Returns:
            The run result dict, or None when another run holds the lock
        """
        run_id = uuid4().hex
        logger.info(f"Starting pipeline run (trigger: {trigger}, run_id: {run_id[:16]})")

        try:
            token = await self.lock.acquire(run_id)
        except redis.RedisError as e:
            logger.error(f"Pipeline lock unavailable, skipping {trigger} run: {e}")
            metrics.record_scheduler_run("pipeline", success=False)
            return None
        if not token:
            return None

        heartbeat = asyncio.create_task(self.lock.heartbeat(run_id, token))
        self.cancel_event = asyncio.Event()
        try:
            async with self.session_factory() as db:
                record = PipelineRun(run_id=run_id, trigger=trigger, status="running", started_at=utcnow())
                db.add(record)
                await db.commit()
                record_id = record.id

            result = await self.orchestrator.run_pipeline(
                PipelineOptions.from_dict(options), cancel_event=self.cancel_event
            )

            async with self.session_factory() as db:
                record = await db.get(PipelineRun, record_id)
                record.status = result.status.value
                record.completed_at = utcnow()
                record.candidates_found = result.candidates_found
                record.matches_found = result.matches_found
                record.products_saved = result.products_saved
                record.videos_added = result.videos_added
                record.alerts_sent = result.alerts_sent
                record.error_message = result.error
                record.report = result.report
                await db.commit()

            metrics.record_scheduler_run("pipeline", success=result.status != RunStatus.FAILED)
            return result.as_dict()
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat
            await self.lock.release(run_id, token)

    async def recent_runs(self, limit: int = 20) -> list[PipelineRun]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PipelineRun).order_by(PipelineRun.created_at.desc(), PipelineRun.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def retry_fulfillments(self) -> dict[str, int]:
        """Sweep recently failed orders back through fulfillment."""
        try:
            summary = await self.fulfillment.retry_failed(settings.retry_sweep_window_hours)
        except Exception as e:
            logger.error(f"Fulfillment retry sweep failed: {e}", exc_info=True)
            metrics.record_scheduler_run("fulfillment_retry", success=False)
            raise
        metrics.record_scheduler_run("fulfillment_retry", success=True)
        return summary

    async def sync_prices(self) -> dict[str, int]:
        """Refresh supplier prices for stale automated products."""
        catalog: ProductCatalog = self.orchestrator.catalog
        try:
            summary = await catalog.update_prices(settings.price_sync_max_age_days)
        except Exception as e:
            logger.error(f"Price sync failed: {e}", exc_info=True)
            metrics.record_scheduler_run("price_sync", success=False)
            raise
        logger.info(f"Price sync: {summary['updated']}/{summary['total']} updated, {summary['flagged']} flagged")
        metrics.record_scheduler_run("price_sync", success=True)
        return summary

    async def reset_video_quota(self):
        self.orchestrator.videos.quota.reset()
        logger.info("Video API quota counter reset")
        metrics.record_scheduler_run("quota_reset", success=True)


# Global task runner instance
task_runner = TaskRunner()
