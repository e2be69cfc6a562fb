"""Discovery pipeline: scan → match → persist → videos → reviews → alerts → report."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import text

from videoshop import metrics
from videoshop.config import settings
from videoshop.db.models import Product
from videoshop.db.session import AsyncSessionLocal
from videoshop.discovery.scanner import TrendScanner
from videoshop.errors import PipelineAbort
from videoshop.notify.alerts import SubscriptionAlerter
from videoshop.pipeline import report as run_report
from videoshop.pipeline.catalog import ProductCatalog, SavedProduct
from videoshop.reviews.scraper import ReviewScraper
from videoshop.suppliers import SupplierRegistry, supplier_registry
from videoshop.suppliers.matcher import MatchContext, SupplierMatcher, storage_lookup
from videoshop.videos.resolver import VideoCacheResolver

logger = logging.getLogger(__name__)

STAT_KEYS = (
    "runs",
    "failed_runs",
    "cancelled_runs",
    "products_discovered",
    "products_matched",
    "products_saved",
    "videos_found",
    "videos_saved",
    "reviews_found",
    "alerts_sent",
)


class RunStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PipelineOptions:
    time_window: str = field(default_factory=lambda: settings.pipeline_time_window)
    scan_limit: int = field(default_factory=lambda: settings.pipeline_scan_limit)
    max_products_to_match: int = field(default_factory=lambda: settings.pipeline_max_products)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "PipelineOptions":
        options = cls()
        for key, value in (data or {}).items():
            if value is not None and hasattr(options, key):
                setattr(options, key, value)
        return options


@dataclass
class RunResult:
    """Outcome of one pipeline run."""

    success: bool
    status: RunStatus
    message: str
    report: Optional[dict[str, Any]] = None
    stats: dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None
    stage: Optional[str] = None
    candidates_found: int = 0
    matches_found: int = 0
    products_saved: int = 0
    videos_added: int = 0
    alerts_sent: int = 0

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "report": self.report,
            "stats": self.stats,
        }
        if self.error:
            data["error"] = self.error
            data["stage"] = self.stage
        return data


class RunCancelled(Exception):
    """Internal signal: the cancel event was set before a stage started."""

    def __init__(self, stage: str):
        super().__init__(f"Pipeline cancelled before {stage}")
        self.stage = stage


@dataclass
class _RunState:
    started: float
    candidates: int = 0
    matches: int = 0
    saved: list[SavedProduct] = field(default_factory=list)
    videos_added: int = 0
    alerts_sent: int = 0


class PipelineOrchestrator:
    """
    Runs the discovery pipeline end to end.

    Stages run strictly one after another; a stage that produces nothing
    required by the next one aborts the run with a reported error. Statistics
    accumulate across runs until ``reset_stats()``.
    """

    def __init__(
        self,
        scanner: Optional[TrendScanner] = None,
        matcher: Optional[SupplierMatcher] = None,
        catalog: Optional[ProductCatalog] = None,
        videos: Optional[VideoCacheResolver] = None,
        reviews: Optional[ReviewScraper] = None,
        alerter: Optional[SubscriptionAlerter] = None,
        session_factory=None,
        registry: Optional[SupplierRegistry] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        registry = registry or supplier_registry
        self.scanner = scanner or TrendScanner()
        self.matcher = matcher or SupplierMatcher(storage_lookup(self.session_factory), registry)
        self.catalog = catalog or ProductCatalog(self.session_factory, registry)
        self.videos = videos or VideoCacheResolver(session_factory=self.session_factory)
        self.reviews = reviews or ReviewScraper(
            discussion=self.scanner.client, videos=self.videos.client
        )
        self.alerter = alerter or SubscriptionAlerter(self.session_factory)
        self._stats: dict[str, int] = dict.fromkeys(STAT_KEYS, 0)

    @property
    def stats(self) -> dict[str, int]:
        """Totals since start (or the last reset). Returns a copy."""
        return dict(self._stats)

    def reset_stats(self):
        self._stats = dict.fromkeys(STAT_KEYS, 0)
        logger.info("Pipeline statistics reset")

    async def run_pipeline(
        self,
        options: Optional[PipelineOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """
        Execute one full pipeline run.

        Args:
            options: Scan window and limits; defaults come from settings
            cancel_event: When set, no new stage is started and a partial
                report is returned

        Returns:
            RunResult. Aborts and unexpected errors are reported, not raised.
        """
        options = options or PipelineOptions()
        state = _RunState(started=time.monotonic())
        logger.info(
            f"Pipeline run starting (window={options.time_window}, "
            f"scan_limit={options.scan_limit}, match={options.max_products_to_match})"
        )

        try:
            await self._stage(cancel_event, "health", self._probe_health())

            candidates = await self._stage(
                cancel_event,
                "scan",
                self.scanner.discover_candidates(options.time_window, options.scan_limit),
            )
            state.candidates = len(candidates)
            self._stats["products_discovered"] += len(candidates)
            if not candidates:
                raise PipelineAbort("scan", "No product candidates found")

            context = MatchContext()
            matches = await self._stage(
                cancel_event,
                "match",
                self.matcher.match_candidates(candidates, options.max_products_to_match, context),
            )
            state.matches = len(matches)
            self._stats["products_matched"] += len(matches)
            if not matches:
                raise PipelineAbort("match", "No supplier matches found")

            state.saved = await self._stage(cancel_event, "persist", self.catalog.save_matches(matches))
            self._stats["products_saved"] += len(state.saved)

            await self._stage(cancel_event, "videos", self._attach_videos(state))
            await self._stage(cancel_event, "reviews", self._attach_reviews(state))

            products = [entry.product for entry in state.saved]
            state.alerts_sent = await self._stage(cancel_event, "alerts", self.alerter.fan_out(products))
            self._stats["alerts_sent"] += state.alerts_sent
        except RunCancelled as e:
            logger.warning(str(e))
            return self._finish(state, RunStatus.CANCELLED, str(e), stage=e.stage)
        except PipelineAbort as e:
            logger.warning(f"Pipeline aborted at {e.stage}: {e}")
            return self._finish(state, RunStatus.FAILED, f"Pipeline failed: {e}", error=str(e), stage=e.stage)
        except Exception as e:
            logger.error(f"Pipeline run failed: {e}", exc_info=True)
            return self._finish(state, RunStatus.FAILED, f"Pipeline failed: {e}", error=str(e), stage="unexpected")

        return self._finish(
            state,
            RunStatus.COMPLETED,
            f"Pipeline completed: {len(state.saved)} products, {state.videos_added} videos",
        )

    async def _stage(self, cancel_event: Optional[asyncio.Event], name: str, work):
        if cancel_event is not None and cancel_event.is_set():
            # The coroutine was created eagerly; close it so it never runs
            work.close()
            raise RunCancelled(name)
        logger.debug(f"Pipeline stage {name} starting")
        return await work

    async def _probe_health(self):
        health = await self.check_health()
        degraded = [name for name, ok in health["services"].items() if not ok]
        if degraded:
            logger.warning(f"Pipeline starting degraded: {', '.join(degraded)} unavailable")

    async def _attach_videos(self, state: _RunState):
        stored_before = self.videos.stored_count
        new_products = [entry.product for entry in state.saved if entry.is_new]
        for product in new_products[: settings.video_products_per_run]:
            entries = await self.videos.resolve_videos(
                product.name, product_id=product.id, category=product.category or ""
            )
            state.videos_added += len(entries)

        if state.videos_added < settings.video_target_per_run:
            needed = settings.video_target_per_run - state.videos_added
            logger.info(f"Only {state.videos_added} product videos; adding up to {needed} trending")
            extra = await self.videos.search_trending(total_max=needed)
            state.videos_added += len(extra)

        # Found counts every attached video; saved only those new to the cache
        self._stats["videos_found"] += state.videos_added
        self._stats["videos_saved"] += self.videos.stored_count - stored_before

    async def _attach_reviews(self, state: _RunState) -> int:
        found = 0
        for entry in state.saved:
            product = entry.product
            cached = await self.videos.cached_for_product(
                product.name, product.id, settings.videos_per_product
            )
            result = await self.reviews.get_product_reviews(
                product.name, video_ids=[video.video_id for video in cached]
            )
            if not result.ok:
                logger.debug(f"No reviews for {product.name!r}: {result.error}")
                continue
            await self.catalog.attach_reviews(product.id, result.as_dict())
            product.reviews = result.as_dict()
            found += len(result.reviews)
        self._stats["reviews_found"] += found
        return found

    def _finish(
        self,
        state: _RunState,
        status: RunStatus,
        message: str,
        error: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> RunResult:
        runtime = time.monotonic() - state.started
        self._stats["runs"] += 1
        if status == RunStatus.FAILED:
            self._stats["failed_runs"] += 1
        elif status == RunStatus.CANCELLED:
            self._stats["cancelled_runs"] += 1

        metrics.pipeline_runs_total.labels(status=status.value).inc()
        metrics.pipeline_run_duration_seconds.observe(runtime)

        report = None
        if status != RunStatus.FAILED or state.saved:
            report = self.build_report(state.saved, runtime, state.videos_added, status)

        logger.info(f"Pipeline run {status.value} in {runtime:.1f}s: {message}")
        return RunResult(
            success=status == RunStatus.COMPLETED,
            status=status,
            message=message,
            report=report,
            stats=self.stats,
            error=error,
            stage=stage,
            candidates_found=state.candidates,
            matches_found=state.matches,
            products_saved=len(state.saved),
            videos_added=state.videos_added,
            alerts_sent=state.alerts_sent,
        )

    @staticmethod
    def build_report(
        saved: list[SavedProduct],
        runtime: float,
        videos_added: int,
        status: RunStatus,
    ) -> dict[str, Any]:
        products: list[Product] = [entry.product for entry in saved]
        return {
            "summary": {
                "runtime": f"{runtime:.1f}s",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "total_products_processed": len(products),
                "total_videos_added": videos_added,
                "status": status.value.upper(),
            },
            "profit_analysis": run_report.profit_analysis(products),
            "top_products": run_report.top_products(products),
            "category_breakdown": run_report.category_breakdown(products),
            "channel_breakdown": run_report.channel_breakdown(products),
            "recommendations": run_report.recommendations(products),
        }

    async def check_health(self) -> dict[str, Any]:
        """Reachability of every collaborator the pipeline depends on."""
        services: dict[str, bool] = {}

        try:
            services["discussion"] = await self.scanner.health()
        except Exception as e:
            logger.warning(f"Discussion health check failed: {e}")
            services["discussion"] = False

        supplier_health = self.matcher.health()
        services["suppliers"] = supplier_health["healthy"]

        try:
            async with self.session_factory() as db:
                await db.execute(text("SELECT 1"))
            services["database"] = True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            services["database"] = False

        services["videos"] = self.videos.client.configured and self.videos.quota.remaining > 0

        return {
            "healthy": all(services.values()),
            "services": services,
            "suppliers": supplier_health["suppliers"],
            "video_quota": self.videos.quota.status(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def close(self):
        await self.scanner.close()
        await self.videos.close()
        await self.reviews.close()


# Global orchestrator
pipeline_orchestrator = PipelineOrchestrator()
