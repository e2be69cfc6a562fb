"""Tests for the pipeline run lock and the task runner."""

import asyncio
from types import SimpleNamespace

import pytest
import redis.asyncio as redis

from videoshop.config import settings
from videoshop.pipeline.orchestrator import RunResult, RunStatus
from videoshop.videos.quota import QuotaTracker
from videoshop.worker.run_lock import RunLockManager
from videoshop.worker.tasks import TaskRunner


async def _redis_available() -> bool:
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


@pytest.mark.asyncio
async def test_lock_acquire_refresh_release():
    if not await _redis_available():
        pytest.skip("Redis not available")

    manager = RunLockManager(redis_url=settings.redis_url, ttl_seconds=30)
    await manager.force_unlock()

    token = await manager.acquire("test_run_lock")
    assert token is not None
    assert await manager.acquire("someone_else") is None

    info = await manager.info()
    assert info["run_id"] == "test_run_lock"
    assert info["ttl_seconds"] <= 30

    assert await manager.refresh("test_run_lock", token) is True
    assert await manager.release("test_run_lock", token) is True
    assert await manager.info() is None
    await manager.close()


@pytest.mark.asyncio
async def test_lock_token_mismatch():
    if not await _redis_available():
        pytest.skip("Redis not available")

    manager = RunLockManager(redis_url=settings.redis_url, ttl_seconds=30)
    await manager.force_unlock()

    token = await manager.acquire("test_run_token")
    assert token is not None

    assert await manager.release("test_run_token", "bad_token") is False
    assert await manager.refresh("test_run_token", "bad_token") is False
    assert await manager.release("test_run_token", None) is False
    assert await manager.release("test_run_token", token) is True
    await manager.close()


class FakeLock:
    def __init__(self, available=True, error=None):
        self.available = available
        self.error = error
        self.released = []

    async def acquire(self, run_id):
        if self.error is not None:
            raise self.error
        return "tok" if self.available else None

    async def heartbeat(self, run_id, token, interval=None):
        await asyncio.Event().wait()

    async def release(self, run_id, token):
        self.released.append((run_id, token))
        return True

    async def close(self):
        pass


class FakeOrchestrator:
    def __init__(self, status=RunStatus.COMPLETED):
        self.status = status
        self.calls = []
        self.videos = SimpleNamespace(quota=QuotaTracker(daily_limit=100))
        self.catalog = SimpleNamespace(update_prices=self._update_prices)

    async def _update_prices(self, max_age_days):
        return {"total": 2, "updated": 1, "flagged": 1}

    async def run_pipeline(self, options, cancel_event=None):
        self.calls.append((options, cancel_event))
        failed = self.status == RunStatus.FAILED
        return RunResult(
            success=not failed,
            status=self.status,
            message="done",
            report=None if failed else {"summary": {"status": self.status.value.upper()}},
            error="No product candidates found" if failed else None,
            stage="scan" if failed else None,
            candidates_found=3,
            matches_found=2,
            products_saved=2,
            videos_added=5,
        )


class FakeFulfillment:
    def __init__(self, error=None):
        self.error = error
        self.windows = []

    async def retry_failed(self, window_hours):
        self.windows.append(window_hours)
        if self.error is not None:
            raise self.error
        return {"found": 1, "recovered": 1, "still_failed": 0, "errors": 0}


def _runner(session_factory, lock=None, orchestrator=None, fulfillment=None):
    return TaskRunner(
        orchestrator=orchestrator or FakeOrchestrator(),
        fulfillment=fulfillment or FakeFulfillment(),
        lock=lock or FakeLock(),
        session_factory=session_factory,
    )


@pytest.mark.asyncio
async def test_run_records_pipeline_run_and_releases_lock(session_factory):
    lock = FakeLock()
    orchestrator = FakeOrchestrator()
    runner = _runner(session_factory, lock=lock, orchestrator=orchestrator)

    result = await runner.run_pipeline(trigger="manual", options={"scan_limit": 10})

    assert result["success"] is True
    assert orchestrator.calls[0][0].scan_limit == 10
    assert orchestrator.calls[0][1] is runner.cancel_event
    assert lock.released and lock.released[0][1] == "tok"

    runs = await runner.recent_runs()
    assert len(runs) == 1
    assert runs[0].trigger == "manual"
    assert runs[0].status == "completed"
    assert runs[0].products_saved == 2
    assert runs[0].completed_at is not None


@pytest.mark.asyncio
async def test_failed_run_keeps_error_on_record(session_factory):
    runner = _runner(session_factory, orchestrator=FakeOrchestrator(RunStatus.FAILED))

    result = await runner.run_pipeline()

    assert result["error"] == "No product candidates found"
    assert result["stage"] == "scan"
    run = (await runner.recent_runs())[0]
    assert run.status == "failed"
    assert run.error_message == "No product candidates found"


@pytest.mark.asyncio
async def test_locked_or_unreachable_lock_skips_run(session_factory):
    orchestrator = FakeOrchestrator()

    assert await _runner(session_factory, lock=FakeLock(available=False), orchestrator=orchestrator).run_pipeline() is None
    unreachable = FakeLock(error=redis.ConnectionError("refused"))
    assert await _runner(session_factory, lock=unreachable, orchestrator=orchestrator).run_pipeline() is None
    assert orchestrator.calls == []


@pytest.mark.asyncio
async def test_maintenance_tasks(session_factory):
    fulfillment = FakeFulfillment()
    orchestrator = FakeOrchestrator()
    orchestrator.videos.quota.spend(60)
    runner = _runner(session_factory, orchestrator=orchestrator, fulfillment=fulfillment)

    assert (await runner.retry_fulfillments())["recovered"] == 1
    assert fulfillment.windows == [settings.retry_sweep_window_hours]
    assert (await runner.sync_prices())["flagged"] == 1

    await runner.reset_video_quota()
    assert orchestrator.videos.quota.remaining == 100


@pytest.mark.asyncio
async def test_retry_sweep_errors_propagate(session_factory):
    runner = _runner(session_factory, fulfillment=FakeFulfillment(error=RuntimeError("db down")))

    with pytest.raises(RuntimeError):
        await runner.retry_fulfillments()


def test_cancel_current_run_sets_event(session_factory):
    runner = _runner(session_factory)

    runner.cancel_current_run()

    assert runner.cancel_event.is_set()
