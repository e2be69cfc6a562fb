"""Redis lock keeping one pipeline run active at a time across processes."""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import redis.asyncio as redis

from videoshop.config import settings

logger = logging.getLogger(__name__)

LOCK_KEY = "pipeline:run:lock"
HEARTBEAT_KEY = "pipeline:run:heartbeat"

# 0 = missing, 1 = released, 2 = held by someone else
RELEASE_SCRIPT = """
local value = redis.call('GET', KEYS[1])
if not value then
    return 0
end
local ok, data = pcall(cjson.decode, value)
if not ok then
    return 2
end
if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('DEL', KEYS[1])
    redis.call('DEL', KEYS[2])
    return 1
end
return 2
"""

# 0 = missing, 1 = refreshed, 2 = held by someone else
REFRESH_SCRIPT = """
local value = redis.call('GET', KEYS[1])
if not value then
    return 0
end
local ok, data = pcall(cjson.decode, value)
if not ok then
    return 0
end
if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('EXPIRE', KEYS[1], ARGV[3])
    redis.call('SET', KEYS[2], ARGV[4], 'EX', ARGV[3])
    return 1
end
return 2
"""


class RunLockManager:
    """
    Token-owned pipeline lock.

    ``acquire`` is ``SET NX EX``; release and refresh are Lua scripts that
    only act when both the run id and the token match the stored value.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.redis_url = redis_url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.pipeline_lock_ttl_seconds
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def acquire(self, run_id: str) -> Optional[str]:
        """
        Try to take the lock for a run.

        Returns:
            Ownership token, or None when another run holds the lock
        """
        client = await self._get_redis()
        token = uuid4().hex
        value = json.dumps(
            {
                "run_id": run_id,
                "token": token,
                "started_at": datetime.now(timezone.utc).isoformat(),
            }
        )

        acquired = await client.set(LOCK_KEY, value, nx=True, ex=self.ttl_seconds)
        if not acquired:
            holder = await self.info()
            logger.info(
                f"Pipeline lock held by run {(holder or {}).get('run_id', 'unknown')}; not starting {run_id[:16]}"
            )
            return None

        await client.set(HEARTBEAT_KEY, str(time.time()), ex=self.ttl_seconds)
        logger.info(f"Acquired pipeline lock for run {run_id[:16]}")
        return token

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        if not token:
            logger.warning("Lock release requested without token; refusing")
            return False

        client = await self._get_redis()
        try:
            result = await client.eval(RELEASE_SCRIPT, 2, LOCK_KEY, HEARTBEAT_KEY, run_id, token)
        except redis.RedisError as e:
            logger.error(f"Pipeline lock release failed: {e}")
            return False

        if result == 2:
            logger.warning(f"Pipeline lock owned by another run; {run_id[:16]} did not release it")
            return False
        logger.info(f"Released pipeline lock for run {run_id[:16]}")
        return True

    async def refresh(self, run_id: str, token: str) -> bool:
        client = await self._get_redis()
        try:
            result = await client.eval(
                REFRESH_SCRIPT,
                2,
                LOCK_KEY,
                HEARTBEAT_KEY,
                run_id,
                token,
                str(self.ttl_seconds),
                str(time.time()),
            )
        except redis.RedisError as e:
            logger.error(f"Pipeline lock refresh failed: {e}")
            return False
        return result == 1

    async def force_unlock(self) -> bool:
        """Admin recovery: drop the lock without checking ownership."""
        client = await self._get_redis()
        try:
            await client.delete(LOCK_KEY, HEARTBEAT_KEY)
        except redis.RedisError as e:
            logger.error(f"Failed to force unlock pipeline lock: {e}")
            return False
        logger.warning("Force-cleared pipeline lock")
        return True

    async def info(self) -> Optional[dict[str, Any]]:
        client = await self._get_redis()
        value = await client.get(LOCK_KEY)
        if not value:
            return None
        ttl = await client.ttl(LOCK_KEY)
        try:
            data = json.loads(value)
        except json.JSONDecodeError:
            return {"raw_value": value, "ttl_seconds": ttl if ttl > 0 else None}
        return {
            "run_id": data.get("run_id"),
            "started_at": data.get("started_at"),
            "ttl_seconds": ttl if ttl > 0 else None,
        }

    async def heartbeat(self, run_id: str, token: str, interval: Optional[int] = None):
        """Refresh the lock until cancelled; gives up after three straight failures."""
        interval = interval or settings.pipeline_lock_heartbeat_seconds
        failures = 0
        try:
            while True:
                await asyncio.sleep(interval)
                if await self.refresh(run_id, token):
                    failures = 0
                    continue
                failures += 1
                logger.warning(f"Lock heartbeat failed for run {run_id[:16]} ({failures} in a row)")
                if failures >= 3:
                    logger.error(f"Lock heartbeat stopping for run {run_id[:16]}")
                    return
        except asyncio.CancelledError:
            logger.debug(f"Lock heartbeat cancelled for run {run_id[:16]}")
            raise


# Global lock manager
run_lock_manager = RunLockManager()
