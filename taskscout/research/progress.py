"""Research progress log — per-task ring buffer of pipeline stage lines.

Storage:
    Redis LIST ``research:log:{task_id}`` capped at 200 entries.
    If Redis is unreachable, an in-process deque with the same cap is used.

The log is observability, not state: write failures are logged and
dropped, never raised into the pipeline.
"""

from __future__ import annotations

from collections import defaultdict, deque

import structlog

from taskscout.utils.clock import now_utc

logger = structlog.get_logger().bind(component="research.progress")

# Max log entries kept per task
_LOG_CAP = 200


class ProgressLog:
    """Append/read interface for research progress lines.

    Args:
        redis_url: Redis connection string; None uses only the in-process buffer.
        _redis:    Pre-built ``redis.asyncio.Redis`` (inject for tests).
    """

    def __init__(self, redis_url: str | None = None, *, _redis=None) -> None:
        self._redis_url = redis_url
        self._redis_client = _redis
        self._use_fallback = redis_url is None and _redis is None
        self._fallback: dict[str, deque[str]] = defaultdict(lambda: deque(maxlen=_LOG_CAP))

    async def _redis(self):
        """Lazy connect. Switches to the in-process buffer if Redis is down."""
        if self._use_fallback:
            return None
        if self._redis_client is not None:
            return self._redis_client
        try:
            import redis.asyncio as aioredis

            client = aioredis.from_url(self._redis_url, decode_responses=True)
            await client.ping()
            self._redis_client = client
            logger.info("redis_connected", url=self._redis_url)
            return client
        except Exception as exc:
            logger.warning("redis_unavailable_using_fallback", error=str(exc))
            self._use_fallback = True
            return None

    @staticmethod
    def _key(task_id: str) -> str:
        return f"research:log:{task_id}"

    async def log_entry(self, task_id: str, message: str) -> None:
        """Append a timestamped line (ring buffer, capped at 200)."""
        entry = f"[{now_utc().strftime('%H:%M:%S')}] {message}"
        r = await self._redis()
        if r is not None:
            try:
                async with r.pipeline() as pipe:
                    pipe.rpush(self._key(task_id), entry)
                    pipe.ltrim(self._key(task_id), -_LOG_CAP, -1)
                    await pipe.execute()
                return
            except Exception as exc:
                logger.warning("research_log_failed", task_id=task_id, error=str(exc))
        self._fallback[task_id].append(entry)

    async def get_log(self, task_id: str, n: int = 50) -> list[str]:
        """Return the last *n* entries (newest last)."""
        r = await self._redis()
        if r is not None:
            try:
                return list(await r.lrange(self._key(task_id), -n, -1))
            except Exception as exc:
                logger.warning("research_get_log_failed", task_id=task_id, error=str(exc))
        return list(self._fallback.get(task_id, ()))[-n:]

    async def clear(self, task_id: str) -> None:
        r = await self._redis()
        if r is not None:
            try:
                await r.delete(self._key(task_id))
            except Exception as exc:
                logger.warning("research_log_clear_failed", task_id=task_id, error=str(exc))
        self._fallback.pop(task_id, None)

    async def close(self) -> None:
        if self._redis_client is not None:
            await self._redis_client.aclose()
            self._redis_client = None
