"""Redis wake-up signal between enqueuers and idle workers.

The signal is advisory: the ``automation_jobs`` table stays the only source of
truth and workers still poll on a fixed interval when Redis is unavailable.
"""

from __future__ import annotations

import asyncio
import logging

from redis import Redis
from redis.asyncio import Redis as AsyncRedis

from leadflow.core.config import RedisSettings

logger = logging.getLogger(__name__)


class JobNotifier:
    """Push a wake-up token after jobs were committed."""

    def __init__(self, redis: Redis | None, *, key: str) -> None:
        self._redis = redis
        self._key = key

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> JobNotifier:
        client = Redis.from_url(settings.url) if settings.url else None
        return cls(client, key=settings.wakeup_key)

    def notify(self, job_type: str) -> None:
        if self._redis is None:
            return
        try:
            self._redis.lpush(self._key, job_type)
            self._redis.ltrim(self._key, 0, 99)
        except Exception:  # pragma: no cover - best effort signal
            logger.warning("queue.wakeup.publish_failed", extra={"key": self._key})

    def close(self) -> None:
        if self._redis is not None:
            self._redis.close()


class WakeupListener:
    """Block until a wake-up token arrives or ``timeout`` elapses."""

    def __init__(self, redis: AsyncRedis | None, *, key: str) -> None:
        self._redis = redis
        self._key = key

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> WakeupListener:
        client = AsyncRedis.from_url(settings.url) if settings.url else None
        return cls(client, key=settings.wakeup_key)

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def wait(self, timeout: float) -> bool:
        """Return ``True`` when woken early; otherwise sleep out ``timeout``."""

        if self._redis is None:
            await asyncio.sleep(timeout)
            return False
        try:
            popped = await self._redis.blpop([self._key], timeout=max(1, int(timeout)))
        except Exception:  # pragma: no cover - best effort signal
            logger.warning("queue.wakeup.listen_failed", extra={"key": self._key})
            await asyncio.sleep(timeout)
            return False
        return popped is not None

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
