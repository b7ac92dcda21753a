"""Per-date advisory lock for collection runs.

Without a Redis client the lock is a no-op and concurrent collectors for
the same date fall back to last-write-wins upserts.
"""
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional

from redis.asyncio import Redis
from redis.asyncio.lock import Lock as AsyncRedisLock

from .exceptions import CollectionLockedError


logger = logging.getLogger(__name__)


class CollectionLock:
    """Fail-fast Redis lock keyed by target date."""

    LOCK_TTL_SECONDS = 600  # 10 minutes
    KEY_PREFIX = "pulse:metrics:collect_lock"

    def __init__(self, redis: Optional[Redis] = None) -> None:
        """Initialize lock.

        Args:
            redis: Injected redis.asyncio.Redis client, or None to disable
        """
        self.redis = redis

    def key_for(self, target_date: date) -> str:
        return f"{self.KEY_PREFIX}:{target_date.isoformat()}"

    @asynccontextmanager
    async def hold(self, target_date: date) -> AsyncIterator[None]:
        """Hold the lock for target_date for the duration of the block.

        Raises:
            CollectionLockedError: If another collector holds the lock
        """
        if self.redis is None:
            yield
            return

        key = self.key_for(target_date)
        lock = AsyncRedisLock(
            self.redis,
            name=key,
            timeout=self.LOCK_TTL_SECONDS,
            blocking=False,
        )

        acquired = await lock.acquire(blocking=False)
        if not acquired:
            raise CollectionLockedError(target_date, key)

        logger.debug("Acquired collection lock %s", key)
        try:
            yield
        finally:
            try:
                await lock.release()
                logger.debug("Released collection lock %s", key)
            except Exception as exc:
                logger.error("Failed to release lock %s: %s", key, exc)
