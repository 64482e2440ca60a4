"""Redis-backed key-value store for day markers and cached task views.

Day markers are written without a TTL and must survive transient Redis
errors, so writes and deletes retry with exponential backoff. View keys that
still cannot be deleted are remembered and dropped on the next successful
delete; a stale view is tolerable until then.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from questboard.core.config import Constants, settings


logger = logging.getLogger(__name__)

T = TypeVar("T")

_PENDING_DELETES_MAXLEN = 1000


def with_retry(
    max_retries: int = 3, base_delay: float = 0.1
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Retry a coroutine on ``RedisError``, doubling the delay after each attempt.

    The last error is re-raised once ``max_retries`` attempts have failed.
    """

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            for attempt in range(1, max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except RedisError as e:
                    if attempt == max_retries:
                        logger.error("Redis %s failed after %d attempts: %s", func.__name__, attempt, e)
                        raise
                    delay = base_delay * 2 ** (attempt - 1)
                    logger.warning(
                        "Redis %s failed (attempt %d): %s; retrying in %.2fs", func.__name__, attempt, e, delay
                    )
                    await asyncio.sleep(delay)
            msg = "max_retries must be at least 1"
            raise ValueError(msg)

        return wrapper

    return decorator


class RedisClient:
    """Pooled async Redis connection exposing the ``KeyValueStore`` surface."""

    def __init__(self, url: str | None = None) -> None:
        url = url if url is not None else settings.redis_url
        self._client: Redis | None = None
        self._pending_deletes: deque[tuple[str, ...]] = deque(maxlen=_PENDING_DELETES_MAXLEN)

        if not url:
            logger.info("REDIS_URL not set; day markers and views stay in process memory")
            return
        try:
            self._client = Redis.from_url(url, decode_responses=True, max_connections=Constants.REDIS_MAX_CONNECTIONS)
        except (RedisError, ValueError) as e:
            logger.warning("Invalid Redis configuration (%s); using process memory instead", e)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> str | None:
        """Read a key; a Redis error reads as a miss."""
        if self._client is None:
            return None
        try:
            return await self._client.get(key)
        except RedisError as e:
            logger.warning("Redis GET %s failed: %s", key, e)
            return None

    async def set(self, key: str, value: str, ttl_seconds: int = 0) -> bool:
        """Write a key, expiring after ``ttl_seconds`` unless it is 0.

        Returns:
            False if Redis is not configured or every retry failed
        """
        if self._client is None:
            return False
        try:
            await self._set(key, value, ttl_seconds)
        except RedisError:
            return False
        return True

    @with_retry()
    async def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds or None)  # type: ignore[union-attr]

    async def delete(self, *keys: str) -> bool:
        """Delete keys, remembering them for a later attempt when Redis fails.

        Returns:
            True if the keys are gone
        """
        if not keys:
            return False
        if self._client is None:
            self._pending_deletes.append(keys)
            return False
        try:
            await self._delete(*keys)
        except RedisError:
            self._pending_deletes.append(keys)
            return False
        await self._flush_pending_deletes()
        return True

    @with_retry()
    async def _delete(self, *keys: str) -> None:
        await self._client.delete(*keys)  # type: ignore[union-attr]

    async def _flush_pending_deletes(self) -> None:
        flushed = 0
        while self._pending_deletes:
            keys = self._pending_deletes[0]
            try:
                await self._client.delete(*keys)  # type: ignore[union-attr]
            except RedisError as e:
                logger.warning("Deferred delete of %d key(s) failed again: %s", len(keys), e)
                break
            self._pending_deletes.popleft()
            flushed += 1
        if flushed:
            logger.info("Dropped %d deferred view invalidation(s)", flushed)

    async def keys(self, pattern: str) -> list[str]:
        """Glob-match keys with SCAN; a Redis error matches nothing."""
        if self._client is None:
            return []
        try:
            return [key async for key in self._client.scan_iter(match=pattern)]
        except RedisError as e:
            logger.warning("Redis SCAN %s failed: %s", pattern, e)
            return []

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())  # type: ignore[misc]
        except RedisError as e:
            logger.warning("Redis PING failed: %s", e)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            logger.info("Redis connection closed")


redis_client = RedisClient()
