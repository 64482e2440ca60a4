"""Key-value surface for day markers and view caches, and its in-process store."""

import fnmatch
import logging
import threading
import time
from typing import Protocol

from questboard.core.redis_client import redis_client


logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """The small async key-value surface day markers and view caches need."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int = 0) -> bool: ...

    async def delete(self, *keys: str) -> bool: ...

    async def keys(self, pattern: str) -> list[str]: ...


class InMemoryCache:
    """Process-local ``KeyValueStore`` with per-key expiry.

    Expired entries are dropped lazily when read or matched.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._expires_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def _evict(self, keys: list[str]) -> None:
        now = time.time()
        for key in keys:
            expires_at = self._expires_at.get(key)
            if expires_at is not None and expires_at < now:
                del self._data[key]
                del self._expires_at[key]

    async def get(self, key: str) -> str | None:
        with self._lock:
            self._evict([key])
            return self._data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int = 0) -> bool:
        """Store ``value``; a ``ttl_seconds`` of 0 keeps it until deleted."""
        with self._lock:
            self._data[key] = value
            if ttl_seconds > 0:
                self._expires_at[key] = time.time() + ttl_seconds
            else:
                self._expires_at.pop(key, None)
        return True

    async def delete(self, *keys: str) -> bool:
        if not keys:
            return False
        with self._lock:
            for key in keys:
                self._data.pop(key, None)
                self._expires_at.pop(key, None)
        logger.debug("Deleted %d key(s)", len(keys))
        return True

    async def keys(self, pattern: str) -> list[str]:
        """Keys matching a glob such as ``questboard:view:42:*``."""
        with self._lock:
            self._evict(list(self._expires_at))
            return [key for key in self._data if fnmatch.fnmatch(key, pattern)]


cache_client = InMemoryCache()


def get_kv_store() -> KeyValueStore:
    """Return Redis when ``REDIS_URL`` is configured, else the in-process cache."""
    if redis_client.is_available:
        return redis_client
    return cache_client
