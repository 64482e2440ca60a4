"""Unit tests for the in-memory key-value store and store selection."""

from unittest.mock import patch

import pytest

from questboard.core import cache_client as cache_module
from questboard.core.cache_client import InMemoryCache, get_kv_store


@pytest.mark.unit
class TestInMemoryCache:
    """Tests for InMemoryCache."""

    async def test_set_and_get(self):
        cache = InMemoryCache()

        await cache.set("k", "v")

        assert await cache.get("k") == "v"
        assert await cache.get("missing") is None

    async def test_ttl_expiry(self):
        cache = InMemoryCache()

        with patch.object(cache_module.time, "time", return_value=1000.0):
            await cache.set("k", "v", ttl_seconds=10)
        with patch.object(cache_module.time, "time", return_value=1009.0):
            assert await cache.get("k") == "v"
        with patch.object(cache_module.time, "time", return_value=1011.0):
            assert await cache.get("k") is None

    async def test_zero_ttl_never_expires(self):
        cache = InMemoryCache()

        with patch.object(cache_module.time, "time", return_value=1000.0):
            await cache.set("k", "v", ttl_seconds=10)
            await cache.set("k", "v2")
        with patch.object(cache_module.time, "time", return_value=10**9):
            assert await cache.get("k") == "v2"

    async def test_delete_and_keys(self):
        cache = InMemoryCache()
        await cache.set("questboard:view:u1:dailyTasks:a", "1")
        await cache.set("questboard:view:u1:taskStats:default", "2")
        await cache.set("questboard:view:u2:dailyTasks:a", "3")

        keys = await cache.keys("questboard:view:u1:*")
        assert sorted(keys) == ["questboard:view:u1:dailyTasks:a", "questboard:view:u1:taskStats:default"]

        assert await cache.delete(*keys) is True
        assert await cache.keys("questboard:view:*") == ["questboard:view:u2:dailyTasks:a"]
        assert await cache.delete() is False

    async def test_expired_keys_do_not_match(self):
        cache = InMemoryCache()

        with patch.object(cache_module.time, "time", return_value=1000.0):
            await cache.set("questboard:view:u1:taskStats:default", "1", ttl_seconds=10)
            await cache.set("questboard:view:u1:dailyTasks:a", "2")
        with patch.object(cache_module.time, "time", return_value=1011.0):
            assert await cache.keys("questboard:view:u1:*") == ["questboard:view:u1:dailyTasks:a"]


@pytest.mark.unit
class TestGetKvStore:
    """Tests for store selection."""

    def test_falls_back_to_memory_without_redis(self):
        with patch.object(cache_module.redis_client, "_client", None):
            assert get_kv_store() is cache_module.cache_client

    def test_prefers_redis_when_available(self):
        with patch.object(cache_module.redis_client, "_client", object()):
            assert get_kv_store() is cache_module.redis_client
