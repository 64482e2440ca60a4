"""Cache of task-derived views (task lists, stats, streaks, badges).

Views are keyed per user and namespace:
``questboard:view:{user_id}:{namespace}:{variant}``. A day reset or any task
mutation drops every namespace for that user so the next read refetches.

Invalidation failures are logged, not raised: a stale view lives at most one
TTL and the board itself is always rebuilt from the remote reset result.
"""

import logging
from collections.abc import Iterable

from pydantic import ValidationError

from questboard.core.cache_client import KeyValueStore, get_kv_store
from questboard.core.config import Constants, constants
from questboard.domain.task import TaskFilters
from questboard.models.service_models import TaskSet, TaskStats


logger = logging.getLogger(__name__)

TASK_LIST_NAMESPACE = "dailyTasks"
STATS_NAMESPACE = "taskStats"


class TaskViewCache:
    """Read-through cache for task lists and stats of one or more users."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        ttl_seconds: int = Constants.CACHE_TTL_TASK_VIEW_SECONDS,
        extra_namespaces: Iterable[str] = (),
    ) -> None:
        self._store = store if store is not None else get_kv_store()
        self._ttl_seconds = ttl_seconds
        self._namespaces = tuple(dict.fromkeys((*constants.VIEW_NAMESPACES, *extra_namespaces)))

    @property
    def namespaces(self) -> tuple[str, ...]:
        return self._namespaces

    @staticmethod
    def key(user_id: str, namespace: str, variant: str = "default") -> str:
        return f"{constants.KEY_PREFIX}:view:{user_id}:{namespace}:{variant}"

    async def get_task_set(self, user_id: str, filters: TaskFilters) -> TaskSet | None:
        raw = await self._store.get(self.key(user_id, TASK_LIST_NAMESPACE, filters.cache_key()))
        if raw is None:
            return None
        try:
            return TaskSet.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Dropping unreadable cached task list for user %s: %s", user_id, e)
            await self._store.delete(self.key(user_id, TASK_LIST_NAMESPACE, filters.cache_key()))
            return None

    async def put_task_set(self, user_id: str, filters: TaskFilters, task_set: TaskSet) -> None:
        await self._store.set(
            self.key(user_id, TASK_LIST_NAMESPACE, filters.cache_key()),
            task_set.model_dump_json(by_alias=True),
            self._ttl_seconds,
        )
        await self._store.set(
            self.key(user_id, STATS_NAMESPACE),
            task_set.stats.model_dump_json(by_alias=True),
            self._ttl_seconds,
        )

    async def get_stats(self, user_id: str) -> TaskStats | None:
        raw = await self._store.get(self.key(user_id, STATS_NAMESPACE))
        if raw is None:
            return None
        try:
            return TaskStats.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Dropping unreadable cached stats for user %s: %s", user_id, e)
            return None

    async def invalidate_user(self, user_id: str, namespaces: Iterable[str] | None = None) -> int:
        """Drop every cached view of ``user_id`` in the given (default: all) namespaces.

        Returns:
            Number of keys removed
        """
        removed = 0
        for namespace in namespaces if namespaces is not None else self._namespaces:
            try:
                keys = await self._store.keys(f"{constants.KEY_PREFIX}:view:{user_id}:{namespace}:*")
                if keys:
                    await self._store.delete(*keys)
                    removed += len(keys)
            except Exception as e:
                # Stale views expire with their TTL
                logger.warning("Failed to invalidate %s views for user %s: %s", namespace, user_id, e)

        if removed:
            logger.info("Invalidated %d cached view(s) for user %s", removed, user_id)
        else:
            logger.debug("No cached views to invalidate for user %s", user_id)
        return removed
