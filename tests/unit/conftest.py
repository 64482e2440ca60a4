"""Pytest configuration and fixtures for unit tests."""

import pytest

from questboard.core.cache_client import InMemoryCache
from questboard.domain.task import TaskCategory, TaskDraft
from questboard.services.day_boundary import DayBoundaryTracker
from questboard.services.memory_store import InMemoryTaskStore
from questboard.services.notification_service import NotificationCenter
from questboard.services.reset_orchestrator import ResetOrchestrator
from questboard.services.task_board import TaskBoard
from questboard.services.view_cache import TaskViewCache
from tests.unit.mocks import START, USER_ID, FakeClock, ScriptedTaskStore


@pytest.fixture
def clock():
    """Provides a settable clock starting on Monday 2024-05-06 09:00."""
    return FakeClock(START)


@pytest.fixture
def kv_store():
    """Provides a fresh in-memory key-value store for each test."""
    return InMemoryCache()


@pytest.fixture
def memory_store(clock):
    return InMemoryTaskStore(clock=clock)


@pytest.fixture
def store(memory_store):
    """Provides a scriptable store backed by the in-memory reference store."""
    return ScriptedTaskStore(memory_store)


@pytest.fixture
def notifications(clock):
    return NotificationCenter(clock=clock, dismiss_seconds=6)


@pytest.fixture
def view_cache(kv_store):
    return TaskViewCache(kv_store)


@pytest.fixture
def tracker(kv_store, clock):
    return DayBoundaryTracker(kv_store, clock=clock)


@pytest.fixture
def board(store, notifications):
    return TaskBoard(store, notifications=notifications, stale_threshold=2, timeout_seconds=1.0)


@pytest.fixture
def orchestrator(store, tracker, board, view_cache, notifications):
    return ResetOrchestrator(
        store=store,
        tracker=tracker,
        board=board,
        view_cache=view_cache,
        notifications=notifications,
        timeout_seconds=1.0,
    )


@pytest.fixture
async def seeded(memory_store):
    """Creates three plain tasks for USER_ID and returns them in creation order."""
    drafts = [
        TaskDraft(title="Drink water", category=TaskCategory.HEALTH, xp_reward=10),
        TaskDraft(title="Read a chapter", category=TaskCategory.LEARNING, xp_reward=30),
        TaskDraft(title="Go for a run", category=TaskCategory.FITNESS, xp_reward=60),
    ]
    return [await memory_store.create_task(USER_ID, draft) for draft in drafts]


@pytest.fixture
async def loaded_board(board, seeded, memory_store):
    """A board holding the seeded tasks after the day's reset."""
    task_set = await memory_store.reset_day(USER_ID)
    board.replace_all(task_set.tasks)
    return board
