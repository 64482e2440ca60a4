"""Per-user daily task session.

Wires the day-boundary tracker, reset orchestrator, task board, view cache,
notifications and countdown for one signed-in user:

- the day-boundary check runs once per mount, and task-list reads made
  through the session wait for it (success or failure) before returning,
- background jobs refresh the countdown and re-check for a rollover while
  the session stays open,
- logout stops the jobs and forgets the user's day marker and cached views.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from questboard.core.cache_client import KeyValueStore, get_kv_store
from questboard.core.clock import Clock, local_now
from questboard.core.errors import InvariantViolationError, QuestboardError
from questboard.core.logging import span
from questboard.core.scheduler import remove_session_jobs, schedule_session_jobs
from questboard.domain.task import Task, TaskDraft, TaskFilters, TaskUpdate
from questboard.interface.board_events import TransitionRequested, dispatch
from questboard.models.service_models import Countdown, ResetOutcome, ResetTrigger, TaskSet, TransitionResult
from questboard.services import countdown, task_service
from questboard.services.day_boundary import DayBoundaryTracker
from questboard.services.notification_service import NotificationCenter
from questboard.services.reset_orchestrator import ResetOrchestrator
from questboard.services.task_board import TaskBoard
from questboard.services.task_store import RemoteTaskStore
from questboard.services.view_cache import TaskViewCache


logger = logging.getLogger(__name__)

CountdownListener = Callable[[Countdown], None]


class DailyTaskSession:
    """Everything one user's daily task page needs."""

    def __init__(
        self,
        user_id: str,
        *,
        store: RemoteTaskStore,
        kv_store: KeyValueStore | None = None,
        clock: Clock = local_now,
        extra_namespaces: Iterable[str] = (),
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        kv_store = kv_store if kv_store is not None else get_kv_store()
        self.user_id = user_id
        self.store = store
        self.clock = clock
        self.notifications = NotificationCenter(clock=clock)
        self.view_cache = TaskViewCache(kv_store, extra_namespaces=extra_namespaces)
        self.tracker = DayBoundaryTracker(kv_store, clock=clock)
        self.board = TaskBoard(store, notifications=self.notifications)
        self.orchestrator = ResetOrchestrator(
            store=store,
            tracker=self.tracker,
            board=self.board,
            view_cache=self.view_cache,
            notifications=self.notifications,
            extra_namespaces=extra_namespaces,
        )
        self._scheduler = scheduler
        self._mount_check: asyncio.Task[ResetOutcome] | None = None
        self._countdown_listeners: list[CountdownListener] = []
        self._jobs_scheduled = False

    # Lifecycle

    def start(self, *, trigger: ResetTrigger = ResetTrigger.AUTO) -> asyncio.Task[ResetOutcome]:
        """Begin the mount-time day check without waiting for it.

        Calling again while mounted returns the same check.
        """
        if self._mount_check is None:
            self._mount_check = asyncio.create_task(self._check_on_mount(trigger))
        return self._mount_check

    async def mount(self, *, trigger: ResetTrigger = ResetTrigger.AUTO) -> ResetOutcome:
        """Run (once) the day-boundary check and load the board."""
        return await self.start(trigger=trigger)

    async def _check_on_mount(self, trigger: ResetTrigger) -> ResetOutcome:
        with span("session.mount"):
            outcome = await self.orchestrator.perform_reset(self.user_id, trigger=trigger)
            if outcome.task_set is None:
                await self._load_board()
            return outcome

    async def _load_board(self) -> None:
        try:
            await self.board.rebuild(self.user_id)
        except (QuestboardError, TimeoutError) as e:
            logger.warning("Could not load tasks for user %s: %s", self.user_id, e)
            await self.notifications.notify_error(e)

    async def wait_until_fresh(self) -> None:
        """Wait for the mount-time check, whatever its result."""
        if self._mount_check is not None:
            await asyncio.wait({self._mount_check})

    def start_background_jobs(self) -> list[str]:
        """Schedule countdown ticks and periodic rollover checks."""
        self._jobs_scheduled = True
        return schedule_session_jobs(
            user_id=self.user_id,
            on_tick=self.publish_countdown,
            on_rollover_check=self.check_rollover,
            target=self._scheduler,
        )

    def stop_background_jobs(self) -> None:
        if self._jobs_scheduled:
            remove_session_jobs(self.user_id, target=self._scheduler)
            self._jobs_scheduled = False

    async def logout(self) -> None:
        """Stop jobs and forget everything cached for this user."""
        with span("session.logout"):
            self.stop_background_jobs()
            if self._mount_check is not None and not self._mount_check.done():
                self._mount_check.cancel()
            self._mount_check = None
            await self.board.wait_until_settled()
            await self.tracker.clear(self.user_id)
            await self.view_cache.invalidate_user(self.user_id)
            self.board.replace_all([])
            logger.info("User %s logged out of the daily task session", self.user_id)

    # Resets

    async def check_rollover(self) -> ResetOutcome:
        """Reset if the local day changed since the last reset."""
        return await self.orchestrator.perform_reset(self.user_id)

    async def refresh(self) -> ResetOutcome:
        """Manual refresh: reset regardless of the day marker."""
        return await self.orchestrator.trigger_manual_reset(self.user_id)

    # Reads

    async def list_tasks(self, filters: TaskFilters | None = None) -> TaskSet:
        await self.wait_until_fresh()
        return await task_service.list_tasks(
            store=self.store, view_cache=self.view_cache, user_id=self.user_id, filters=filters
        )

    def countdown(self) -> Countdown:
        return countdown.tick(self.clock())

    def deadline_countdown(self, task: Task) -> Countdown | None:
        if task.deadline is None:
            return None
        return countdown.until_deadline(task.deadline, self.clock())

    def on_countdown(self, listener: CountdownListener) -> Callable[[], None]:
        self._countdown_listeners.append(listener)
        return lambda: self._countdown_listeners.remove(listener)

    def publish_countdown(self) -> Countdown:
        value = self.countdown()
        for listener in list(self._countdown_listeners):
            listener(value)
        return value

    # Board transitions

    async def complete(self, task_id: str) -> TransitionResult:
        await self.wait_until_fresh()
        result = await self.board.request_complete(task_id)
        await self.view_cache.invalidate_user(self.user_id)
        return result

    async def uncomplete(self, task_id: str) -> TransitionResult:
        await self.wait_until_fresh()
        result = await self.board.request_uncomplete(task_id)
        await self.view_cache.invalidate_user(self.user_id)
        return result

    async def handle(self, event: TransitionRequested) -> TransitionResult:
        """Apply a drag, keyboard or button transition request."""
        await self.wait_until_fresh()
        result = await dispatch(self.board, event)
        await self.view_cache.invalidate_user(self.user_id)
        return result

    async def resync(self) -> bool:
        """Rebuild the board if a task was rejected as stale or the partition broke.

        Returns:
            True if the board was rebuilt
        """
        try:
            self.board.verify_partition()
        except InvariantViolationError as e:
            logger.error("Board invariant violated for user %s: %s", self.user_id, e)
            await self.board.rebuild(self.user_id)
            return True

        if self.board.needs_resync:
            await self.board.rebuild(self.user_id)
            return True
        return False

    # CRUD

    async def create_task(self, draft: TaskDraft) -> Task:
        task = await task_service.create_task(
            store=self.store, view_cache=self.view_cache, user_id=self.user_id, draft=draft, clock=self.clock
        )
        await self.board.rebuild(self.user_id)
        return task

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        task = await task_service.update_task(
            store=self.store,
            view_cache=self.view_cache,
            user_id=self.user_id,
            current=self.board.get(task_id),
            update=update,
            clock=self.clock,
        )
        await self.board.rebuild(self.user_id)
        return task

    async def delete_task(self, task_id: str) -> None:
        await task_service.delete_task(
            store=self.store, view_cache=self.view_cache, user_id=self.user_id, task_id=task_id
        )
        await self.board.rebuild(self.user_id)
