"""Reset orchestration: from rollover detection to a refreshed board.

Phases per user::

    IDLE -> CHECKING -> NO_RESET_NEEDED
                     -> RESETTING -> RESOLVED
                                  -> FAILED

On RESETTING the orchestrator waits for in-flight board transitions, drops
every cached task-derived view of the user, and asks the remote store to roll
the day over. Only a successful reset advances the day marker; a failed one
leaves marker and board untouched so the next check retries.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import date

from questboard.core.config import settings
from questboard.core.errors import QuestboardError, classify_error_with_response
from questboard.core.logging import log_with_user_context, span
from questboard.models.service_models import ResetOutcome, ResetPhase, ResetTrigger
from questboard.services.day_boundary import DayBoundaryTracker
from questboard.services.notification_service import NotificationCenter
from questboard.services.task_board import TaskBoard
from questboard.services.task_store import RemoteTaskStore
from questboard.services.view_cache import TaskViewCache


logger = logging.getLogger(__name__)

ResetListener = Callable[[ResetOutcome], Awaitable[None] | None]


class ResetOrchestrator:
    """Runs day resets for one board and reports their outcome."""

    def __init__(
        self,
        *,
        store: RemoteTaskStore,
        tracker: DayBoundaryTracker,
        board: TaskBoard,
        view_cache: TaskViewCache,
        notifications: NotificationCenter | None = None,
        extra_namespaces: Iterable[str] = (),
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._board = board
        self._view_cache = view_cache
        self._notifications = notifications
        self._namespaces = tuple(dict.fromkeys((*view_cache.namespaces, *extra_namespaces)))
        self._timeout = timeout_seconds or settings.remote_timeout_seconds
        self._phases: dict[str, ResetPhase] = {}
        self._requests: dict[str, int] = {}
        self._running: dict[str, asyncio.Future[ResetOutcome]] = {}
        self._listeners: list[ResetListener] = []

    def phase(self, user_id: str) -> ResetPhase:
        return self._phases.get(user_id, ResetPhase.IDLE)

    def subscribe(self, listener: ResetListener) -> Callable[[], None]:
        """Call ``listener`` with every successful reset; returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set_phase(self, user_id: str, phase: ResetPhase) -> None:
        self._phases[user_id] = phase
        log_with_user_context(logger, "debug", f"Reset phase -> {phase}", user_id=user_id)

    async def perform_reset(
        self,
        user_id: str,
        *,
        trigger: ResetTrigger = ResetTrigger.AUTO,
        force: bool = False,
    ) -> ResetOutcome:
        """Check for a day rollover and reset the user's tasks if needed.

        A check made while a reset for the user is already running joins that
        reset instead of starting its own.

        Args:
            user_id: User whose tasks to reset
            trigger: What caused the reset; selects the banner shown
            force: Skip the day-boundary check and always reset

        Returns:
            ResetOutcome describing the final phase; ``superseded`` is set when
            a newer reset for the same user started before this one finished
        """
        if not force and user_id in self._running:
            return await self._join(user_id)
        today = self._tracker.today()

        with span("reset_orchestrator.perform_reset"):
            if not force:
                self._set_phase(user_id, ResetPhase.CHECKING)
                try:
                    needs_reset = await self._tracker.needs_reset(user_id)
                except (QuestboardError, TimeoutError) as e:
                    return await self._fail(user_id, trigger, today, e, superseded=user_id in self._running)
                if user_id in self._running:
                    return await self._join(user_id)
                if not needs_reset:
                    self._set_phase(user_id, ResetPhase.NO_RESET_NEEDED)
                    logger.debug("Same day for user %s, no reset needed", user_id)
                    return ResetOutcome(user_id=user_id, phase=ResetPhase.NO_RESET_NEEDED, trigger=trigger, day=today)

            return await self._reset(user_id, trigger, today)

    async def _join(self, user_id: str) -> ResetOutcome:
        logger.debug("Reset already running for user %s, waiting for it", user_id)
        return await asyncio.shield(self._running[user_id])

    async def _reset(self, user_id: str, trigger: ResetTrigger, today: date) -> ResetOutcome:
        request = self._requests.get(user_id, 0) + 1
        self._requests[user_id] = request
        running: asyncio.Future[ResetOutcome] = asyncio.get_running_loop().create_future()
        self._running[user_id] = running
        self._set_phase(user_id, ResetPhase.RESETTING)
        try:
            outcome = await self._run_reset(user_id, trigger, today, request)
        except BaseException as e:
            if request == self._requests[user_id] and self.phase(user_id) == ResetPhase.RESETTING:
                self._set_phase(user_id, ResetPhase.FAILED)
            running.set_result(
                ResetOutcome(
                    user_id=user_id,
                    phase=ResetPhase.FAILED,
                    trigger=trigger,
                    day=today,
                    error=classify_error_with_response(e),
                )
            )
            raise
        else:
            running.set_result(outcome)
            return outcome
        finally:
            if self._running.get(user_id) is running:
                del self._running[user_id]

    async def _run_reset(self, user_id: str, trigger: ResetTrigger, today: date, request: int) -> ResetOutcome:
        log_with_user_context(logger, "info", "New day detected, resetting tasks", user_id=user_id)
        try:
            await self._board.wait_until_settled()
            await self._view_cache.invalidate_user(user_id, self._namespaces)
            task_set = await asyncio.wait_for(self._store.reset_day(user_id), self._timeout)
        except (QuestboardError, TimeoutError) as e:
            return await self._fail(user_id, trigger, today, e, superseded=request != self._requests[user_id])

        if request != self._requests[user_id]:
            logger.info("Discarding reset result for user %s: a newer reset started", user_id)
            return ResetOutcome(
                user_id=user_id,
                phase=ResetPhase.RESOLVED,
                trigger=trigger,
                day=today,
                task_set=task_set,
                superseded=True,
            )

        await self._tracker.mark_reset_done(user_id, today)
        self._board.replace_all(task_set.tasks)
        self._set_phase(user_id, ResetPhase.RESOLVED)

        outcome = ResetOutcome(
            user_id=user_id, phase=ResetPhase.RESOLVED, trigger=trigger, day=today, task_set=task_set
        )
        if self._notifications is not None:
            await self._notifications.notify_reset(trigger=trigger, reset_count=len(task_set.tasks))
        for listener in list(self._listeners):
            result = listener(outcome)
            if result is not None:
                await result

        log_with_user_context(
            logger, "info", "Daily reset completed", user_id=user_id, day=today.isoformat(), trigger=trigger
        )
        return outcome

    async def _fail(
        self, user_id: str, trigger: ResetTrigger, today: date, error: BaseException, *, superseded: bool
    ) -> ResetOutcome:
        response = classify_error_with_response(error)
        if not superseded:
            self._set_phase(user_id, ResetPhase.FAILED)
            if self._notifications is not None:
                await self._notifications.notify_error(response)
        logger.warning("Daily reset failed for user %s: %s", user_id, error)
        return ResetOutcome(
            user_id=user_id,
            phase=ResetPhase.FAILED,
            trigger=trigger,
            day=today,
            error=response,
            superseded=superseded,
        )

    async def trigger_manual_reset(self, user_id: str) -> ResetOutcome:
        """Reset regardless of the day marker (the "refresh" button)."""
        return await self.perform_reset(user_id, trigger=ResetTrigger.MANUAL, force=True)
