"""Two-bucket task board with optimistic, per-task serialized transitions.

The board keeps one record per visible task; its bucket is derived from
``completed_today`` so a task can never sit in both columns. Every transition
is a snapshot transaction:

1. validate the source bucket and capture a deep copy of the task,
2. apply the optimistic change locally,
3. call the remote store under the configured timeout,
4. keep the change on success, restore the exact snapshot on failure.

Transitions of one task queue behind a per-task ``asyncio.Lock``. When an
authoritative task list arrives while a task's transition is in flight, the
authoritative value is held back until the transition settles. A confirmed
transition is then replayed onto it; a rolled-back one simply yields to it.
"""

import asyncio
import logging

from questboard.core.config import settings
from questboard.core.errors import (
    ErrorCode,
    ErrorResponse,
    ErrorSeverity,
    InvalidTransitionError,
    InvariantViolationError,
    StaleStateError,
    TransportError,
    classify_error_with_response,
)
from questboard.core.logging import log_with_context, span
from questboard.domain.task import Bucket, Task, TaskFilters
from questboard.models.service_models import BoardStats, TransitionResult, TransitionStatus
from questboard.services.notification_service import NotificationCenter
from questboard.services.task_store import RemoteTaskStore


logger = logging.getLogger(__name__)

_REBUILD_FILTERS = TaskFilters(limit=10_000)
_MISSING = object()


def _completed(task: Task) -> Task:
    streak = task.current_streak + 1
    return task.model_copy(
        update={
            "completed_today": True,
            "current_streak": streak,
            "longest_streak": max(task.longest_streak, streak),
            "total_completions": task.total_completions + 1,
        }
    )


def _uncompleted(task: Task) -> Task:
    return task.model_copy(update={"completed_today": False, "current_streak": max(0, task.current_streak - 1)})


def _moved(task: Task, target: Bucket) -> Task:
    if task.bucket == target:
        return task
    return _completed(task) if target == Bucket.COMPLETED else _uncompleted(task)


class TaskBoard:
    """Pending/completed partition of one user's visible tasks."""

    def __init__(
        self,
        store: RemoteTaskStore,
        *,
        notifications: NotificationCenter | None = None,
        stale_threshold: int | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._stale_threshold = stale_threshold or settings.stale_rejection_threshold
        self._timeout = timeout_seconds or settings.remote_timeout_seconds

        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._in_flight: set[str] = set()
        self._deferred: dict[str, Task | None] = {}
        self._stale_counts: dict[str, int] = {}
        self._needs_resync: set[str] = set()
        self._settled = asyncio.Event()
        self._settled.set()

    # Reads

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get(self, task_id: str) -> Task:
        """Current (possibly optimistic) state of a task.

        Raises:
            KeyError: If the task is not on the board
        """
        return self._tasks[task_id]

    def bucket_of(self, task_id: str) -> Bucket:
        return self.get(task_id).bucket

    def pending(self) -> list[Task]:
        return [task for task in self._tasks.values() if task.bucket == Bucket.PENDING]

    def completed(self) -> list[Task]:
        return [task for task in self._tasks.values() if task.bucket == Bucket.COMPLETED]

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    @property
    def needs_resync(self) -> frozenset[str]:
        """Tasks whose last transition was rejected as stale."""
        return frozenset(self._needs_resync)

    def stats(self) -> BoardStats:
        pending = self.pending()
        completed = self.completed()
        return BoardStats(
            pending=len(pending),
            completed=len(completed),
            xp_pending=sum(task.xp_reward for task in pending),
            xp_completed=sum(task.xp_reward for task in completed),
            in_flight=len(self._in_flight),
        )

    def verify_partition(self) -> None:
        """Check that every visible task sits in exactly one bucket.

        Raises:
            InvariantViolationError: If the partition is broken
        """
        pending_ids = {task.id for task in self.pending()}
        completed_ids = {task.id for task in self.completed()}
        if pending_ids & completed_ids:
            msg = f"Tasks in both buckets: {sorted(pending_ids & completed_ids)}"
            raise InvariantViolationError(msg)
        if pending_ids | completed_ids != set(self._tasks):
            msg = "Board holds tasks outside both buckets"
            raise InvariantViolationError(msg)
        mismatched = [task_id for task_id, task in self._tasks.items() if task.id != task_id]
        if mismatched:
            msg = f"Board keys do not match task ids: {mismatched}"
            raise InvariantViolationError(msg)
        inactive = [task.id for task in self._tasks.values() if not task.is_active]
        if inactive:
            msg = f"Inactive tasks on the board: {inactive}"
            raise InvariantViolationError(msg)

    # Authoritative updates

    def replace_all(self, tasks: list[Task]) -> None:
        """Repartition the board from an authoritative task list.

        Inactive tasks are dropped. Tasks with a transition in flight keep
        their optimistic state until the transition settles; the authoritative
        value is applied then, with a confirmed transition replayed onto it.
        """
        incoming = {task.id: task.model_copy(deep=True) for task in tasks if task.is_active}
        for task_id in set(self._tasks) | set(incoming):
            task = incoming.get(task_id)
            if task_id in self._in_flight:
                self._deferred[task_id] = task
            elif task is None:
                self._forget(task_id)
            else:
                self._tasks[task_id] = task

            if task is not None:
                self._needs_resync.discard(task_id)
                self._stale_counts.pop(task_id, None)

        logger.debug(
            "Board repartitioned: %d pending, %d completed, %d deferred",
            len(self.pending()),
            len(self.completed()),
            len(self._deferred),
        )

    async def rebuild(self, user_id: str) -> None:
        """Replace the board with a fresh list from the remote store."""
        with span("task_board.rebuild"):
            task_set = await asyncio.wait_for(self._store.list_tasks(user_id, _REBUILD_FILTERS), self._timeout)
            self.replace_all(task_set.tasks)
            logger.info("Rebuilt board for user %s with %d tasks", user_id, len(self._tasks))

    async def wait_until_settled(self) -> None:
        """Return once no transition is in flight."""
        await self._settled.wait()

    # Transitions

    async def request_complete(self, task_id: str) -> TransitionResult:
        """Move a pending task to completed.

        Raises:
            KeyError: If the task is not on the board
            InvalidTransitionError: If the task is not pending when the request runs
        """
        return await self._transition(task_id, Bucket.COMPLETED)

    async def request_uncomplete(self, task_id: str) -> TransitionResult:
        """Move a completed task back to pending.

        Raises:
            KeyError: If the task is not on the board
            InvalidTransitionError: If the task is not completed when the request runs
        """
        return await self._transition(task_id, Bucket.PENDING)

    async def apply_transition(self, task_id: str, target: Bucket) -> TransitionResult:
        """Move a task to ``target``; a no-op if it is already there when the request runs."""
        return await self._transition(task_id, target, strict=False)

    def _begin(self, task_id: str) -> None:
        self._in_flight.add(task_id)
        self._settled.clear()

    def _end(self, task_id: str) -> None:
        self._in_flight.discard(task_id)
        deferred = self._deferred.pop(task_id, _MISSING)
        if deferred is None:
            self._forget(task_id)
        elif deferred is not _MISSING:
            self._tasks[task_id] = deferred
        if not self._in_flight:
            self._settled.set()

    def _forget(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)
        self._stale_counts.pop(task_id, None)
        self._needs_resync.discard(task_id)
        lock = self._locks.get(task_id)
        if lock is not None and not lock.locked():
            del self._locks[task_id]

    async def _transition(self, task_id: str, target: Bucket, *, strict: bool = True) -> TransitionResult:
        lock = self._locks.setdefault(task_id, asyncio.Lock())
        try:
            async with lock:
                task = self.get(task_id)
                if task.bucket == target:
                    if not strict:
                        return TransitionResult(task_id=task_id, target=target, status=TransitionStatus.NOOP)
                    action = "complete" if target == Bucket.COMPLETED else "uncomplete"
                    msg = f"Cannot {action} task {task_id}: it is already {target}"
                    raise InvalidTransitionError(msg)

                snapshot = task.model_copy(deep=True)
                self._tasks[task_id] = _moved(task, target)
                self._begin(task_id)
                try:
                    with span(f"task_board.{'complete' if target == Bucket.COMPLETED else 'uncomplete'}"):
                        return await self._confirm(task_id, target, snapshot)
                finally:
                    self._end(task_id)
        finally:
            if task_id not in self._tasks and not lock.locked() and self._locks.get(task_id) is lock:
                del self._locks[task_id]

    async def _confirm(self, task_id: str, target: Bucket, snapshot: Task) -> TransitionResult:
        try:
            if target == Bucket.COMPLETED:
                completion = await asyncio.wait_for(self._store.complete_task(task_id), self._timeout)
                xp_earned = completion.xp_earned
            else:
                await asyncio.wait_for(self._store.uncomplete_task(task_id), self._timeout)
                xp_earned = 0
        except StaleStateError as e:
            self._tasks[task_id] = snapshot
            return await self._on_stale(task_id, target, e)
        except (TransportError, TimeoutError) as e:
            self._tasks[task_id] = snapshot
            response = classify_error_with_response(e)
            log_with_context(logger, "warning", "Transition rolled back", task_id=task_id, target=target, error=str(e))
            if self._notifications is not None:
                await self._notifications.notify_error(response, task_id=task_id)
            status = self._rollback_status(task_id)
            return TransitionResult(task_id=task_id, target=target, status=status, error=response)
        except BaseException:
            # Cancellation included: nothing was confirmed
            self._tasks[task_id] = snapshot
            raise

        self._stale_counts.pop(task_id, None)
        refreshed = self._deferred.get(task_id, _MISSING)
        if refreshed is not _MISSING and refreshed is not None:
            self._deferred[task_id] = _moved(refreshed, target)
            logger.info("Replayed confirmed transition of %s onto the refreshed task", task_id)

        log_with_context(logger, "info", "Transition confirmed", task_id=task_id, target=target, xp_earned=xp_earned)
        return TransitionResult(task_id=task_id, target=target, status=TransitionStatus.CONFIRMED, xp_earned=xp_earned)

    def _rollback_status(self, task_id: str) -> TransitionStatus:
        # A refresh that arrived in flight replaces the restored snapshot
        return TransitionStatus.DISCARDED if task_id in self._deferred else TransitionStatus.ROLLED_BACK

    async def _on_stale(self, task_id: str, target: Bucket, error: StaleStateError) -> TransitionResult:
        count = self._stale_counts.get(task_id, 0) + 1
        self._stale_counts[task_id] = count
        self._needs_resync.add(task_id)
        response = classify_error_with_response(error)
        logger.info("Stale state for task %s (%d in a row): %s", task_id, count, error)

        if count >= self._stale_threshold:
            response = ErrorResponse(
                code=ErrorCode.ERR_REPEATED_STALE_STATE,
                message="This task keeps changing somewhere else.",
                suggestion="Reload the board before trying again.",
                severity=ErrorSeverity.HIGH,
            )
            logger.error("Task %s rejected as stale %d times", task_id, count)
            if self._notifications is not None:
                await self._notifications.notify_error(response, task_id=task_id)

        return TransitionResult(task_id=task_id, target=target, status=self._rollback_status(task_id), error=response)
