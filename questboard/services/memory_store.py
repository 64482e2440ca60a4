"""In-process ``RemoteTaskStore`` with the server-side reset semantics.

Used by tests and offline sessions. Recurring series are materialized lazily:
``reset_day`` creates at most today's occurrence of each series, so days the
user never opened are not backfilled.

Task kinds:
- plain (``recurrence is None``): one record that resets ``completed_today``
  every day; the streak breaks when a day is missed,
- one-shot (rule present but disabled): retired once completed,
- series (enabled rule): one record per occurrence sharing ``series_id``.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta

from questboard.core.clock import Clock, local_now
from questboard.core.errors import StaleStateError
from questboard.core.logging import span
from questboard.core.recurrence import has_ended, is_due
from questboard.domain.task import Task, TaskDraft, TaskFilters, TaskUpdate
from questboard.models.service_models import CompletionResult, TaskSet
from questboard.services.task_service import build_task_set, validate_draft, validate_update


logger = logging.getLogger(__name__)

_ALL_TASKS = TaskFilters(limit=10_000)


class InMemoryTaskStore:
    """Reference store keeping every user's tasks in dictionaries."""

    def __init__(self, *, clock: Clock = local_now) -> None:
        self._clock = clock
        self._tasks: dict[str, Task] = {}
        self._owners: dict[str, str] = {}
        self._completion_days: dict[str, list[date]] = defaultdict(list)
        self._last_reset: dict[str, date] = {}
        self._xp_ledger: dict[tuple[str, date], int] = defaultdict(int)
        self._next_id = 1
        self._lock = asyncio.Lock()

    def _new_id(self) -> str:
        task_id = f"task-{self._next_id}"
        self._next_id += 1
        return task_id

    def _user_tasks(self, user_id: str) -> list[Task]:
        return [task for task_id, task in self._tasks.items() if self._owners[task_id] == user_id]

    def _series(self, series_id: str) -> list[Task]:
        occurrences = [task for task in self._tasks.values() if task.series_id == series_id]
        return sorted(occurrences, key=lambda task: task.occurrence_date or date.min)

    def _visible(self, user_id: str, today: date) -> list[Task]:
        """Plain tasks plus each series' latest occurrence scheduled today or later."""
        visible = []
        for task in self._user_tasks(user_id):
            if task.series_id is None:
                visible.append(task)
                continue
            latest = self._series(task.series_id)[-1]
            if latest.id == task.id and (task.occurrence_date is None or task.occurrence_date >= today):
                visible.append(task)
        return [task.model_copy(deep=True) for task in visible]

    def _get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise KeyError(task_id) from None

    def xp_earned(self, user_id: str, day: date) -> int:
        """XP the user earned on ``day``."""
        return self._xp_ledger[(user_id, day)]

    def history(self, series_id: str) -> list[Task]:
        """Every occurrence of a series, oldest first."""
        return [task.model_copy(deep=True) for task in self._series(series_id)]

    async def list_tasks(self, user_id: str, filters: TaskFilters) -> TaskSet:
        now = self._clock()
        return build_task_set(self._visible(user_id, now.date()), filters, now)

    async def reset_day(self, user_id: str) -> TaskSet:
        """Roll ``user_id``'s tasks over to today.

        Runs at most once per user per local day; later calls on the same day
        return the current set unchanged.
        """
        with span("memory_store.reset_day"):
            async with self._lock:
                now = self._clock()
                today = now.date()
                if self._last_reset.get(user_id) == today:
                    logger.debug("Reset already applied for user %s on %s", user_id, today)
                    return build_task_set(self._visible(user_id, today), _ALL_TASKS, now)

                generated = 0
                for task in self._user_tasks(user_id):
                    if not task.is_active:
                        continue
                    if task.series_id is None:
                        self._roll_over_single(task, today)
                    elif self._roll_over_series(task, today):
                        generated += 1

                self._last_reset[user_id] = today
                logger.info("Reset day %s for user %s (%d occurrence(s) generated)", today, user_id, generated)
                return build_task_set(self._visible(user_id, today), _ALL_TASKS, now)

    def _roll_over_single(self, task: Task, today: date) -> None:
        days = self._completion_days[task.id]
        last_completed = days[-1] if days else None
        if last_completed is None or last_completed >= today:
            return

        if task.recurrence is not None and not task.recurrence.enabled:
            if task.completed_today:
                self._tasks[task.id] = task.model_copy(update={"is_active": False})
                logger.info("Retired completed one-shot task %s", task.id)
            return

        streak = task.current_streak if last_completed == today - timedelta(days=1) else 0
        self._tasks[task.id] = task.model_copy(update={"completed_today": False, "current_streak": streak})

    def _roll_over_series(self, task: Task, today: date) -> bool:
        """Materialize today's occurrence if ``task`` is the latest one of a due series."""
        occurrences = self._series(task.series_id or task.id)
        latest = occurrences[-1]
        if latest.id != task.id or latest.occurrence_date is None or latest.occurrence_date >= today:
            return False

        rule = task.recurrence
        series_start = occurrences[0].occurrence_date or today
        if rule is None or has_ended(rule, today, len(occurrences)):
            return False
        if not is_due(rule, today, series_start, len(occurrences)):
            return False

        deadline = (
            datetime.combine(today, latest.deadline.time(), tzinfo=latest.deadline.tzinfo)
            if latest.deadline is not None
            else None
        )
        occurrence = latest.model_copy(
            update={
                "id": self._new_id(),
                "deadline": deadline,
                "completed_today": False,
                "current_streak": latest.current_streak if latest.completed_today else 0,
                "occurrence_date": today,
                "created": self._clock(),
            }
        )
        self._tasks[occurrence.id] = occurrence
        self._owners[occurrence.id] = self._owners[task.id]
        logger.info("Generated occurrence %s of series %s for %s", occurrence.id, occurrence.series_id, today)
        return True

    async def complete_task(self, task_id: str) -> CompletionResult:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None or not task.is_active:
                msg = f"Task {task_id} is no longer active"
                raise StaleStateError(msg)
            if task.completed_today:
                msg = f"Task {task_id} is already completed"
                raise StaleStateError(msg)

            today = self._clock().date()
            streak = task.current_streak + 1
            self._tasks[task_id] = task.model_copy(
                update={
                    "completed_today": True,
                    "current_streak": streak,
                    "longest_streak": max(task.longest_streak, streak),
                    "total_completions": task.total_completions + 1,
                }
            )
            self._completion_days[task_id].append(today)
            self._xp_ledger[(self._owners[task_id], today)] += task.xp_reward
            return CompletionResult(xp_earned=task.xp_reward)

    async def uncomplete_task(self, task_id: str) -> None:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None or not task.is_active:
                msg = f"Task {task_id} is no longer active"
                raise StaleStateError(msg)
            if not task.completed_today:
                msg = f"Task {task_id} is not completed"
                raise StaleStateError(msg)

            self._tasks[task_id] = task.model_copy(
                update={"completed_today": False, "current_streak": max(0, task.current_streak - 1)}
            )
            days = self._completion_days[task_id]
            completed_on = days.pop() if days else self._clock().date()
            self._xp_ledger[(self._owners[task_id], completed_on)] -= task.xp_reward

    async def create_task(self, user_id: str, draft: TaskDraft) -> Task:
        now = self._clock()
        validate_draft(draft, now=now)
        async with self._lock:
            task_id = self._new_id()
            task = Task(
                id=task_id,
                title=draft.title,
                description=draft.description,
                category=draft.category,
                xp_reward=draft.xp_reward,
                deadline=draft.deadline,
                recurrence=draft.recurrence,
                series_id=task_id if draft.recurrence is not None and draft.recurrence.enabled else None,
                occurrence_date=draft.deadline.date() if draft.deadline is not None else now.date(),
                created=now,
            )
            self._tasks[task_id] = task
            self._owners[task_id] = user_id
            return task.model_copy(deep=True)

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        async with self._lock:
            current = self._get(task_id)
            validate_update(update, current=current, now=self._clock())
            # Bucket changes go through complete_task/uncomplete_task only
            changes = update.model_dump(exclude_unset=True, exclude={"completed_today"})
            if "recurrence" in changes:
                changes["recurrence"] = update.recurrence
                if update.recurrence is not None and update.recurrence.enabled and current.series_id is None:
                    changes["series_id"] = current.id
            task = current.model_copy(update=changes)
            self._tasks[task_id] = task
            return task.model_copy(deep=True)

    async def delete_task(self, task_id: str) -> None:
        async with self._lock:
            self._get(task_id)
            del self._tasks[task_id]
            del self._owners[task_id]
            self._completion_days.pop(task_id, None)
