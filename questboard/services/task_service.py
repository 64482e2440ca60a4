"""Task service for draft validation, list shaping and CRUD.

This module provides functions for:
- Validating task drafts and updates before anything reaches the store
- Filtering, sorting, paginating and grouping task lists by deadline date
- Aggregate stats for a task list
- CRUD calls against the remote store that drop cached task views afterwards
"""

import logging
import math
from datetime import date, datetime, timedelta

from questboard.core.clock import Clock, local_now
from questboard.core.config import constants
from questboard.core.errors import TaskValidationError
from questboard.core.logging import span
from questboard.core.recurrence import validate_rule
from questboard.domain.task import SortKey, Task, TaskDraft, TaskFilters, TaskUpdate, TaskView
from questboard.models.service_models import NO_DEADLINE_KEY, Pagination, TaskSet, TaskStats
from questboard.services.task_store import RemoteTaskStore
from questboard.services.view_cache import TaskViewCache


logger = logging.getLogger(__name__)


def _validate_xp_reward(xp_reward: int) -> None:
    if xp_reward < constants.XP_REWARD_MIN:
        msg = f"XP reward must be at least {constants.XP_REWARD_MIN}"
        raise TaskValidationError(msg)
    if xp_reward > constants.XP_REWARD_MAX:
        msg = f"XP reward cannot exceed {constants.XP_REWARD_MAX}"
        raise TaskValidationError(msg)


def validate_draft(draft: TaskDraft, *, now: datetime) -> None:
    """Reject a draft before it is persisted.

    Args:
        draft: New task input
        now: Current local time

    Raises:
        TaskValidationError: Empty title, XP outside 1..1000, or a deadline in the past
        RecurrenceValidationError: Malformed recurrence rule
    """
    if not draft.title:
        msg = "Task title is required"
        raise TaskValidationError(msg)

    _validate_xp_reward(draft.xp_reward)

    today = now.date()
    if draft.deadline is not None and draft.deadline.date() < today:
        msg = "Due date cannot be in the past"
        raise TaskValidationError(msg)

    if draft.recurrence is not None:
        series_start = draft.deadline.date() if draft.deadline is not None else today
        validate_rule(draft.recurrence, series_start)


def validate_update(update: TaskUpdate, *, current: Task, now: datetime) -> None:
    """Reject a partial update whose explicitly set fields are malformed."""
    fields = update.model_fields_set
    if "title" in fields and not (update.title or "").strip():
        msg = "Task title is required"
        raise TaskValidationError(msg)
    if "xp_reward" in fields:
        if update.xp_reward is None:
            msg = "XP reward is required"
            raise TaskValidationError(msg)
        _validate_xp_reward(update.xp_reward)
    if "recurrence" in fields and update.recurrence is not None:
        deadline = update.deadline if "deadline" in fields else current.deadline
        series_start = current.occurrence_date or (deadline.date() if deadline is not None else now.date())
        validate_rule(update.recurrence, series_start)


def matches_view(task: Task, view: TaskView, now: datetime) -> bool:
    """Whether ``task`` belongs to the named view at ``now``."""
    today = now.date()
    if view == TaskView.TODAY:
        return task.deadline is None or task.deadline.date() == today
    if view == TaskView.UPCOMING:
        return task.deadline is not None and task.deadline.date() > today
    if view == TaskView.OVERDUE:
        return task.deadline is not None and task.deadline < now and not task.completed_today
    if view == TaskView.COMPLETED:
        return task.completed_today
    return True


def matches_filters(task: Task, filters: TaskFilters, now: datetime) -> bool:
    if not task.is_active:
        return False
    if not matches_view(task, filters.view, now):
        return False
    if filters.category is not None and task.category != filters.category:
        return False
    if filters.start_date is not None or filters.end_date is not None:
        if task.deadline is None:
            return False
        deadline_day = task.deadline.date()
        if filters.start_date is not None and deadline_day < filters.start_date:
            return False
        if filters.end_date is not None and deadline_day > filters.end_date:
            return False
    if filters.search:
        needle = filters.search.strip().lower()
        if needle not in task.title.lower() and needle not in task.description.lower():
            return False
    return True


def sort_tasks(tasks: list[Task], sort_by: SortKey) -> list[Task]:
    """Order tasks; tasks without a deadline go last when sorting by deadline."""
    if sort_by == SortKey.XP:
        return sorted(tasks, key=lambda task: (-task.xp_reward, task.title.lower()))
    if sort_by == SortKey.TITLE:
        return sorted(tasks, key=lambda task: task.title.lower())
    if sort_by == SortKey.CREATED:
        return sorted(tasks, key=lambda task: task.created or datetime.min, reverse=True)
    return sorted(tasks, key=lambda task: (task.deadline is None, task.deadline or datetime.max))


def group_tasks_by_date(tasks: list[Task]) -> dict[str, list[Task]]:
    """Group tasks by ISO deadline date, dated groups first in date order."""
    groups: dict[str, list[Task]] = {}
    for task in tasks:
        key = task.deadline.date().isoformat() if task.deadline is not None else NO_DEADLINE_KEY
        groups.setdefault(key, []).append(task)
    return dict(sorted(groups.items(), key=lambda item: (item[0] == NO_DEADLINE_KEY, item[0])))


def format_date_header(date_key: str, today: date) -> str:
    """Heading for a ``group_tasks_by_date`` key."""
    if date_key == NO_DEADLINE_KEY:
        return "No Deadline"
    day = date.fromisoformat(date_key)
    if day == today:
        return "Today"
    if day == today + timedelta(days=1):
        return "Tomorrow"
    return f"{day.strftime('%A')}, {day.strftime('%b')} {day.day}"


def compute_stats(tasks: list[Task], now: datetime) -> TaskStats:
    completed = [task for task in tasks if task.completed_today]
    return TaskStats(
        total=len(tasks),
        completed=len(completed),
        pending=len(tasks) - len(completed),
        overdue=sum(1 for task in tasks if matches_view(task, TaskView.OVERDUE, now)),
        xp_available=sum(task.xp_reward for task in tasks if not task.completed_today),
        xp_earned_today=sum(task.xp_reward for task in completed),
        categories=sorted({task.category for task in tasks}),
    )


def build_task_set(tasks: list[Task], filters: TaskFilters, now: datetime) -> TaskSet:
    """Filter, sort and paginate ``tasks`` into a TaskSet.

    Stats describe every matching task, not only the current page.
    """
    matching = sort_tasks([task for task in tasks if matches_filters(task, filters, now)], filters.sort_by)
    start = (filters.page - 1) * filters.limit
    page = matching[start : start + filters.limit]
    return TaskSet(
        tasks=page,
        tasks_by_date=group_tasks_by_date(page),
        stats=compute_stats(matching, now),
        pagination=Pagination(
            page=filters.page,
            limit=filters.limit,
            total=len(matching),
            pages=math.ceil(len(matching) / filters.limit) if matching else 0,
        ),
    )


async def list_tasks(
    *,
    store: RemoteTaskStore,
    view_cache: TaskViewCache,
    user_id: str,
    filters: TaskFilters | None = None,
) -> TaskSet:
    """Read a task list through the view cache."""
    filters = filters or TaskFilters()
    with span("task_service.list_tasks"):
        cached = await view_cache.get_task_set(user_id, filters)
        if cached is not None:
            logger.debug("Serving cached task list for user %s", user_id)
            return cached

        task_set = await store.list_tasks(user_id, filters)
        await view_cache.put_task_set(user_id, filters, task_set)
        logger.debug("Fetched %d tasks for user %s", len(task_set.tasks), user_id)
        return task_set


async def create_task(
    *,
    store: RemoteTaskStore,
    view_cache: TaskViewCache,
    user_id: str,
    draft: TaskDraft,
    clock: Clock = local_now,
) -> Task:
    """Create a task after validating the draft.

    Raises:
        TaskValidationError: If the draft is malformed
        RecurrenceValidationError: If the recurrence rule is malformed
    """
    with span("task_service.create_task"):
        validate_draft(draft, now=clock())
        task = await store.create_task(user_id, draft)
        await view_cache.invalidate_user(user_id)
        logger.info("Created task '%s' (%s) for user %s", task.title, task.id, user_id)
        return task


async def update_task(
    *,
    store: RemoteTaskStore,
    view_cache: TaskViewCache,
    user_id: str,
    current: Task,
    update: TaskUpdate,
    clock: Clock = local_now,
) -> Task:
    """Apply a partial update after validating the fields it sets."""
    with span("task_service.update_task"):
        validate_update(update, current=current, now=clock())
        task = await store.update_task(current.id, update)
        await view_cache.invalidate_user(user_id)
        logger.info("Updated task %s fields: %s", current.id, sorted(update.model_fields_set))
        return task


async def delete_task(
    *,
    store: RemoteTaskStore,
    view_cache: TaskViewCache,
    user_id: str,
    task_id: str,
) -> None:
    with span("task_service.delete_task"):
        await store.delete_task(task_id)
        await view_cache.invalidate_user(user_id)
        logger.info("Deleted task %s for user %s", task_id, user_id)
