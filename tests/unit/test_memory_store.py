"""Unit tests for the in-memory task store and its day rollover."""

from datetime import date, datetime

import pytest

from questboard.core.errors import RecurrenceValidationError, StaleStateError, TaskValidationError
from questboard.domain.task import (
    RecurrencePattern,
    RecurrenceRule,
    RecurrenceType,
    SortKey,
    TaskCategory,
    TaskDraft,
    TaskFilters,
    TaskUpdate,
    TaskView,
)
from tests.unit.mocks import USER_ID, daily_rule


def draft(title: str = "Stretch", **overrides) -> TaskDraft:
    return TaskDraft(title=title, category=overrides.pop("category", TaskCategory.FITNESS), **overrides)


async def visible(memory_store) -> dict[str, object]:
    task_set = await memory_store.list_tasks(USER_ID, TaskFilters(limit=100))
    return {task.id: task for task in task_set.tasks}


@pytest.mark.unit
class TestPlainTaskRollover:
    """Plain tasks keep one record and reset every day."""

    async def test_reset_is_idempotent_within_a_day(self, memory_store, seeded, clock):
        await memory_store.reset_day(USER_ID)
        await memory_store.complete_task(seeded[0].id)

        clock.next_day()
        first = await memory_store.reset_day(USER_ID)
        await memory_store.complete_task(seeded[1].id)
        second = await memory_store.reset_day(USER_ID)

        assert [task.completed_today for task in first.tasks] == [False, False, False]
        assert {task.id for task in second.tasks if task.completed_today} == {seeded[1].id}

    async def test_streak_survives_consecutive_days(self, memory_store, seeded, clock):
        task_id = seeded[0].id
        for _ in range(3):
            await memory_store.reset_day(USER_ID)
            await memory_store.complete_task(task_id)
            clock.next_day()

        await memory_store.reset_day(USER_ID)
        task = (await visible(memory_store))[task_id]

        assert task.completed_today is False
        assert (task.current_streak, task.longest_streak, task.total_completions) == (3, 3, 3)

    async def test_missed_day_breaks_streak(self, memory_store, seeded, clock):
        task_id = seeded[0].id
        await memory_store.reset_day(USER_ID)
        await memory_store.complete_task(task_id)

        clock.next_day()
        clock.next_day()
        await memory_store.reset_day(USER_ID)
        task = (await visible(memory_store))[task_id]

        assert task.completed_today is False
        assert task.current_streak == 0
        assert task.longest_streak == 1

    async def test_uncompleted_task_is_left_alone(self, memory_store, seeded, clock):
        clock.next_day()
        task_set = await memory_store.reset_day(USER_ID)

        assert [task.model_dump() for task in task_set.tasks] == [task.model_dump() for task in seeded]


@pytest.mark.unit
class TestOneShotTasks:
    """Tasks whose recurrence rule is disabled."""

    async def test_completed_one_shot_is_retired_next_day(self, memory_store, clock):
        one_shot = await memory_store.create_task(USER_ID, draft(recurrence=RecurrenceRule(enabled=False)))
        assert one_shot.series_id is None

        await memory_store.complete_task(one_shot.id)
        clock.next_day()
        task_set = await memory_store.reset_day(USER_ID)

        assert task_set.tasks == []

    async def test_pending_one_shot_stays(self, memory_store, clock):
        one_shot = await memory_store.create_task(USER_ID, draft(recurrence=RecurrenceRule(enabled=False)))

        clock.next_day()
        task_set = await memory_store.reset_day(USER_ID)

        assert [task.id for task in task_set.tasks] == [one_shot.id]


@pytest.mark.unit
class TestRecurringSeries:
    """Series materialize one record per occurrence."""

    async def test_next_day_generates_new_occurrence(self, memory_store, clock):
        first = await memory_store.create_task(
            USER_ID, draft(deadline=datetime(2024, 5, 6, 18, 0), recurrence=daily_rule())
        )
        assert first.series_id == first.id
        assert first.occurrence_date == date(2024, 5, 6)

        await memory_store.reset_day(USER_ID)
        await memory_store.complete_task(first.id)
        clock.next_day()
        task_set = await memory_store.reset_day(USER_ID)

        [occurrence] = task_set.tasks
        assert occurrence.id != first.id
        assert occurrence.series_id == first.id
        assert occurrence.occurrence_date == date(2024, 5, 7)
        assert occurrence.deadline == datetime(2024, 5, 7, 18, 0)
        assert occurrence.completed_today is False
        assert occurrence.current_streak == 1

        history = memory_store.history(first.id)
        assert [task.occurrence_date for task in history] == [date(2024, 5, 6), date(2024, 5, 7)]
        assert history[0].completed_today is True

    async def test_missed_occurrence_does_not_carry_streak(self, memory_store, clock):
        first = await memory_store.create_task(USER_ID, draft(recurrence=daily_rule()))
        await memory_store.complete_task(first.id)
        clock.next_day()
        await memory_store.reset_day(USER_ID)

        clock.next_day()
        task_set = await memory_store.reset_day(USER_ID)

        [occurrence] = task_set.tasks
        assert occurrence.current_streak == 0

    async def test_skipped_days_are_not_backfilled(self, memory_store, clock):
        first = await memory_store.create_task(USER_ID, draft(recurrence=daily_rule()))

        for _ in range(4):
            clock.next_day()
        await memory_store.reset_day(USER_ID)

        history = memory_store.history(first.id)
        assert [task.occurrence_date for task in history] == [date(2024, 5, 6), date(2024, 5, 10)]

    async def test_max_occurrences_ends_series(self, memory_store, clock):
        first = await memory_store.create_task(USER_ID, draft(recurrence=daily_rule(max_occurrences=2)))

        clock.next_day()
        assert len((await memory_store.reset_day(USER_ID)).tasks) == 1
        clock.next_day()
        task_set = await memory_store.reset_day(USER_ID)

        assert task_set.tasks == []
        assert len(memory_store.history(first.id)) == 2

    async def test_weekly_days_only_appear_when_due(self, memory_store, clock):
        weekly = RecurrenceRule(
            pattern=RecurrencePattern(type=RecurrenceType.WEEKLY, days_of_week=["monday", "wednesday"])
        )
        first = await memory_store.create_task(USER_ID, draft(recurrence=weekly))

        # Tuesday
        clock.next_day()
        assert (await memory_store.reset_day(USER_ID)).tasks == []

        # Wednesday
        clock.next_day()
        [occurrence] = (await memory_store.reset_day(USER_ID)).tasks
        assert occurrence.series_id == first.id
        assert occurrence.occurrence_date == date(2024, 5, 8)

    async def test_end_date_stops_generation(self, memory_store, clock):
        ending = daily_rule(end_date=datetime(2024, 5, 7, 23, 0))
        await memory_store.create_task(USER_ID, draft(recurrence=ending))

        clock.next_day()
        assert len((await memory_store.reset_day(USER_ID)).tasks) == 1
        clock.next_day()

        assert (await memory_store.reset_day(USER_ID)).tasks == []


@pytest.mark.unit
class TestCompletion:
    """Tests for complete_task and uncomplete_task."""

    async def test_completion_records_xp(self, memory_store, seeded):
        result = await memory_store.complete_task(seeded[2].id)

        assert result.xp_earned == 60
        assert memory_store.xp_earned(USER_ID, date(2024, 5, 6)) == 60

    async def test_uncomplete_refunds_xp_and_streak(self, memory_store, seeded):
        task_id = seeded[2].id
        await memory_store.complete_task(task_id)

        await memory_store.uncomplete_task(task_id)

        task = (await visible(memory_store))[task_id]
        assert task.completed_today is False
        assert task.current_streak == 0
        assert task.total_completions == 1
        assert memory_store.xp_earned(USER_ID, date(2024, 5, 6)) == 0

    async def test_completing_twice_is_stale(self, memory_store, seeded):
        await memory_store.complete_task(seeded[0].id)

        with pytest.raises(StaleStateError, match="already completed"):
            await memory_store.complete_task(seeded[0].id)

    async def test_uncompleting_pending_task_is_stale(self, memory_store, seeded):
        with pytest.raises(StaleStateError, match="not completed"):
            await memory_store.uncomplete_task(seeded[0].id)

    async def test_unknown_task_is_stale(self, memory_store):
        with pytest.raises(StaleStateError, match="no longer active"):
            await memory_store.complete_task("task-404")


@pytest.mark.unit
class TestCrud:
    """Tests for create, update, delete and list."""

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"title": "   "}, "Task title is required"),
            ({"xp_reward": 0}, "XP reward must be at least 1"),
            ({"xp_reward": 1001}, "XP reward cannot exceed 1000"),
            ({"deadline": datetime(2024, 5, 5, 23, 0)}, "Due date cannot be in the past"),
        ],
    )
    async def test_create_rejects_invalid_drafts(self, memory_store, overrides, message):
        fields = {"title": "Stretch", **overrides}

        with pytest.raises(TaskValidationError, match=message):
            await memory_store.create_task(USER_ID, draft(**fields))

    async def test_create_rejects_invalid_rule(self, memory_store):
        ending = daily_rule(end_date=datetime(2024, 5, 1))

        with pytest.raises(RecurrenceValidationError):
            await memory_store.create_task(USER_ID, draft(recurrence=ending))

    async def test_update_ignores_bucket_changes(self, memory_store, seeded):
        updated = await memory_store.update_task(
            seeded[0].id, TaskUpdate(title="Drink more water", completed_today=True)
        )

        assert updated.title == "Drink more water"
        assert updated.completed_today is False

    async def test_enabling_recurrence_starts_series(self, memory_store, seeded):
        updated = await memory_store.update_task(seeded[0].id, TaskUpdate(recurrence=daily_rule()))

        assert updated.series_id == seeded[0].id
        assert updated.is_recurring is True

    async def test_delete(self, memory_store, seeded):
        await memory_store.delete_task(seeded[0].id)

        assert seeded[0].id not in await visible(memory_store)
        with pytest.raises(KeyError):
            await memory_store.delete_task(seeded[0].id)

    async def test_list_tasks_is_per_user(self, memory_store, seeded):
        await memory_store.create_task("user-2", draft())

        assert set(await visible(memory_store)) == {task.id for task in seeded}

    async def test_list_filters_sorts_and_paginates(self, memory_store, seeded):
        await memory_store.complete_task(seeded[0].id)

        task_set = await memory_store.list_tasks(USER_ID, TaskFilters(sort_by=SortKey.XP, limit=2))

        assert [task.title for task in task_set.tasks] == ["Go for a run", "Read a chapter"]
        assert (task_set.pagination.total, task_set.pagination.pages) == (3, 2)
        assert (task_set.stats.total, task_set.stats.completed) == (3, 1)

        completed = await memory_store.list_tasks(USER_ID, TaskFilters(view=TaskView.COMPLETED))
        assert [task.id for task in completed.tasks] == [seeded[0].id]
