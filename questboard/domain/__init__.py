"""Domain models and DTOs."""

from questboard.domain.day import DayMarker, marker_key
from questboard.domain.task import (
    Bucket,
    RecurrencePattern,
    RecurrenceRule,
    RecurrenceType,
    SortKey,
    Task,
    TaskCategory,
    TaskDraft,
    TaskFilters,
    TaskUpdate,
    TaskView,
    Weekday,
)


__all__ = [
    "Bucket",
    "DayMarker",
    "RecurrencePattern",
    "RecurrenceRule",
    "RecurrenceType",
    "SortKey",
    "Task",
    "TaskCategory",
    "TaskDraft",
    "TaskFilters",
    "TaskUpdate",
    "TaskView",
    "Weekday",
    "marker_key",
]
