"""Task domain models and enums."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TaskCategory(StrEnum):
    """What area of life a task belongs to."""

    HEALTH = "health"
    PRODUCTIVITY = "productivity"
    LEARNING = "learning"
    FITNESS = "fitness"
    PERSONAL = "personal"
    CUSTOM = "custom"


class RecurrenceType(StrEnum):
    """Unit a recurrence rule steps in."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Weekday(StrEnum):
    """Day of week, in ``date.weekday()`` order."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def number(self) -> int:
        """0 for Monday through 6 for Sunday."""
        return list(Weekday).index(self)

    @property
    def short_name(self) -> str:
        return self.value[:3].capitalize()

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return list(cls)[day.weekday()]


class Bucket(StrEnum):
    """Board column a task sits in."""

    PENDING = "pending"
    COMPLETED = "completed"


class _WireModel(BaseModel):
    """Base for models exchanged with the remote store in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecurrencePattern(_WireModel):
    """When a recurring task repeats and when it stops."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: RecurrenceType = Field(default=RecurrenceType.DAILY, description="Unit the rule steps in")
    interval: int = Field(default=1, ge=1, description="Every N units")
    days_of_week: frozenset[Weekday] = Field(
        default_factory=frozenset, description="Weekdays for weekly rules; empty means every day of a due week"
    )
    end_date: datetime | None = Field(default=None, description="No occurrences after this moment")
    max_occurrences: int | None = Field(default=None, ge=1, description="Cap on total generated occurrences")

    @field_validator("days_of_week", mode="before")
    @classmethod
    def _normalize_weekdays(cls, value: object) -> object:
        """Accept weekday names in any case, full or three-letter."""
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        normalized = []
        for item in value:  # type: ignore[union-attr]
            if isinstance(item, Weekday):
                normalized.append(item)
                continue
            name = str(item).strip().lower()
            match = next((day for day in Weekday if day.value == name or day.value[:3] == name), None)
            if match is None:
                msg = f"Unknown weekday: {item}"
                raise ValueError(msg)
            normalized.append(match)
        return frozenset(normalized)


class RecurrenceRule(_WireModel):
    """Immutable recurrence definition; edits replace the whole value."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    enabled: bool = Field(default=True, description="Disabled rules behave as one-shot tasks")
    pattern: RecurrencePattern = Field(default_factory=RecurrencePattern)


class Task(_WireModel):
    """Task (or one occurrence of a recurring task) as seen by the board."""

    id: str = Field(..., alias="_id", description="Unique task ID from the remote store")
    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Detailed task description")
    category: TaskCategory = Field(default=TaskCategory.PERSONAL, description="Task category")
    xp_reward: int = Field(default=50, ge=1, description="XP granted on completion")
    is_active: bool = Field(default=True, description="Inactive tasks are hidden from every view")
    deadline: datetime | None = Field(default=None, description="Local deadline; None means no deadline")
    completed_today: bool = Field(default=False, description="Completed during the current local day")
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    total_completions: int = Field(default=0, ge=0)
    recurrence: RecurrenceRule | None = Field(default=None, description="Recurrence rule, if any")
    series_id: str | None = Field(default=None, description="Series this occurrence belongs to")
    occurrence_date: date | None = Field(default=None, description="Local day this occurrence is scheduled for")
    created: datetime | None = Field(default=None, description="Creation timestamp")

    @property
    def bucket(self) -> Bucket:
        """Board column, derived from ``completed_today``."""
        return Bucket.COMPLETED if self.completed_today else Bucket.PENDING

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None and self.recurrence.enabled


class TaskDraft(_WireModel):
    """User input for a new task."""

    title: str = Field(..., description="Task title")
    description: str = Field(default="")
    category: TaskCategory = Field(default=TaskCategory.PERSONAL)
    xp_reward: int = Field(default=50, description="XP granted on completion (1..1000)")
    deadline: datetime | None = Field(default=None)
    recurrence: RecurrenceRule | None = Field(default=None)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return value.strip()


class TaskUpdate(_WireModel):
    """Partial update; only explicitly set fields are sent."""

    title: str | None = None
    description: str | None = None
    category: TaskCategory | None = None
    xp_reward: int | None = None
    deadline: datetime | None = None
    is_active: bool | None = None
    completed_today: bool | None = None
    recurrence: RecurrenceRule | None = None


class TaskView(StrEnum):
    """Named subsets of a user's tasks."""

    ALL = "all"
    TODAY = "today"
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    COMPLETED = "completed"


class SortKey(StrEnum):
    """Task list ordering."""

    DEADLINE = "deadline"
    XP = "xp"
    TITLE = "title"
    CREATED = "created"


class TaskFilters(BaseModel):
    """Query for ``list_tasks``."""

    model_config = ConfigDict(frozen=True)

    view: TaskView = TaskView.ALL
    category: TaskCategory | None = None
    start_date: date | None = None
    end_date: date | None = None
    search: str = ""
    sort_by: SortKey = SortKey.DEADLINE
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)

    def to_query_params(self) -> dict[str, str]:
        """Query string parameters, omitting "all" and empty values."""
        params: dict[str, str] = {}
        if self.view != TaskView.ALL:
            params["view"] = self.view.value
        if self.category is not None:
            params["category"] = self.category.value
        if self.start_date is not None:
            params["startDate"] = self.start_date.isoformat()
        if self.end_date is not None:
            params["endDate"] = self.end_date.isoformat()
        if self.search:
            params["search"] = self.search
        params["sortBy"] = self.sort_by.value
        params["page"] = str(self.page)
        params["limit"] = str(self.limit)
        return params

    def cache_key(self) -> str:
        return "&".join(f"{key}={value}" for key, value in sorted(self.to_query_params().items()))
