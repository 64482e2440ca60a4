"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting remote
payloads and board state into typed objects with validation.
"""

from datetime import date, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from questboard.core.errors import ErrorResponse
from questboard.domain.task import Bucket, Task, TaskCategory


NO_DEADLINE_KEY = "no-deadline"


class TaskStats(BaseModel):
    """Aggregate numbers shown above a task list."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int = 0
    completed: int = 0
    pending: int = 0
    overdue: int = 0
    xp_available: int = 0
    xp_earned_today: int = 0
    categories: list[TaskCategory] = Field(default_factory=list)


class Pagination(BaseModel):
    """Page position of a task list."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    page: int = 1
    limit: int = 20
    total: int = 0
    pages: int = 0


class TaskSet(BaseModel):
    """A page of tasks plus its derived groupings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tasks: list[Task] = Field(default_factory=list)
    tasks_by_date: dict[str, list[Task]] = Field(
        default_factory=dict, description=f"Tasks keyed by ISO deadline date or '{NO_DEADLINE_KEY}'"
    )
    stats: TaskStats = Field(default_factory=TaskStats)
    pagination: Pagination = Field(default_factory=Pagination)


class CompletionResult(BaseModel):
    """Remote answer to a completion."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    xp_earned: int = 0


class ResetPhase(StrEnum):
    """Reset orchestrator state."""

    IDLE = "idle"
    CHECKING = "checking"
    NO_RESET_NEEDED = "no_reset_needed"
    RESETTING = "resetting"
    RESOLVED = "resolved"
    FAILED = "failed"


class ResetTrigger(StrEnum):
    """Why a reset ran; also selects the banner shown."""

    AUTO = "auto"
    MANUAL = "manual"
    LOGIN = "login"


class ResetOutcome(BaseModel):
    """Result of one reset check or reset attempt."""

    user_id: str
    phase: ResetPhase
    trigger: ResetTrigger = ResetTrigger.AUTO
    day: date
    task_set: TaskSet | None = None
    error: ErrorResponse | None = None
    superseded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.phase in (ResetPhase.RESOLVED, ResetPhase.NO_RESET_NEEDED)


class TransitionStatus(StrEnum):
    """How a board transition ended."""

    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    NOOP = "noop"
    DISCARDED = "discarded"


class TransitionResult(BaseModel):
    """Outcome of a board transition request."""

    task_id: str
    target: Bucket
    status: TransitionStatus
    xp_earned: int = 0
    error: ErrorResponse | None = None


class Countdown(BaseModel):
    """Time left until a boundary and how much of the window has elapsed."""

    remaining: timedelta
    elapsed_fraction: float = Field(ge=0.0, le=1.0)
    target: datetime
    label: str

    @property
    def percentage(self) -> int:
        return round(self.elapsed_fraction * 100)


class BoardStats(BaseModel):
    """Counts for the two board columns."""

    pending: int
    completed: int
    xp_pending: int
    xp_completed: int
    in_flight: int


class NotificationKind(StrEnum):
    """What a notification reports."""

    RESET = "reset"
    ERROR = "error"


class Notification(BaseModel):
    """A dismissible banner shown to the user."""

    id: str
    kind: NotificationKind
    title: str
    message: str
    reset_type: ResetTrigger | None = None
    reset_count: int = 0
    task_id: str | None = None
    error: ErrorResponse | None = None
    created_at: datetime
    expires_at: datetime

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable
