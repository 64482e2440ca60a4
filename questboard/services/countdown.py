"""Countdowns to the next daily reset and to task deadlines.

Every function takes ``now`` explicitly and never reads the clock, so a
countdown is a pure function of the time it is evaluated at. Naive datetimes
are interpreted in the system's local zone; durations are measured between
real instants, so a 23h or 25h DST day just moves the elapsed fraction, which
is clamped to [0, 1].
"""

from datetime import UTC, datetime, timedelta

from croniter import croniter

from questboard.core.config import constants
from questboard.models.service_models import Countdown


DAY = timedelta(milliseconds=constants.MS_PER_DAY)
_MIDNIGHT_CRON = "0 0 * * *"


def next_midnight(now: datetime) -> datetime:
    """First local midnight strictly after ``now``."""
    return croniter(_MIDNIGHT_CRON, now).get_next(datetime)


def _real_duration(start: datetime, end: datetime) -> timedelta:
    return end.astimezone(UTC) - start.astimezone(UTC)


def _elapsed_fraction(remaining: timedelta, window: timedelta) -> float:
    return min(1.0, max(0.0, 1 - remaining / window))


def format_duration(remaining: timedelta) -> str:
    """Render whole ``Xd Yh Zm Ws``, dropping leading zero components.

    Examples:
        ``timedelta(hours=2, seconds=5)`` -> ``"2h 0m 5s"``
        ``timedelta(0)`` -> ``"0s"``
    """
    total = max(0, int(remaining.total_seconds()))
    days, rest = divmod(total, constants.SECONDS_PER_DAY)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)

    parts = [(days, "d"), (hours, "h"), (minutes, "m"), (seconds, "s")]
    while len(parts) > 1 and parts[0][0] == 0:
        parts.pop(0)
    return " ".join(f"{value}{unit}" for value, unit in parts)


def tick(now: datetime) -> Countdown:
    """Time left until the next daily reset and how much of today has elapsed."""
    target = next_midnight(now)
    remaining = max(timedelta(0), _real_duration(now, target))
    return Countdown(
        remaining=remaining,
        elapsed_fraction=_elapsed_fraction(remaining, DAY),
        target=target,
        label=format_duration(remaining),
    )


def until_deadline(deadline: datetime, now: datetime, window: timedelta = DAY) -> Countdown:
    """Countdown to a task deadline.

    Args:
        deadline: Task deadline
        now: Evaluation time
        window: Span the elapsed fraction is measured against

    Returns:
        Countdown with zero remaining and a full fraction once overdue
    """
    remaining = max(timedelta(0), _real_duration(now, deadline))
    return Countdown(
        remaining=remaining,
        elapsed_fraction=_elapsed_fraction(remaining, window),
        target=deadline,
        label=format_duration(remaining),
    )


def format_time_left(deadline: datetime | None, now: datetime) -> str | None:
    """Short deadline badge: "Overdue", "2d 3h left", "5h left" or "Due soon"."""
    if deadline is None:
        return None

    time_left = _real_duration(now, deadline)
    if time_left < timedelta(0):
        return "Overdue"

    days = time_left // DAY
    hours = (time_left % DAY) // timedelta(hours=1)
    if days > 0:
        return f"{days}d {hours}h left"
    if hours > 0:
        return f"{hours}h left"
    return "Due soon"
