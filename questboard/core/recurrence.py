"""Recurrence rule evaluation for daily tasks.

Everything here is a pure function of its arguments: the same rule, dates and
counts always give the same answer. Both the reference store's occurrence
generator and client-side "next occurrence" previews rely on that.

Units are calendar-aware:
- daily rules count days,
- weekly rules count Monday-based calendar weeks,
- monthly and yearly rules step from the series anchor with ``relativedelta``,
  which clamps to the last valid day (Jan 31 + 1 month = Feb 28/29).
"""

from collections.abc import Iterator
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from questboard.core.config import constants
from questboard.core.errors import RecurrenceValidationError
from questboard.domain.task import RecurrenceRule, RecurrenceType, Weekday


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def units_elapsed(rule: RecurrenceRule, series_start: date, candidate: date) -> int:
    """Whole rule units between ``series_start`` and ``candidate``.

    Months and years are counted by calendar position, so a day-of-month that
    does not exist in the target month still belongs to that month's step.
    """
    unit = rule.pattern.type
    if unit == RecurrenceType.DAILY:
        return (candidate - series_start).days
    if unit == RecurrenceType.WEEKLY:
        return (_week_start(candidate) - _week_start(series_start)).days // 7
    if unit == RecurrenceType.MONTHLY:
        return (candidate.year - series_start.year) * 12 + (candidate.month - series_start.month)
    return candidate.year - series_start.year


def step_date(rule: RecurrenceRule, series_start: date, steps: int) -> date:
    """Anchor date ``steps`` units after ``series_start`` (clamped for months/years)."""
    unit = rule.pattern.type
    if unit == RecurrenceType.DAILY:
        return series_start + timedelta(days=steps)
    if unit == RecurrenceType.WEEKLY:
        return series_start + timedelta(weeks=steps)
    if unit == RecurrenceType.MONTHLY:
        return series_start + relativedelta(months=steps)
    return series_start + relativedelta(years=steps)


def has_ended(rule: RecurrenceRule, candidate_date: date, occurrence_count_so_far: int) -> bool:
    """Whether the series can no longer produce an occurrence on ``candidate_date``.

    Args:
        rule: Recurrence rule
        candidate_date: Local date being evaluated
        occurrence_count_so_far: Occurrences already generated for the series

    Returns:
        True past the end date (date part) or once ``max_occurrences`` is reached
    """
    pattern = rule.pattern
    if pattern.end_date is not None and candidate_date > pattern.end_date.date():
        return True
    return pattern.max_occurrences is not None and occurrence_count_so_far >= pattern.max_occurrences


def is_due(
    rule: RecurrenceRule | None,
    candidate_date: date,
    series_start_date: date,
    occurrence_count_so_far: int,
) -> bool:
    """Decide whether the series has an occurrence on ``candidate_date``.

    Args:
        rule: Recurrence rule (None behaves like a disabled rule)
        candidate_date: Local date being evaluated
        series_start_date: Date of the originating occurrence
        occurrence_count_so_far: Occurrences generated before ``candidate_date``

    Returns:
        True if an occurrence is due on ``candidate_date``
    """
    if candidate_date == series_start_date:
        return True
    if candidate_date < series_start_date:
        return False
    if rule is None or not rule.enabled:
        return False
    if has_ended(rule, candidate_date, occurrence_count_so_far):
        return False

    pattern = rule.pattern
    elapsed = units_elapsed(rule, series_start_date, candidate_date)
    if elapsed % pattern.interval != 0:
        return False

    if pattern.type == RecurrenceType.WEEKLY:
        return not pattern.days_of_week or Weekday.of(candidate_date) in pattern.days_of_week

    if pattern.type in (RecurrenceType.MONTHLY, RecurrenceType.YEARLY):
        return candidate_date == step_date(rule, series_start_date, elapsed)

    return True


def _weekly_candidates(rule: RecurrenceRule, series_start: date) -> Iterator[date]:
    """Days of every due calendar week, from the series start onward."""
    interval = rule.pattern.interval
    first_week = _week_start(series_start)
    week = 0
    while True:
        monday = first_week + timedelta(weeks=week)
        for offset in range(7):
            day = monday + timedelta(days=offset)
            if day >= series_start:
                yield day
        week += interval


def _stepped_candidates(rule: RecurrenceRule, series_start: date) -> Iterator[date]:
    steps = 0
    while True:
        yield step_date(rule, series_start, steps)
        steps += rule.pattern.interval


def iter_occurrences(rule: RecurrenceRule | None, series_start: date, until: date) -> Iterator[date]:
    """Yield every due date of the series from ``series_start`` through ``until``.

    The generator counts occurrences itself, so ``max_occurrences`` is honored.
    """
    if until < series_start:
        return

    if rule is None or not rule.enabled:
        yield series_start
        return

    candidates = (
        _weekly_candidates(rule, series_start)
        if rule.pattern.type == RecurrenceType.WEEKLY
        else _stepped_candidates(rule, series_start)
    )

    count = 0
    for candidate in candidates:
        if candidate > until:
            return
        if candidate != series_start and has_ended(rule, candidate, count):
            return
        if is_due(rule, candidate, series_start, count):
            yield candidate
            count += 1


def next_occurrence(
    rule: RecurrenceRule | None,
    series_start: date,
    after: date,
    occurrence_count_so_far: int | None = None,
) -> date | None:
    """Preview the first due date strictly after ``after``.

    Args:
        rule: Recurrence rule
        series_start: Date of the originating occurrence
        after: Exclusive lower bound
        occurrence_count_so_far: Known count of generated occurrences up to
            ``after``; derived from the rule when omitted

    Returns:
        The next due date, or None if the series has ended or never repeats
    """
    horizon = max(after, series_start) + timedelta(days=constants.RECURRENCE_LOOKAHEAD_DAYS)
    count = 0
    for occurrence in iter_occurrences(rule, series_start, horizon):
        if occurrence <= after:
            count += 1
            continue
        if occurrence_count_so_far is not None and rule is not None and rule.enabled:
            if has_ended(rule, occurrence, max(count, occurrence_count_so_far)):
                return None
        return occurrence
    return None


def validate_rule(rule: RecurrenceRule, series_start: date) -> None:
    """Reject rules that cannot produce an occurrence from ``series_start``.

    Interval and occurrence-cap bounds are enforced when the pattern is built.

    Raises:
        RecurrenceValidationError: If the end date falls before the series start
    """
    pattern = rule.pattern
    if pattern.end_date is not None and pattern.end_date.date() < series_start:
        msg = (
            f"Invalid recurrence pattern: end date {pattern.end_date.date().isoformat()} "
            f"is before start date {series_start.isoformat()}"
        )
        raise RecurrenceValidationError(msg)


def _ordinal(day: int) -> str:
    suffix = "th"
    if day in (1, 21, 31):
        suffix = "st"
    elif day in (2, 22):
        suffix = "nd"
    elif day in (3, 23):
        suffix = "rd"
    return f"{day}{suffix}"


_UNIT_NAMES = {
    RecurrenceType.DAILY: ("daily", "days"),
    RecurrenceType.WEEKLY: ("weekly", "weeks"),
    RecurrenceType.MONTHLY: ("monthly", "months"),
    RecurrenceType.YEARLY: ("yearly", "years"),
}


def describe_rule(rule: RecurrenceRule | None, series_start: date | None = None) -> str:
    """Convert a rule to human-readable text.

    Args:
        rule: Recurrence rule
        series_start: Anchor date, used to name the day of month/year

    Returns:
        Description such as "every 2 weeks on Mon, Wed" or "monthly on the 31st"
    """
    if rule is None or not rule.enabled:
        return "once"

    pattern = rule.pattern
    adverb, plural = _UNIT_NAMES[pattern.type]
    text = adverb if pattern.interval == 1 else f"every {pattern.interval} {plural}"

    if pattern.type == RecurrenceType.WEEKLY and pattern.days_of_week:
        days = sorted(pattern.days_of_week, key=lambda day: day.number)
        text += " on " + ", ".join(day.short_name for day in days)
    elif pattern.type == RecurrenceType.MONTHLY and series_start is not None:
        text += f" on the {_ordinal(series_start.day)}"
    elif pattern.type == RecurrenceType.YEARLY and series_start is not None:
        text += f" on {series_start.strftime('%B')} {_ordinal(series_start.day)}"

    if pattern.end_date is not None:
        text += f" until {pattern.end_date.date().isoformat()}"
    if pattern.max_occurrences is not None:
        times = "time" if pattern.max_occurrences == 1 else "times"
        text += f", {pattern.max_occurrences} {times}"
    return text
