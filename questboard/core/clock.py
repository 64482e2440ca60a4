"""Single source of local wall-clock time.

Every "what day is it" question is answered through a Clock so that one
evaluation pass never re-derives today's date from a second clock read.
"""

from collections.abc import Callable
from datetime import date, datetime


Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current naive local timestamp."""
    return datetime.now()


def local_today(clock: Clock = local_now) -> date:
    """Current local calendar date according to ``clock``."""
    return clock().date()
