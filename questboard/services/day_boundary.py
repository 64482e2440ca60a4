"""Day-boundary tracking for per-user task resets."""

import logging
from datetime import date

from questboard.core.cache_client import KeyValueStore, get_kv_store
from questboard.core.clock import Clock, local_now, local_today
from questboard.core.errors import InvariantViolationError
from questboard.domain.day import DayMarker, marker_key


logger = logging.getLogger(__name__)


class DayBoundaryTracker:
    """Detects when a user's local calendar day has rolled over.

    The marker holds the ISO date of the last successful reset. Dates are
    compared as date values from one clock read per check, never by
    subtracting timestamps, so a check can't straddle midnight.
    """

    def __init__(self, store: KeyValueStore | None = None, *, clock: Clock = local_now) -> None:
        self._store = store if store is not None else get_kv_store()
        self._clock = clock

    def today(self) -> date:
        return local_today(self._clock)

    async def last_reset_day(self, user_id: str) -> date | None:
        """Stored marker date, or None when missing.

        Raises:
            InvariantViolationError: If the stored marker is unreadable
        """
        raw = await self._store.get(marker_key(user_id))
        if raw is None:
            return None
        return DayMarker.parse(user_id, raw).day

    async def needs_reset(self, user_id: str) -> bool:
        """Whether ``user_id``'s tasks must be reset before they can be shown.

        True when no marker exists, the marker is corrupt, or it names a day
        other than today. Repeated calls on the same day give the same answer
        until ``mark_reset_done``.
        """
        today = self.today()
        try:
            last_day = await self.last_reset_day(user_id)
        except InvariantViolationError as e:
            logger.warning("%s; treating as needing reset", e)
            return True

        if last_day is None:
            logger.debug("No day marker for user %s", user_id)
            return True
        return last_day != today

    async def mark_reset_done(self, user_id: str, today: date | None = None) -> DayMarker:
        """Record ``today`` (default: the clock's date) as the user's last reset day."""
        marker = DayMarker(user_id=user_id, day=today or self.today())
        await self._store.set(marker.key, marker.serialize())
        logger.info("Marked day %s as reset for user %s", marker.day, user_id)
        return marker

    async def clear(self, user_id: str) -> None:
        """Forget the marker (logout or account switch)."""
        await self._store.delete(marker_key(user_id))
        logger.info("Cleared day marker for user %s", user_id)
