"""Unit tests for the day-boundary tracker."""

import logging
from datetime import date, datetime

import pytest

from questboard.core.errors import InvariantViolationError
from questboard.domain.day import DayMarker, marker_key
from questboard.services.day_boundary import DayBoundaryTracker
from tests.unit.mocks import USER_ID, FakeClock


@pytest.mark.unit
class TestDayBoundaryTracker:
    """Tests for DayBoundaryTracker."""

    async def test_missing_marker_needs_reset(self, tracker):
        assert await tracker.needs_reset(USER_ID) is True

    async def test_needs_reset_is_idempotent_until_marked(self, tracker):
        assert [await tracker.needs_reset(USER_ID) for _ in range(3)] == [True, True, True]

        await tracker.mark_reset_done(USER_ID)

        assert [await tracker.needs_reset(USER_ID) for _ in range(3)] == [False, False, False]

    async def test_marker_is_stored_as_iso_date(self, tracker, kv_store):
        await tracker.mark_reset_done(USER_ID)

        assert await kv_store.get("questboard:day_marker:user-1") == "2024-05-06"
        assert await tracker.last_reset_day(USER_ID) == date(2024, 5, 6)

    async def test_rollover_at_midnight(self, kv_store):
        clock = FakeClock(datetime(2024, 5, 6, 23, 59, 59))
        tracker = DayBoundaryTracker(kv_store, clock=clock)
        await tracker.mark_reset_done(USER_ID)

        assert await tracker.needs_reset(USER_ID) is False

        clock.advance(seconds=2)

        assert await tracker.needs_reset(USER_ID) is True

    async def test_marker_from_the_future_still_needs_reset(self, tracker):
        # Clock moved backwards (manual change or travel)
        await tracker.mark_reset_done(USER_ID, date(2024, 5, 7))

        assert await tracker.needs_reset(USER_ID) is True

    async def test_corrupt_marker_needs_reset_and_warns(self, tracker, kv_store, caplog):
        await kv_store.set(marker_key(USER_ID), "not-a-date")

        with caplog.at_level(logging.WARNING, logger="questboard.services.day_boundary"):
            assert await tracker.needs_reset(USER_ID) is True

        assert "Corrupt day marker" in caplog.text

    async def test_last_reset_day_raises_on_corrupt_marker(self, tracker, kv_store):
        await kv_store.set(marker_key(USER_ID), "2024-13-45")

        with pytest.raises(InvariantViolationError):
            await tracker.last_reset_day(USER_ID)

    async def test_clear_forgets_marker(self, tracker):
        await tracker.mark_reset_done(USER_ID)

        await tracker.clear(USER_ID)

        assert await tracker.needs_reset(USER_ID) is True

    async def test_markers_are_per_user(self, tracker):
        await tracker.mark_reset_done(USER_ID)

        assert await tracker.needs_reset("someone-else") is True

    def test_today_uses_injected_clock(self, tracker):
        assert tracker.today() == date(2024, 5, 6)


@pytest.mark.unit
class TestDayMarker:
    """Tests for DayMarker parsing."""

    def test_parse_round_trip(self):
        marker = DayMarker(user_id=USER_ID, day=date(2024, 2, 29))

        assert DayMarker.parse(USER_ID, marker.serialize()) == marker
        assert marker.key == "questboard:day_marker:user-1"

    def test_parse_tolerates_whitespace(self):
        assert DayMarker.parse(USER_ID, " 2024-05-06\n").day == date(2024, 5, 6)

    def test_parse_rejects_timestamps_from_other_formats(self):
        with pytest.raises(InvariantViolationError, match="Corrupt day marker for user user-1"):
            DayMarker.parse(USER_ID, "Mon May 06 2024")
