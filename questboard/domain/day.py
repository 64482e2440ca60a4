"""Per-user day marker."""

from datetime import date

from pydantic import BaseModel, Field

from questboard.core.config import constants
from questboard.core.errors import InvariantViolationError


class DayMarker(BaseModel):
    """Last local calendar date on which a user's tasks were confirmed fresh."""

    user_id: str = Field(..., description="Owner of the marker")
    day: date = Field(..., description="Date-only value, local zone")

    @property
    def key(self) -> str:
        return marker_key(self.user_id)

    def serialize(self) -> str:
        return self.day.isoformat()

    @classmethod
    def parse(cls, user_id: str, raw: str) -> "DayMarker":
        """Parse a stored ISO date.

        Raises:
            InvariantViolationError: If the stored value is not a date
        """
        try:
            return cls(user_id=user_id, day=date.fromisoformat(raw.strip()))
        except (ValueError, AttributeError) as e:
            msg = f"Corrupt day marker for user {user_id}: {raw!r}"
            raise InvariantViolationError(msg) from e


def marker_key(user_id: str) -> str:
    """Key-value store key holding ``user_id``'s day marker."""
    return f"{constants.KEY_PREFIX}:{constants.DAY_MARKER_NAMESPACE}:{user_id}"
