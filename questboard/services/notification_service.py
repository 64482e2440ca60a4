"""Notification center for reset banners and transient error notifications."""

import itertools
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta

from questboard.core.clock import Clock, local_now
from questboard.core.config import settings
from questboard.core.errors import ErrorResponse, classify_error_with_response
from questboard.models.service_models import Notification, NotificationKind, ResetTrigger


logger = logging.getLogger(__name__)

NotificationListener = Callable[[Notification], Awaitable[None] | None]

_RESET_TITLES = {
    ResetTrigger.AUTO: "Daily Reset!",
    ResetTrigger.MANUAL: "Refresh Complete!",
    ResetTrigger.LOGIN: "Welcome Back!",
}
_DEFAULT_RESET_MESSAGE = "Your daily tasks have been refreshed!"


def reset_title(trigger: ResetTrigger) -> str:
    return _RESET_TITLES[trigger]


class NotificationCenter:
    """Holds active notifications until they expire or are dismissed.

    Listeners are called for every new notification; a listener may be a plain
    function or a coroutine function.
    """

    def __init__(self, *, clock: Clock = local_now, dismiss_seconds: int | None = None) -> None:
        self._clock = clock
        self._lifetime = timedelta(seconds=dismiss_seconds or settings.notification_dismiss_seconds)
        self._active: dict[str, Notification] = {}
        self._listeners: list[NotificationListener] = []
        self._ids = itertools.count(1)

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def _publish(self, notification: Notification) -> Notification:
        self._active[notification.id] = notification
        for listener in list(self._listeners):
            result = listener(notification)
            if result is not None:
                await result
        return notification

    async def notify_reset(
        self, *, trigger: ResetTrigger, reset_count: int = 0, message: str = ""
    ) -> Notification:
        """Show the banner for a completed reset."""
        now = self._clock()
        notification = Notification(
            id=f"n{next(self._ids)}",
            kind=NotificationKind.RESET,
            title=reset_title(trigger),
            message=message or _DEFAULT_RESET_MESSAGE,
            reset_type=trigger,
            reset_count=reset_count,
            created_at=now,
            expires_at=now + self._lifetime,
        )
        logger.info("Reset notification (%s): %d task(s) reset", trigger, reset_count)
        return await self._publish(notification)

    async def notify_error(
        self, error: BaseException | ErrorResponse, *, task_id: str | None = None
    ) -> Notification:
        """Show a transient error notification.

        Args:
            error: Exception to classify, or an already classified response
            task_id: Task the failure concerns, if any
        """
        response = error if isinstance(error, ErrorResponse) else classify_error_with_response(error)
        now = self._clock()
        notification = Notification(
            id=f"n{next(self._ids)}",
            kind=NotificationKind.ERROR,
            title=response.message,
            message=response.suggestion,
            task_id=task_id,
            error=response,
            created_at=now,
            expires_at=now + self._lifetime,
        )
        logger.warning("Error notification %s: %s", response.code, response.message, extra={"task_id": task_id})
        return await self._publish(notification)

    def dismiss(self, notification_id: str) -> bool:
        return self._active.pop(notification_id, None) is not None

    def active(self) -> list[Notification]:
        """Notifications not yet expired, oldest first."""
        now = self._clock()
        for notification_id in [n.id for n in self._active.values() if n.expires_at <= now]:
            del self._active[notification_id]
        return list(self._active.values())
