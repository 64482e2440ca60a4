"""questboard - daily task recurrence and reset engine."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from questboard.core.cache_client import get_kv_store
from questboard.core.config import settings
from questboard.core.logging import configure_logfire
from questboard.core.redis_client import redis_client
from questboard.core.scheduler import scheduler, start_scheduler, stop_scheduler
from questboard.models.service_models import ResetTrigger
from questboard.services.session import DailyTaskSession
from questboard.services.task_store import HttpTaskStore, RemoteTaskStore


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Only checks if Redis is configured. Day markers and cached views fall back
    to the in-process store, so an unreachable Redis is logged, not fatal.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    if await redis_client.ping():
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


@asynccontextmanager
async def engine_lifespan() -> AsyncIterator[None]:
    """Configure observability and run the session scheduler for the engine's lifetime."""
    # Configure logging first so validation logs are captured
    configure_logfire()
    await check_redis_connectivity()
    start_scheduler()
    logger.info("questboard engine started")
    try:
        yield
    finally:
        stop_scheduler()
        await redis_client.close()
        logger.info("questboard engine stopped")


async def open_session(
    user_id: str,
    *,
    store: RemoteTaskStore | None = None,
    trigger: ResetTrigger = ResetTrigger.LOGIN,
) -> DailyTaskSession:
    """Open a signed-in user's daily task session.

    Runs the day-boundary check once, then schedules the countdown tick and the
    periodic rollover checks on the global scheduler.

    Args:
        user_id: Signed-in user
        store: Remote task store; defaults to the HTTP store at ``API_BASE_URL``
        trigger: Banner type for a reset performed by this check

    Raises:
        ValueError: If no store is given and ``API_TOKEN`` is not configured
    """
    if store is None:
        store = HttpTaskStore(token=settings.require_credential("api_token", "Task store API"))

    session = DailyTaskSession(user_id, store=store, kv_store=get_kv_store(), scheduler=scheduler)
    outcome = await session.mount(trigger=trigger)
    session.start_background_jobs()
    logger.info("Opened daily task session for user %s (%s)", user_id, outcome.phase)
    return session
