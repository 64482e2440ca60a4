"""Scheduler for session jobs (countdown ticks, rollover checks)."""

import logging
from collections.abc import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from questboard.core.config import settings


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


def _job_ids(user_id: str) -> tuple[str, str, str]:
    return (f"countdown_tick:{user_id}", f"rollover_check:{user_id}", f"midnight_check:{user_id}")


def schedule_session_jobs(
    *,
    user_id: str,
    on_tick: Callable[[], object],
    on_rollover_check: Callable[[], Awaitable[object]],
    target: AsyncIOScheduler | None = None,
) -> list[str]:
    """Register the periodic jobs of one user's session.

    Args:
        user_id: Session owner; job ids are derived from it
        on_tick: Called every ``countdown_tick_seconds`` to refresh countdowns
        on_rollover_check: Coroutine function checking for a day rollover;
            runs every ``rollover_check_interval_seconds`` and right after midnight
        target: Scheduler to use (defaults to the global one)

    Returns:
        Ids of the registered jobs
    """
    target = target or scheduler
    tick_id, rollover_id, midnight_id = _job_ids(user_id)

    target.add_job(
        on_tick,
        trigger=IntervalTrigger(seconds=settings.countdown_tick_seconds),
        id=tick_id,
        name=f"Countdown tick for {user_id}",
        replace_existing=True,
    )
    target.add_job(
        on_rollover_check,
        trigger=IntervalTrigger(seconds=settings.rollover_check_interval_seconds),
        id=rollover_id,
        name=f"Rollover check for {user_id}",
        replace_existing=True,
    )
    target.add_job(
        on_rollover_check,
        trigger=CronTrigger(hour=0, minute=0, second=1),
        id=midnight_id,
        name=f"Midnight rollover check for {user_id}",
        replace_existing=True,
    )
    logger.info(
        "Scheduled session jobs for user %s: tick every %ds, rollover check every %ds and at midnight",
        user_id,
        settings.countdown_tick_seconds,
        settings.rollover_check_interval_seconds,
    )
    return [tick_id, rollover_id, midnight_id]


def remove_session_jobs(user_id: str, *, target: AsyncIOScheduler | None = None) -> None:
    target = target or scheduler
    for job_id in _job_ids(user_id):
        if target.get_job(job_id) is not None:
            target.remove_job(job_id)
    logger.info("Removed session jobs for user %s", user_id)


def start_scheduler() -> None:
    """Start the global scheduler; must run inside the event loop."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler() -> None:
    """Stop the global scheduler.

    Call on application shutdown.
    """
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
