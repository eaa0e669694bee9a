"""Daily refresh trigger for the register cache."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo

from lucidlookup.pipeline.refresh import RefreshCoordinator, RefreshTrigger
from lucidlookup.pipeline.store import utc_now
from lucidlookup.settings import Settings

logger = logging.getLogger(__name__)


def next_run_after(now: datetime, at: time, tz: tzinfo) -> datetime:
    """Next occurrence of local wall-clock time ``at`` strictly after ``now``."""
    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), at, tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
    return candidate


async def run_scheduled_refresh(coordinator: RefreshCoordinator, *, min_age: timedelta) -> None:
    try:
        outcome = await coordinator.refresh(force=False, trigger=RefreshTrigger.SCHEDULED, min_age=min_age)
        logger.info("Scheduled refresh finished: %s", outcome.status.value)
    except Exception as e:  # noqa: BLE001
        logger.error("Scheduled refresh failed, keeping %d cached entries: %s", coordinator.store.size, e)


async def run_scheduler(
    *,
    coordinator: RefreshCoordinator,
    settings: Settings,
    stop_event: asyncio.Event,
    clock: Callable[[], datetime] = utc_now,
) -> None:
    """Trigger a non-forced refresh once a day at the configured local time."""
    tz = ZoneInfo(settings.schedule_timezone)
    logger.info(
        "Scheduler starting (daily at %s %s)",
        settings.schedule_time.strftime("%H:%M"),
        settings.schedule_timezone,
    )
    while not stop_event.is_set():
        now = clock()
        next_run = next_run_after(now, settings.schedule_time, tz)
        delay = (next_run - now).total_seconds()
        logger.info("Next scheduled refresh at %s", next_run.isoformat())
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=max(delay, 0.0))
            break
        except asyncio.TimeoutError:
            pass
        await run_scheduled_refresh(coordinator, min_age=settings.schedule_min_age)
    logger.info("Scheduler stopped")
