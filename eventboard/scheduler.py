"""APScheduler integration for refreshing cached event statuses."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .events import refresh_statuses, write_back_statuses
from .status import DEFAULT_DURATION
from .store import Store
from .utils import localnow

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def refresh_cached_statuses(store: Store, *, duration=DEFAULT_DURATION) -> int:
    """Recompute every event's status and persist the ones that changed."""
    _, stale = refresh_statuses(store.list_events(), now=localnow(), duration=duration)
    changed = write_back_statuses(store, stale)
    if changed:
        logger.info("Status refresh updated %d events", changed)
    return changed


def start_scheduler(
    store: Store, *, interval_minutes: int, duration=DEFAULT_DURATION
) -> BackgroundScheduler:
    global _scheduler
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        refresh_cached_statuses,
        "interval",
        minutes=interval_minutes,
        args=[store],
        kwargs={"duration": duration},
        id="status-refresh",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
