"""Event catalogue and registration ledger.

Every read resolves statuses afresh. Resolved values that differ from the
persisted cache are returned alongside the events so the caller can write
them back once the response is out of the way.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Iterable

from .auth import Principal, ensure_admin
from .errors import EventNotFound, StorageError, ValidationError
from .records import EVENT_FIELDS, EventRecord, RegistrationRecord
from .status import ACTIVE_STATUSES, DEFAULT_DURATION, EventStatus, resolve_status
from .store import Store

logger = logging.getLogger("uvicorn.error")

StaleStatuses = dict[int, str]


def refresh_statuses(
    events: Iterable[EventRecord],
    *,
    now: datetime,
    duration: timedelta = DEFAULT_DURATION,
) -> tuple[list[EventRecord], StaleStatuses]:
    fresh: list[EventRecord] = []
    stale: StaleStatuses = {}
    for event in events:
        status = resolve_status(
            event.date, event.time, now, default_duration=duration
        ).value
        if status != event.status:
            stale[event.id] = status
            event = replace(event, status=status)
        fresh.append(event)
    return fresh, stale


def write_back_statuses(store: Store, stale: StaleStatuses) -> int:
    """Persist refreshed statuses; failures are logged, never raised."""
    if not stale:
        return 0
    try:
        changed = store.save_statuses(stale)
    except StorageError:
        logger.warning("Could not write back %d event statuses", len(stale))
        return 0
    logger.debug("Wrote back %d event statuses", changed)
    return changed


def _matches(event: EventRecord, query: str) -> bool:
    needle = query.lower()
    return needle in event.title.lower() or needle in event.description.lower()


def list_events(
    store: Store,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_DURATION,
    status: EventStatus | None = None,
    query: str | None = None,
) -> tuple[list[EventRecord], StaleStatuses]:
    """Return events ordered by ``(date, id)`` with optional filters."""
    events, stale = refresh_statuses(store.list_events(), now=now, duration=duration)
    if status is not None:
        events = [e for e in events if e.status == status.value]
    cleaned = (query or "").strip()
    if cleaned:
        events = [e for e in events if _matches(e, cleaned)]
    return events, stale


def upcoming_events(
    store: Store, *, now: datetime, duration: timedelta = DEFAULT_DURATION
) -> tuple[list[EventRecord], StaleStatuses]:
    """Events that are upcoming or currently running."""
    events, stale = list_events(store, now=now, duration=duration)
    active = {s.value for s in ACTIVE_STATUSES}
    return [e for e in events if e.status in active], stale


def past_events(
    store: Store, *, now: datetime, duration: timedelta = DEFAULT_DURATION
) -> tuple[list[EventRecord], StaleStatuses]:
    return list_events(store, now=now, duration=duration, status=EventStatus.PAST)


def get_event(
    store: Store,
    event_id: int,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_DURATION,
) -> tuple[EventRecord, StaleStatuses]:
    event = store.get_event(event_id)
    if event is None:
        raise EventNotFound()
    events, stale = refresh_statuses([event], now=now, duration=duration)
    return events[0], stale


def _clean_changes(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(EVENT_FIELDS)
    if unknown:
        raise ValidationError(
            "Invalid event data",
            errors=[
                {"loc": [name], "msg": "Field cannot be set"} for name in sorted(unknown)
            ],
        )
    return dict(fields)


def create_event(
    store: Store,
    principal: Principal,
    fields: dict[str, Any],
    *,
    now: datetime,
    duration: timedelta = DEFAULT_DURATION,
) -> EventRecord:
    ensure_admin(principal)
    data = _clean_changes(fields)
    data["status"] = resolve_status(
        data["date"], data["time"], now, default_duration=duration
    ).value
    event = store.create_event(**data)
    logger.info("Event %s (%s) created by user %s", event.id, event.title, principal.user_id)
    return event


def update_event(
    store: Store,
    principal: Principal,
    event_id: int,
    changes: dict[str, Any],
    *,
    now: datetime,
    duration: timedelta = DEFAULT_DURATION,
) -> tuple[EventRecord, StaleStatuses]:
    """Apply a partial update and return the event with its resolved status."""
    ensure_admin(principal)
    data = _clean_changes(changes)
    current = store.get_event(event_id)
    if current is None:
        raise EventNotFound()
    if "date" in data or "time" in data:
        data["status"] = resolve_status(
            data.get("date", current.date),
            data.get("time", current.time),
            now,
            default_duration=duration,
        ).value
    event = store.update_event(event_id, data) if data else current
    logger.info("Event %s updated by user %s", event_id, principal.user_id)
    events, stale = refresh_statuses([event], now=now, duration=duration)
    return events[0], stale


def delete_event(store: Store, principal: Principal, event_id: int) -> None:
    ensure_admin(principal)
    store.delete_event(event_id)
    logger.info("Event %s deleted by user %s", event_id, principal.user_id)


def register(store: Store, principal: Principal, event_id: int) -> RegistrationRecord:
    """Register the caller for an event at most once."""
    registration = store.register(event_id, principal.user_id)
    logger.info("User %s registered for event %s", principal.user_id, event_id)
    return registration


def list_for_user(
    store: Store,
    principal: Principal,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_DURATION,
) -> tuple[list[EventRecord], StaleStatuses]:
    """Events the caller registered for, ordered by ``(date, id)``."""
    return refresh_statuses(
        store.list_registered_events(principal.user_id), now=now, duration=duration
    )
