"""Derive an event's status from its calendar date and time string."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from enum import Enum

from .utils import parse_iso_date

logger = logging.getLogger("uvicorn.error")

DEFAULT_DURATION = timedelta(hours=2)


class EventStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    PAST = "past"


ACTIVE_STATUSES = frozenset({EventStatus.UPCOMING, EventStatus.ONGOING})


def _clock(segment: str) -> time:
    """Parse the ``HH:MM`` clock of a time segment.

    A segment may carry a calendar date before the clock
    (``"2025-05-22 18:00"``); only the token after the last space is used.
    """
    token = segment.strip()
    if " " in token:
        token = token.rsplit(" ", 1)[1]
    hours, minutes = token.split(":", 1)
    return time(int(hours), int(minutes[:2]))


def _split_range(raw: str) -> tuple[str, str]:
    start, sep, end = raw.partition(" - ")
    if not sep:
        start, _, end = raw.partition("-")
    return start, end


def resolve_status(
    event_date: str | date,
    event_time: str | None,
    now: datetime,
    *,
    default_duration: timedelta = DEFAULT_DURATION,
) -> EventStatus:
    """Classify an event as upcoming, ongoing or past relative to ``now``.

    Days are compared by calendar date only; the time string is consulted
    only when the event falls on ``now``'s date. A time without a range gets
    ``default_duration``. An empty or unparseable time on the event's own day
    resolves to ``ongoing`` and is logged, never raised.
    """
    day = parse_iso_date(event_date)
    today = now.date()
    if day < today:
        return EventStatus.PAST
    if day > today:
        return EventStatus.UPCOMING

    raw = (event_time or "").strip()
    try:
        if "-" in raw:
            start_raw, end_raw = _split_range(raw)
            start_clock, end_clock = _clock(start_raw), _clock(end_raw)
            start_at = datetime.combine(today, start_clock, tzinfo=now.tzinfo)
            end_at = datetime.combine(today, end_clock, tzinfo=now.tzinfo)
        else:
            start_at = datetime.combine(today, _clock(raw), tzinfo=now.tzinfo)
            end_at = start_at + default_duration
    except ValueError:
        logger.warning(
            "Unparseable event time %r on %s; treating event as ongoing",
            event_time,
            day.isoformat(),
        )
        return EventStatus.ONGOING

    if now > end_at:
        return EventStatus.PAST
    if now < start_at:
        return EventStatus.UPCOMING
    return EventStatus.ONGOING
