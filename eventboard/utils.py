"""Utility helpers for EventBoard."""

from __future__ import annotations

from datetime import UTC, date, datetime


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def localnow() -> datetime:
    """Return a naive datetime in the server's local time zone.

    Event dates are calendar days in local time, so status resolution compares
    against local wall-clock time rather than UTC.
    """

    return datetime.now()


def parse_iso_date(value: str | date) -> date:
    """Return ``value`` as a ``date``; accepts ``YYYY-MM-DD`` or ISO datetimes."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = (value or "").strip()
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return datetime.fromisoformat(raw).date()


def isoformat_or_none(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None
