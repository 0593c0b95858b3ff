"""Timestamp helpers for the completion log and limit windows."""

from __future__ import annotations

import math
from datetime import datetime, time, timedelta, timezone


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as local wall-clock time."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


def to_db(value: datetime) -> str:
    """Serialise *value* as a fixed-width UTC ISO-8601 string.

    The fixed width keeps lexicographic order equal to chronological order,
    which the ``completed_at < ?`` prune relies on.
    """
    return ensure_aware(value).astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db(value: str) -> datetime:
    return datetime.fromisoformat(value)


def start_of_local_day(now: datetime) -> datetime:
    """Local midnight at the start of the calendar day containing *now*."""
    local = ensure_aware(now).astimezone()
    return datetime.combine(local.date(), time.min).astimezone()


def next_local_midnight(now: datetime) -> datetime:
    local = ensure_aware(now).astimezone()
    tomorrow = local.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min).astimezone()


def ceil_units(delta: timedelta, unit: timedelta) -> int:
    """Round *delta* up to a whole number of *unit*."""
    return math.ceil(delta / unit)


def ms(milliseconds: int | float) -> timedelta:
    return timedelta(milliseconds=milliseconds)
