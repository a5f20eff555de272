"""Time helpers for UTC storage."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC, treating naive values as already UTC.

    SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns;
    every timestamp this service writes is UTC, so naive values are tagged
    rather than shifted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc_optional(value: datetime | None) -> datetime | None:
    """Convert an optional datetime to UTC."""
    if value is None:
        return None
    return to_utc(value)
