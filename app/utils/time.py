"""Utility functions for time handling.

All timestamps should be UTC and timezone-aware. Event rows persist UTC
timestamps as ISO-8601 strings with millisecond precision and a "+00:00"
offset (see :func:`to_iso`), so lexical order in SQLite equals chronological
order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format a datetime as the canonical stored timestamp string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds")


def iso_now() -> str:
    """Return current UTC time in the canonical stored format."""
    return to_iso(utc_now())


def coerce_datetime(value: Any) -> datetime | None:
    """
    Coerce value to datetime, returning None on failure.

    Args:
        value: String or datetime to coerce

    Returns:
        Datetime in timezone.utc or None if invalid
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        return parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=timezone.utc)


def normalize_timestamp(value: Any) -> str | None:
    """Return *value* in the canonical stored format, or None if unparseable."""
    parsed = coerce_datetime(value)
    return to_iso(parsed) if parsed is not None else None
