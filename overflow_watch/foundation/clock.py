"""Timezone-aware clock utilities.

All timestamps in overflow-watch MUST be UTC-aware.  This module is the
single source of "now" so tests can monkey-patch it trivially.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_epoch_millis(value: int | float) -> datetime:
    """Convert an ArcGIS epoch-milliseconds date field to a UTC datetime."""
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
