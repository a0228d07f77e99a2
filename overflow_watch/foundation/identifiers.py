"""Deterministic key generation for discharge events."""

from __future__ import annotations

from datetime import datetime


def event_id(source_id: str, site_id: str) -> str:
    """Composite key of a monitored site: at most one active event per key."""
    return f"{source_id}:{site_id}"


def store_key(source_id: str, site_id: str, start_time: datetime) -> str:
    """Persistent store key: one record per (site, start) pair."""
    return f"{event_id(source_id, site_id)}:{start_time.isoformat()}"


def cycle_id(moment: datetime) -> str:
    """Filesystem-safe publish cycle identifier, e.g. ``2026-01-01_12-00-00``."""
    return moment.strftime("%Y-%m-%d_%H-%M-%S")
