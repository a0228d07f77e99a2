"""Controlled enumerations for the overflow-watch domain.

Every categorical field in the domain MUST reference an enum defined here.
"""

from __future__ import annotations

from enum import Enum


class EventStatus(str, Enum):
    """Lifecycle of a discharge event.  Transitions only active → completed."""

    ACTIVE = "active"
    COMPLETED = "completed"


class MonitorStatus(int, Enum):
    """Event Duration Monitor status codes published by the Storm Overflow Hub."""

    OFFLINE = -1
    NOT_DISCHARGING = 0
    DISCHARGING = 1
