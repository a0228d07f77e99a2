"""Observation — what one poll says about one monitored site.

Observations are produced fresh by an adapter on every poll and are never
persisted.  They are immutable and validated at the boundary so the
tracker never has to re-check field constraints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from overflow_watch.foundation.clock import ensure_utc
from overflow_watch.foundation.identifiers import event_id


class Coordinates(BaseModel):
    """WGS84 location of an outfall."""

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    model_config = {"frozen": True}

    def maps_link(self) -> str:
        return f"https://maps.google.com/?q={self.latitude},{self.longitude}"


class Observation(BaseModel):
    """Canonical per-site observation from one polling snapshot."""

    source_id: str = Field(..., min_length=1, max_length=128)
    site_id: str = Field(..., min_length=1, max_length=256)
    is_discharging: bool
    status_changed_at: Optional[datetime] = Field(
        default=None,
        description="When the monitor entered its current status, if the feed says",
    )
    watercourse: Optional[str] = None
    site_name: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    raw_status: Optional[int] = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("status_changed_at")
    @classmethod
    def timestamp_must_be_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def event_id(self) -> str:
        return event_id(self.source_id, self.site_id)
