"""DischargeEvent — the durable record of one contiguous discharge at one site.

Lifecycle:  active → completed
    - active:    created on the first discharging observation of a site that
                 has no open event; receives metadata updates while the site
                 keeps discharging.
    - completed: set exactly once, together with end_time and
                 duration_minutes.  A completed event is immutable.

Thread-safety note:
    Active events are mutated *only* while the caller holds the EventTracker
    lock.  Completed events are handed to other components as deep copies.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from overflow_watch.domain.enums import EventStatus
from overflow_watch.domain.errors import EventLifecycleError
from overflow_watch.domain.history import SiteHistory
from overflow_watch.domain.observation import Coordinates, Observation
from overflow_watch.foundation.clock import ensure_utc
from overflow_watch.foundation.identifiers import store_key

logger = logging.getLogger(__name__)


def duration_minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, rounded.  May be negative."""
    return round((end - start).total_seconds() / 60.0)


class DischargeEvent(BaseModel):
    """A storm overflow discharge event, active or completed."""

    event_id: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1)
    source_name: Optional[str] = None
    site_id: str = Field(..., min_length=1)
    site_name: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    status: EventStatus = EventStatus.ACTIVE
    watercourse: Optional[str] = None
    last_updated: datetime
    attributes: dict[str, Any] = Field(default_factory=dict)
    start_time_estimated: bool = Field(
        default=False,
        description="True when the feed gave no usable start and 'now' was used",
    )
    timestamp_anomaly: bool = Field(
        default=False,
        description="True when end preceded start and the duration was clamped to 0",
    )
    history: Optional[SiteHistory] = Field(
        default=None,
        description="2023 context for the site, attached when the event completes",
    )

    @field_validator("start_time", "end_time", "last_updated")
    @classmethod
    def timestamps_must_be_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    # ── Construction ─────────────────────────────────────────────────────

    @classmethod
    def start(
        cls,
        observation: Observation,
        start_time: datetime,
        now: datetime,
        *,
        source_name: str | None = None,
        estimated: bool = False,
    ) -> "DischargeEvent":
        """Open a new active event from a discharging observation."""
        if not observation.is_discharging:
            raise EventLifecycleError(
                f"cannot start an event for {observation.event_id}: site is not discharging"
            )
        return cls(
            event_id=observation.event_id,
            source_id=observation.source_id,
            source_name=source_name,
            site_id=observation.site_id,
            site_name=observation.site_name,
            coordinates=observation.coordinates,
            start_time=start_time,
            watercourse=observation.watercourse,
            last_updated=now,
            attributes=dict(observation.attributes),
            start_time_estimated=estimated,
        )

    # ── Mutation ─────────────────────────────────────────────────────────

    def update_metadata(self, observation: Observation, now: datetime) -> None:
        """Refresh the mutable descriptive fields.  Never touches start_time."""
        self._require_active("update")
        if observation.event_id != self.event_id:
            raise EventLifecycleError(
                f"observation for {observation.event_id} applied to {self.event_id}"
            )
        if observation.watercourse is not None:
            self.watercourse = observation.watercourse
        if observation.site_name is not None:
            self.site_name = observation.site_name
        if observation.coordinates is not None:
            self.coordinates = observation.coordinates
        self.attributes = dict(observation.attributes)
        self.last_updated = now

    def complete(self, now: datetime) -> None:
        """Close the event: set end_time, duration and status in one step."""
        self._require_active("complete")
        minutes = duration_minutes_between(self.start_time, now)
        if minutes < 0:
            logger.warning(
                "Event %s ends (%s) before it starts (%s); clamping duration to 0",
                self.event_id,
                now.isoformat(),
                self.start_time.isoformat(),
            )
            minutes = 0
            self.timestamp_anomaly = True
        self.end_time = now
        self.duration_minutes = minutes
        self.status = EventStatus.COMPLETED
        self.last_updated = now

    def estimated_volume_litres(self) -> Optional[int]:
        """Permitted-flow volume estimate for a completed event, if history allows."""
        if self.history is None:
            return None
        return self.history.estimated_volume_litres(self.duration_minutes)

    def _require_active(self, action: str) -> None:
        if self.status is not EventStatus.ACTIVE:
            raise EventLifecycleError(f"cannot {action} completed event {self.event_id}")

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self.status is EventStatus.ACTIVE

    @property
    def store_key(self) -> str:
        return store_key(self.source_id, self.site_id, self.start_time)

    def elapsed_minutes(self, now: datetime) -> int:
        """Duration so far for an active event, the final duration otherwise."""
        if self.duration_minutes is not None:
            return self.duration_minutes
        return max(duration_minutes_between(self.start_time, now), 0)

    def summary(self) -> dict:
        """Lightweight summary suitable for logging and status endpoints."""
        return {
            "event_id": self.event_id,
            "source_id": self.source_id,
            "site_id": self.site_id,
            "site_name": self.site_name,
            "watercourse": self.watercourse,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_minutes": self.duration_minutes,
        }

    def __repr__(self) -> str:
        return (
            f"DischargeEvent(id={self.event_id}, "
            f"status={self.status.value}, "
            f"start={self.start_time.isoformat()}, "
            f"duration={self.duration_minutes})"
        )
