"""Pydantic response models for the status API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from overflow_watch.domain.event import DischargeEvent


class EventView(BaseModel):
    """An event as exposed over HTTP."""

    event_id: str
    company: str
    site_id: str
    site_name: Optional[str] = None
    watercourse: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: int = Field(..., ge=0, description="Final duration, or elapsed so far")
    status: str
    start_time_estimated: bool = False

    @classmethod
    def from_event(cls, event: DischargeEvent, now: datetime) -> "EventView":
        return cls(
            event_id=event.event_id,
            company=event.source_name or event.source_id,
            site_id=event.site_id,
            site_name=event.site_name,
            watercourse=event.watercourse,
            latitude=event.coordinates.latitude if event.coordinates else None,
            longitude=event.coordinates.longitude if event.coordinates else None,
            start_time=event.start_time,
            end_time=event.end_time,
            duration_minutes=event.elapsed_minutes(now),
            status=event.status.value,
            start_time_estimated=event.start_time_estimated,
        )


class EventList(BaseModel):
    events: list[EventView] = Field(default_factory=list)
    count: int = 0


class HealthResponse(BaseModel):
    status: str = "ok"
    running: bool
    active_events: int
    active_by_source: dict[str, int] = Field(default_factory=dict)
    persistence_failures: int = 0
    queue: dict[str, Any] = Field(default_factory=dict)
    publishing: dict[str, Any] = Field(default_factory=dict)
    last_poll: Optional[dict[str, Any]] = None
    adapters: list[dict] = Field(default_factory=list)
