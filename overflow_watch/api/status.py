"""Read-only status endpoints.

Paths:
    GET /health
    GET /api/events/active
    GET /api/events/recent?hours=24
    GET /api/queue
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from overflow_watch.adapters.registry import AdapterRegistry
from overflow_watch.foundation.clock import utc_now
from overflow_watch.models.status import EventList, EventView, HealthResponse
from overflow_watch.scheduler.service import MonitorService


def create_status_router(service: MonitorService, registry: AdapterRegistry) -> APIRouter:
    """Factory that wires the status endpoints to the running service."""

    router = APIRouter()

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        stats = await service.tracker.stats()
        last = service.last_poll
        return HealthResponse(
            running=service.started,
            active_events=stats["active_events"],
            active_by_source=stats["active_by_source"],
            persistence_failures=stats["persistence_failures"],
            queue=service.queue.stats(),
            publishing=service.cycle.status(),
            last_poll=last.to_dict() if last else None,
            adapters=registry.stats,
        )

    @router.get("/api/events/active", response_model=EventList, tags=["events"])
    async def active_events() -> EventList:
        now = utc_now()
        events = [EventView.from_event(e, now) for e in await service.tracker.active_events()]
        return EventList(events=events, count=len(events))

    @router.get("/api/events/recent", response_model=EventList, tags=["events"])
    async def recent_events(hours: float = Query(24, gt=0, le=24 * 31)) -> EventList:
        now = utc_now()
        completed = await service.store.recently_completed(hours, now)
        events = [EventView.from_event(e, now) for e in completed]
        return EventList(events=events, count=len(events))

    @router.get("/api/queue", response_model=EventList, tags=["queue"])
    async def queue() -> EventList:
        now = utc_now()
        events = [EventView.from_event(e, now) for e in service.queue.get_postable()]
        return EventList(events=events, count=len(events))

    return router
