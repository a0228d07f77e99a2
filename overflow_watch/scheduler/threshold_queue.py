"""Threshold queue — completed events long enough to publish.

The queue is the single dedup point that prevents re-posting: an event_id
enters at most once, and stays (dispatched or not) until it ages out of the
retention window.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel

from overflow_watch.domain.event import DischargeEvent
from overflow_watch.foundation.clock import utc_now
from overflow_watch.foundation.durations import format_duration

logger = logging.getLogger(__name__)


class QueueEntry(BaseModel):
    """A queued completed event plus its dispatch bookkeeping."""

    event: DischargeEvent
    added_at: datetime
    dispatched: bool = False


class ThresholdQueue:
    """In-memory, insertion-ordered queue of completed events.

    Args:
        min_duration_minutes: Events shorter than this are never queued.
        retention: How long after its end an entry is kept before cleanup()
            evicts it, regardless of dispatch state.
    """

    def __init__(
        self,
        min_duration_minutes: int = 600,
        retention: timedelta = timedelta(days=7),
    ) -> None:
        if min_duration_minutes < 0:
            raise ValueError("min_duration_minutes must be >= 0")
        self._min_duration_minutes = min_duration_minutes
        self._retention = retention
        self._entries: dict[str, QueueEntry] = {}

    @property
    def min_duration_minutes(self) -> int:
        return self._min_duration_minutes

    # ── Public API ───────────────────────────────────────────────────────

    def add_event(self, event: DischargeEvent, now: datetime | None = None) -> bool:
        """Queue a completed event.  Returns False, changing nothing, if it is
        still active, too short, or its event_id is already queued."""
        if event.is_active or event.duration_minutes is None:
            logger.debug("Not queueing %s: event is not completed", event.event_id)
            return False
        if event.duration_minutes < self._min_duration_minutes:
            logger.debug(
                "Not queueing %s: %s is below the %s threshold",
                event.event_id,
                format_duration(event.duration_minutes),
                format_duration(self._min_duration_minutes),
            )
            return False
        if event.event_id in self._entries:
            logger.info("Not queueing %s: already queued", event.event_id)
            return False

        self._entries[event.event_id] = QueueEntry(
            event=event.model_copy(deep=True),
            added_at=now or utc_now(),
        )
        logger.info(
            "Queued %s (%s)", event.event_id, format_duration(event.duration_minutes)
        )
        return True

    def get_postable(self) -> list[DischargeEvent]:
        """Undispatched events, most recently ended first.

        Ties keep insertion order (sorted() is stable).  Returns copies.
        """
        pending = [e.event for e in self._entries.values() if not e.dispatched]
        ordered = sorted(pending, key=lambda ev: ev.end_time, reverse=True)
        return [ev.model_copy(deep=True) for ev in ordered]

    def mark_dispatched(self, event_id: str) -> None:
        """Flag an entry as published.  Unknown ids are ignored."""
        entry = self._entries.get(event_id)
        if entry is None:
            logger.debug("mark_dispatched: %s not in queue", event_id)
            return
        entry.dispatched = True
        logger.debug("Marked %s as dispatched", event_id)

    def cleanup(self, now: datetime | None = None) -> int:
        """Evict entries that ended before the retention window.  Returns the count."""
        cutoff = (now or utc_now()) - self._retention
        stale = [eid for eid, entry in self._entries.items() if entry.event.end_time < cutoff]
        for eid in stale:
            del self._entries[eid]
        if stale:
            logger.info("Cleaned %d old event(s) from queue", len(stale))
        return len(stale)

    # ── Queries ──────────────────────────────────────────────────────────

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def entry(self, event_id: str) -> QueueEntry | None:
        entry = self._entries.get(event_id)
        return entry.model_copy(deep=True) if entry else None

    def stats(self) -> dict:
        dispatched = sum(1 for e in self._entries.values() if e.dispatched)
        return {
            "total": len(self._entries),
            "postable": len(self._entries) - dispatched,
            "dispatched": dispatched,
            "min_duration_minutes": self._min_duration_minutes,
        }
