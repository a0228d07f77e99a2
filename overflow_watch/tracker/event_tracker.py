"""Event tracker — reconciles polling snapshots into durable discharge events.

Design notes:
    - An asyncio.Lock guards every mutation of the active-event map, so
      snapshots from sources fetched concurrently are applied one at a time
      and a site can never hold two active events.
    - Each ingest_snapshot call is scoped to one source: only that source's
      active events can be ended by it.
    - Changed records are persisted in one store write per snapshot.  A
      failed write is logged and tracking carries on in memory.
    - Completed events are handed to the ThresholdQueue as copies; the queue
      decides whether they are long enough and not already queued.
    - Completed events carry the site's 2023 history when the mapping has it.
    - restore() re-seeds the active map from the store after a restart so an
      in-flight event keeps its original start_time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Mapping

from overflow_watch.domain.errors import PersistenceError
from overflow_watch.domain.event import DischargeEvent
from overflow_watch.domain.history import SiteHistory
from overflow_watch.domain.observation import Observation
from overflow_watch.domain.sources import SourceConfig
from overflow_watch.foundation.clock import ensure_utc, utc_now
from overflow_watch.foundation.durations import format_duration
from overflow_watch.foundation.identifiers import event_id as make_event_id
from overflow_watch.scheduler.threshold_queue import ThresholdQueue
from overflow_watch.store.event_store import JsonEventStore

logger = logging.getLogger(__name__)


@dataclass
class SnapshotResult:
    """What one ingest_snapshot call changed, by event_id."""

    source_id: str
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    queued: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "created": len(self.created),
            "updated": len(self.updated),
            "completed": len(self.completed),
            "queued": len(self.queued),
        }


class EventTracker:
    """Owns the active discharge events across polling cycles.

    Args:
        store: Persistent store every created, updated or completed event is
            written to.
        queue: Receives a copy of every completed event.
        sources: Source configurations, used to label events with the
            company name.
        max_start_age: A feed start time older than this is implausible and
            replaced with the observation time.
        clock_skew_tolerance: How far in the future a feed start time may be
            before it is treated as implausible.
        recovery_window: Active records last updated within this window are
            restored on startup; older ones are considered stale.
        site_history: 2023 context by site_id, attached to events as they
            complete.
    """

    def __init__(
        self,
        store: JsonEventStore,
        queue: ThresholdQueue,
        sources: Iterable[SourceConfig] = (),
        max_start_age: timedelta = timedelta(days=30),
        clock_skew_tolerance: timedelta = timedelta(minutes=5),
        recovery_window: timedelta = timedelta(hours=24),
        site_history: Mapping[str, SiteHistory] | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._source_names = {s.source_id: s.name for s in sources}
        self._max_start_age = max_start_age
        self._clock_skew_tolerance = clock_skew_tolerance
        self._recovery_window = recovery_window
        self._site_history = dict(site_history or {})
        self._lock = asyncio.Lock()
        self._active: dict[str, DischargeEvent] = {}
        self._persistence_failures = 0

    # ── Public API ───────────────────────────────────────────────────────

    async def ingest_snapshot(
        self,
        source_id: str,
        observations: Iterable[Observation],
        now: datetime | None = None,
        *,
        indeterminate: Iterable[str] = (),
    ) -> SnapshotResult:
        """Apply one source's polling snapshot to the active-event map.

        Args:
            source_id: The source this snapshot came from.
            observations: Every parsed observation of the snapshot.
            now: Observation time of the snapshot.
            indeterminate: Site ids whose status is unknown this tick (their
                record failed to parse).  Their active events are left open.
        """
        now = ensure_utc(now) if now is not None else utc_now()
        result = SnapshotResult(source_id=source_id)

        async with self._lock:
            discharging: dict[str, Observation] = {}
            for obs in observations:
                if obs.source_id != source_id:
                    logger.warning(
                        "Ignoring observation of %s in snapshot for %s", obs.event_id, source_id
                    )
                    continue
                if obs.is_discharging:
                    discharging[obs.event_id] = obs

            changed: list[DischargeEvent] = []

            # ── Starts and continuations ────────────────────────────────
            for eid, obs in discharging.items():
                existing = self._active.get(eid)
                if existing is None:
                    event = self._open(obs, now)
                    self._active[eid] = event
                    result.created.append(eid)
                else:
                    existing.update_metadata(obs, now)
                    event = existing
                    result.updated.append(eid)
                changed.append(event)

            # ── Ends ────────────────────────────────────────────────────
            unknown = {make_event_id(source_id, site) for site in indeterminate}
            ended = [
                eid
                for eid, event in self._active.items()
                if event.source_id == source_id and eid not in discharging and eid not in unknown
            ]
            completed: list[DischargeEvent] = []
            for eid in ended:
                event = self._active.pop(eid)
                event.complete(now)
                event.history = self._site_history.get(event.site_id)
                completed.append(event)
                changed.append(event)
                result.completed.append(eid)

            await self._persist(changed)

            for event in completed:
                logger.info(
                    "Event ended: %s (%s) lasted %s",
                    event.event_id,
                    event.watercourse or "unknown watercourse",
                    format_duration(event.duration_minutes),
                )
                if self._queue.add_event(event, now):
                    result.queued.append(event.event_id)

        return result

    async def restore(self, now: datetime | None = None) -> int:
        """Seed the active map from persisted active records.  Returns the count.

        Must run before the first poll.  Raises StoreFormatError if the
        store cannot be read.
        """
        now = ensure_utc(now) if now is not None else utc_now()
        records = await self._store.load_all()
        restored = 0
        stale = 0

        async with self._lock:
            for record in records:
                if not record.is_active:
                    continue
                if now - record.last_updated > self._recovery_window:
                    stale += 1
                    continue
                current = self._active.get(record.event_id)
                if current is not None and current.start_time >= record.start_time:
                    logger.warning(
                        "Two active records for %s; keeping start %s over %s",
                        record.event_id,
                        current.start_time.isoformat(),
                        record.start_time.isoformat(),
                    )
                    continue
                if current is None:
                    restored += 1
                self._active[record.event_id] = record

        if stale:
            logger.warning(
                "Skipped %d stale active record(s) not updated within %s",
                stale,
                self._recovery_window,
            )
        logger.info("Restored %d active event(s) from the store", restored)
        return restored

    async def active_count(self) -> int:
        async with self._lock:
            return len(self._active)

    async def active_events(self) -> list[DischargeEvent]:
        """Copies of the active events, longest running first."""
        async with self._lock:
            events = [e.model_copy(deep=True) for e in self._active.values()]
        events.sort(key=lambda e: e.start_time)
        return events

    async def stats(self) -> dict:
        async with self._lock:
            per_source: dict[str, int] = {}
            for event in self._active.values():
                per_source[event.source_id] = per_source.get(event.source_id, 0) + 1
            return {
                "active_events": len(self._active),
                "active_by_source": per_source,
                "persistence_failures": self._persistence_failures,
            }

    # ── Internals ────────────────────────────────────────────────────────

    def _open(self, obs: Observation, now: datetime) -> DischargeEvent:
        """Must be called while holding self._lock."""
        start_time, estimated = self._resolve_start(obs, now)
        event = DischargeEvent.start(
            obs,
            start_time,
            now,
            source_name=self._source_names.get(obs.source_id),
            estimated=estimated,
        )
        logger.info(
            "New event: %s into %s (%s so far)",
            event.event_id,
            event.watercourse or "unknown watercourse",
            format_duration(event.elapsed_minutes(now)),
        )
        return event

    def _resolve_start(self, obs: Observation, now: datetime) -> tuple[datetime, bool]:
        """Pick the start time of a new event: the feed's, unless implausible."""
        reported = obs.status_changed_at
        if reported is None:
            logger.info("%s reports no status start; using observation time", obs.event_id)
            return now, True
        if reported > now + self._clock_skew_tolerance:
            logger.warning(
                "%s reports a future status start %s; using observation time",
                obs.event_id,
                reported.isoformat(),
            )
            return now, True
        if reported < now - self._max_start_age:
            logger.warning(
                "%s reports a status start %s older than %s; using observation time",
                obs.event_id,
                reported.isoformat(),
                self._max_start_age,
            )
            return now, True
        return reported, False

    async def _persist(self, events: list[DischargeEvent]) -> None:
        """Must be called while holding self._lock."""
        if not events:
            return
        try:
            await self._store.upsert_many(events)
        except PersistenceError as exc:
            self._persistence_failures += 1
            logger.warning("Event store write failed, durability degraded: %s", exc)
