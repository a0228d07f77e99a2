"""SourcePoller — one polling tick across every enabled source.

Fetch → parse → ingest, with failures contained per source: a source that
cannot be fetched, or whose snapshot looks broken, is skipped for this
tick and its active events are left exactly as they were.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from overflow_watch.adapters.registry import AdapterRegistry
from overflow_watch.domain.errors import FetchError, ParseError
from overflow_watch.domain.observation import Observation
from overflow_watch.domain.sources import SourceConfig
from overflow_watch.foundation.clock import utc_now
from overflow_watch.tracker.event_tracker import EventTracker, SnapshotResult

logger = logging.getLogger(__name__)


class SnapshotFetcher(Protocol):
    """Anything that can return a source's raw features (ArcGISClient in production)."""

    async def fetch_all(self, source: SourceConfig) -> list[dict[str, Any]]:
        ...


@dataclass
class PollSummary:
    """Outcome of one tick across all sources."""

    polled_at: datetime
    results: list[SnapshotResult] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)
    skipped_sources: list[str] = field(default_factory=list)
    active_count: int = 0

    @property
    def created(self) -> int:
        return sum(len(r.created) for r in self.results)

    @property
    def completed(self) -> int:
        return sum(len(r.completed) for r in self.results)

    @property
    def queued(self) -> int:
        return sum(len(r.queued) for r in self.results)

    def to_dict(self) -> dict:
        return {
            "polled_at": self.polled_at.isoformat(),
            "sources": [r.to_dict() for r in self.results],
            "failed_sources": self.failed_sources,
            "skipped_sources": self.skipped_sources,
            "active_count": self.active_count,
        }


class SourcePoller:
    """Drives the EventTracker from live feeds."""

    def __init__(
        self,
        fetcher: SnapshotFetcher,
        registry: AdapterRegistry,
        tracker: EventTracker,
        sources: list[SourceConfig],
    ) -> None:
        registry.validate_sources(sources)
        self._fetcher = fetcher
        self._registry = registry
        self._tracker = tracker
        self._sources = [s for s in sources if s.enabled]

    @property
    def sources(self) -> list[SourceConfig]:
        return list(self._sources)

    async def poll_all(self, now: datetime | None = None) -> PollSummary:
        """Fetch every source concurrently; apply each snapshot under the tracker lock."""
        summary = PollSummary(polled_at=now or utc_now())
        outcomes = await asyncio.gather(
            *(self._poll_isolated(source, now) for source in self._sources)
        )
        for source, outcome in zip(self._sources, outcomes):
            if isinstance(outcome, SnapshotResult):
                summary.results.append(outcome)
            elif outcome == "failed":
                summary.failed_sources.append(source.source_id)
            else:
                summary.skipped_sources.append(source.source_id)

        summary.active_count = await self._tracker.active_count()
        logger.info(
            "Poll: %d active | %d new | %d ended | %d queued | %d failed source(s)",
            summary.active_count,
            summary.created,
            summary.completed,
            summary.queued,
            len(summary.failed_sources),
        )
        return summary

    async def poll_source(
        self, source: SourceConfig, now: datetime | None = None
    ) -> SnapshotResult | None:
        """Fetch, parse and ingest one source.  None means the snapshot was skipped.

        Raises:
            FetchError: If the source could not be fetched.
        """
        raw = await self._fetcher.fetch_all(source)
        if not raw:
            logger.warning("%s returned no features; skipping this tick", source.name)
            return None

        observations: list[Observation] = []
        indeterminate: set[str] = set()
        for feature in raw:
            try:
                observations.append(self._registry.parse(source, feature))
            except ParseError as exc:
                logger.warning("%s: skipping feature: %s", source.name, exc)
                if exc.site_id:
                    indeterminate.add(exc.site_id)

        if not observations:
            logger.warning(
                "%s: none of %d features could be parsed; skipping this tick",
                source.name,
                len(raw),
            )
            return None

        return await self._tracker.ingest_snapshot(
            source.source_id,
            observations,
            now or utc_now(),
            indeterminate=indeterminate,
        )

    async def _poll_isolated(
        self, source: SourceConfig, now: datetime | None
    ) -> SnapshotResult | str:
        try:
            result = await self.poll_source(source, now)
        except FetchError as exc:
            logger.warning("%s", exc)
            return "failed"
        except Exception:
            logger.exception("Unexpected error polling %s", source.name)
            return "failed"
        return result if result is not None else "skipped"
