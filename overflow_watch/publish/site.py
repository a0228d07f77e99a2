"""SiteCyclePublisher — cycle data files for the static website.

Each cycle writes ``cycles/<cycle_id>.json`` and prepends it to
``cycles/manifest.json`` (newest first, bounded).  The site's own pages
render these files; committing and pushing them is left to deployment.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from overflow_watch.domain.errors import PublishError
from overflow_watch.domain.event import DischargeEvent
from overflow_watch.foundation.atomic import atomic_write_text
from overflow_watch.foundation.clock import utc_now
from overflow_watch.foundation.durations import format_duration
from overflow_watch.publish.base import CyclePublisher, PublishBatch
from overflow_watch.publish.summary import Summarizer, TemplateSummarizer

logger = logging.getLogger(__name__)

MANIFEST_LIMIT = 100


def cycle_url(base_url: str, cycle_id: str) -> str | None:
    """Public page of a cycle, or None when no site URL is configured."""
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/cycles/{cycle_id}.html"


def event_view(event: DischargeEvent) -> dict[str, Any]:
    view: dict[str, Any] = {
        "id": event.event_id,
        "company": event.source_name or event.source_id,
        "siteId": event.site_id,
        "siteName": event.site_name or event.site_id,
        "watercourse": event.watercourse,
        "latitude": event.coordinates.latitude if event.coordinates else None,
        "longitude": event.coordinates.longitude if event.coordinates else None,
        "startTime": event.start_time.isoformat(),
        "endTime": event.end_time.isoformat() if event.end_time else None,
        "durationMinutes": event.duration_minutes,
        "durationFormatted": format_duration(event.duration_minutes),
        "startTimeEstimated": event.start_time_estimated,
    }
    if event.coordinates:
        view["mapsLink"] = event.coordinates.maps_link()
    if event.history is not None:
        history = event.history
        view["history"] = {
            "historicalSiteId": history.historical_site_id,
            "matchConfidence": history.confidence,
            "spills2023": history.spill_count_2023,
            "avgSpillHours2023": history.avg_duration_per_spill_hrs,
            "totalSpillHours2023": history.total_duration_hrs_2023,
        }
        ratio = history.duration_vs_average(event.duration_minutes)
        view["history"]["durationVsAverage"] = None if ratio is None else round(ratio, 2)
        view["estimatedVolumeLitres"] = event.estimated_volume_litres()
    return view


class SiteCyclePublisher(CyclePublisher):
    def __init__(
        self,
        site_dir: str | os.PathLike[str],
        summarizer: Summarizer | None = None,
        manifest_limit: int = MANIFEST_LIMIT,
    ) -> None:
        self._cycles_dir = Path(site_dir) / "cycles"
        self._summarizer = summarizer or TemplateSummarizer()
        self._manifest_limit = manifest_limit

    @property
    def name(self) -> str:
        return "site"

    @property
    def cycles_dir(self) -> Path:
        return self._cycles_dir

    async def publish(self, batch: PublishBatch) -> None:
        summary = await self._summarizer.summarize(batch.events)
        document = {
            "id": batch.cycle_id,
            "timestamp": batch.created_at.isoformat(),
            "eventCount": len(batch.events),
            "summary": summary,
            "events": [event_view(e) for e in batch.events],
        }
        try:
            await asyncio.to_thread(self._write_cycle, batch.cycle_id, document)
        except OSError as exc:
            raise PublishError(f"cannot write cycle {batch.cycle_id}: {exc}") from exc
        logger.info("Wrote cycle %s (%d events)", batch.cycle_id, len(batch.events))

    def _write_cycle(self, cycle_id: str, document: dict[str, Any]) -> None:
        self._cycles_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{cycle_id}.json"
        _atomic_write_json(self._cycles_dir / filename, document)

        manifest_path = self._cycles_dir / "manifest.json"
        manifest: dict[str, Any] = {"cycles": []}
        if manifest_path.exists():
            try:
                manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            except ValueError:
                logger.warning("Rebuilding unreadable manifest %s", manifest_path)
                manifest = {"cycles": []}
        cycles = [c for c in manifest.get("cycles", []) if c != filename]
        cycles.insert(0, filename)
        manifest["cycles"] = cycles[: self._manifest_limit]
        manifest["lastUpdated"] = utc_now().isoformat()
        _atomic_write_json(manifest_path, manifest)


def _atomic_write_json(path: Path, document: dict[str, Any]) -> None:
    atomic_write_text(path, json.dumps(document, indent=2))
