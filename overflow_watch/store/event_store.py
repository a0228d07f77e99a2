"""JSON-file event store: durable record of every discharge event.

Design notes:
    - One record per ``store_key`` (event_id + start_time); records are
      overwritten in place and never deleted, so the document only grows.
    - Every write serialises the full document and atomically replaces the
      file (temp file + os.replace) from a worker thread.
    - An asyncio.Lock orders writers; a sequence number guarantees an older
      snapshot can never replace a newer one on disk.
    - Writes are shielded from cancellation and close() waits for the ones
      still in flight, so shutdown never leaves a half-written file.
    - A file that exists but cannot be read back is a StoreFormatError: the
      service must not start on top of corrupt state.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from overflow_watch.domain.enums import EventStatus
from overflow_watch.domain.errors import PersistenceError, StoreFormatError
from overflow_watch.domain.event import DischargeEvent
from overflow_watch.foundation.atomic import atomic_write_text
from overflow_watch.foundation.clock import utc_now
from overflow_watch.foundation.identifiers import store_key

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class JsonEventStore:
    """Async-safe, file-backed store of DischargeEvents keyed by store_key."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._records: dict[str, DischargeEvent] = {}
        self._loaded = False
        self._seq = 0
        self._written_seq = 0
        self._file_lock = threading.Lock()
        self._pending: set[asyncio.Future] = set()

    @property
    def path(self) -> Path:
        return self._path

    # ── Loading ──────────────────────────────────────────────────────────

    async def load_all(self) -> list[DischargeEvent]:
        """Return every persisted event, reading the file on first use.

        Raises:
            StoreFormatError: If the file exists but is not a valid store.
        """
        async with self._lock:
            await self._ensure_loaded()
            return [e.model_copy(deep=True) for e in self._records.values()]

    async def _ensure_loaded(self) -> None:
        """Must be called while holding self._lock."""
        if self._loaded:
            return
        self._records = await asyncio.to_thread(self._read_file)
        self._loaded = True
        logger.info("Loaded %d event record(s) from %s", len(self._records), self._path)

    def _read_file(self) -> dict[str, DischargeEvent]:
        if not self._path.exists():
            return {}
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreFormatError(f"cannot read event store {self._path}: {exc}") from exc

        if not isinstance(document, dict) or not isinstance(document.get("events"), dict):
            raise StoreFormatError(f"{self._path} is not an event store document")
        if document.get("version") != FORMAT_VERSION:
            raise StoreFormatError(
                f"{self._path} has store version {document.get('version')!r}, "
                f"expected {FORMAT_VERSION}"
            )

        records: dict[str, DischargeEvent] = {}
        for key, raw in document["events"].items():
            try:
                event = DischargeEvent.model_validate(raw)
            except ValidationError as exc:
                raise StoreFormatError(f"record {key!r} in {self._path} is invalid: {exc}") from exc
            records[event.store_key] = event
        return records

    # ── Writing ──────────────────────────────────────────────────────────

    async def upsert(self, event: DischargeEvent) -> None:
        """Insert or overwrite one event record and persist the store."""
        await self.upsert_many([event])

    async def upsert_many(self, events: Iterable[DischargeEvent]) -> None:
        """Insert or overwrite several records with a single file write.

        Raises:
            PersistenceError: If the file could not be written.  The in-memory
                records are updated regardless.
        """
        async with self._lock:
            await self._ensure_loaded()
            changed = 0
            for event in events:
                self._records[event.store_key] = event.model_copy(deep=True)
                changed += 1
            if not changed:
                return
            self._seq += 1
            payload = self._serialise()
            write = asyncio.ensure_future(asyncio.to_thread(self._write_file, self._seq, payload))
            self._pending.add(write)
            write.add_done_callback(self._pending.discard)
            try:
                await asyncio.shield(write)
            except OSError as exc:
                raise PersistenceError(f"cannot write event store {self._path}: {exc}") from exc

    def _serialise(self) -> str:
        """Must be called while holding self._lock."""
        document: dict[str, Any] = {
            "version": FORMAT_VERSION,
            "saved_at": utc_now().isoformat(),
            "events": {
                key: event.model_dump(mode="json") for key, event in self._records.items()
            },
        }
        return json.dumps(document, indent=2)

    def _write_file(self, seq: int, payload: str) -> None:
        with self._file_lock:
            if seq <= self._written_seq:
                return
            atomic_write_text(self._path, payload)
            self._written_seq = seq

    async def close(self) -> None:
        """Wait for every in-flight write to land on disk."""
        if self._pending:
            logger.info("Draining %d pending store write(s)", len(self._pending))
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Queries ──────────────────────────────────────────────────────────

    async def get_event(
        self, source_id: str, site_id: str, start_time: datetime
    ) -> DischargeEvent | None:
        async with self._lock:
            await self._ensure_loaded()
            event = self._records.get(store_key(source_id, site_id, start_time))
            return event.model_copy(deep=True) if event else None

    async def recently_completed(
        self, hours: float = 24, now: datetime | None = None
    ) -> list[DischargeEvent]:
        """Completed events that ended within the last *hours*, newest first."""
        cutoff = (now or utc_now()) - timedelta(hours=hours)
        async with self._lock:
            await self._ensure_loaded()
            events = [
                e.model_copy(deep=True)
                for e in self._records.values()
                if e.status is EventStatus.COMPLETED and e.end_time and e.end_time > cutoff
            ]
        events.sort(key=lambda e: e.end_time, reverse=True)
        return events

    async def count(self) -> int:
        async with self._lock:
            await self._ensure_loaded()
            return len(self._records)
