"""Publish ledger — successful publishes per UTC day, kept across restarts.

Each successful cycle writes its day's count before the cycle returns.
Only the most recent days are kept.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import date
from pathlib import Path

from overflow_watch.domain.errors import PersistenceError, StoreFormatError
from overflow_watch.foundation.atomic import atomic_write_text
from overflow_watch.foundation.clock import utc_now

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
KEEP_DAYS = 30


class PublishLedger:
    """JSON file mapping ISO date → number of successful publishes."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._days: dict[str, int] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    async def count_for(self, day: date) -> int:
        """Publishes recorded for *day*.

        Raises:
            StoreFormatError: If the ledger file exists but is unreadable.
        """
        async with self._lock:
            await self._ensure_loaded()
            return self._days.get(day.isoformat(), 0)

    async def record(self, day: date, count: int) -> None:
        """Set *day*'s count and persist.

        Raises:
            PersistenceError: If the file could not be written.
        """
        async with self._lock:
            await self._ensure_loaded()
            self._days[day.isoformat()] = count
            for stale in sorted(self._days)[:-KEEP_DAYS]:
                del self._days[stale]
            document = {
                "version": FORMAT_VERSION,
                "saved_at": utc_now().isoformat(),
                "days": dict(sorted(self._days.items())),
            }
            try:
                await asyncio.to_thread(
                    atomic_write_text, self._path, json.dumps(document, indent=2)
                )
            except OSError as exc:
                raise PersistenceError(f"cannot write publish ledger {self._path}: {exc}") from exc

    async def _ensure_loaded(self) -> None:
        """Must be called while holding self._lock."""
        if self._loaded:
            return
        self._days = await asyncio.to_thread(self._read_file)
        self._loaded = True

    def _read_file(self) -> dict[str, int]:
        if not self._path.exists():
            return {}
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreFormatError(f"cannot read publish ledger {self._path}: {exc}") from exc
        if (
            not isinstance(document, dict)
            or document.get("version") != FORMAT_VERSION
            or not isinstance(document.get("days"), dict)
        ):
            raise StoreFormatError(f"{self._path} is not a version {FORMAT_VERSION} publish ledger")
        days: dict[str, int] = {}
        for key, value in document["days"].items():
            if not isinstance(value, int) or value < 0:
                raise StoreFormatError(f"bad count {value!r} for {key} in {self._path}")
            days[key] = value
        return days
