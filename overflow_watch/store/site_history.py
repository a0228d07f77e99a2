"""Loads the real-time → 2023 site mapping CSV into SiteHistory records."""

from __future__ import annotations

import csv
import logging
import os
from pathlib import Path
from typing import Callable, Optional, TypeVar

from pydantic import ValidationError

from overflow_watch.domain.history import SiteHistory

logger = logging.getLogger(__name__)

_T = TypeVar("_T", int, float)


def load_site_history(path: str | os.PathLike[str] | None) -> dict[str, SiteHistory]:
    """Read the mapping keyed by realtime_site_id.

    A blank path, a missing file or an unreadable file yields an empty
    mapping.  Rows that fail validation are skipped.
    """
    if not path:
        return {}
    path = Path(path)
    if not path.exists():
        logger.warning("Site history %s not found; events will carry no history", path)
        return {}

    history: dict[str, SiteHistory] = {}
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            for line, row in enumerate(csv.DictReader(f), start=2):
                try:
                    entry = _entry(row)
                except ValidationError as exc:
                    logger.warning("%s:%d skipped: %s", path.name, line, exc.errors()[0]["msg"])
                    continue
                history[entry.realtime_site_id] = entry
    except (OSError, csv.Error, UnicodeDecodeError) as exc:
        logger.warning("Cannot read site history %s: %s", path, exc)
        return {}

    logger.info("Loaded historical context for %d site(s)", len(history))
    return history


def _entry(row: dict[str, Optional[str]]) -> SiteHistory:
    has_flow = _text(row.get("has_flow_rate"), "").lower() == "yes"
    return SiteHistory(
        realtime_site_id=_text(row.get("realtime_site_id"), ""),
        historical_site_id=_text(row.get("historical_site_id")),
        confidence=_text(row.get("confidence")),
        distance_meters=_number(row.get("distance_meters"), float),
        spill_count_2023=_number(row.get("spill_count_2023"), int) or 0,
        avg_duration_per_spill_hrs=_number(row.get("avg_duration_per_spill_hrs"), float) or 0.0,
        total_duration_hrs_2023=_number(row.get("total_duration_hrs_2023"), float) or 0.0,
        estimated_flow_m3_hour=(
            _number(row.get("estimated_flow_m3_hour"), float) or None if has_flow else None
        ),
    )


def _text(value: Optional[str], default: Optional[str] = None) -> Optional[str]:
    if value is None or not value.strip():
        return default
    return value.strip()


def _number(value: Optional[str], cast: Callable[[float], _T]) -> Optional[_T]:
    text = _text(value)
    if text is None:
        return None
    try:
        return cast(float(text))
    except (ValueError, OverflowError):
        return None
