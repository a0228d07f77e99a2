"""StormOverflowHubAdapter — the Water UK National Storm Overflow Hub schema.

Expected raw format (Esri JSON feature, dates in epoch milliseconds):
{
    "attributes": {
        "Id": "CSO0042",
        "Status": 1,                      # 1 discharging, 0 not, -1 offline
        "StatusStart": 1767225600000,
        "LatestEventStart": 1767225600000,
        "LatestEventEnd": null,
        "ReceivingWaterCourse": "River Thames",
        "Latitude": 51.5,
        "Longitude": -0.12,
        "SiteName": "Mogden STW"
    },
    "geometry": {"x": -0.12, "y": 51.5}
}

GeoJSON features (``properties`` + Point ``geometry``) carry the same
attribute names and are accepted too.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from overflow_watch.adapters.base import FeatureAdapter
from overflow_watch.domain.enums import MonitorStatus
from overflow_watch.domain.errors import ParseError
from overflow_watch.domain.observation import Coordinates, Observation
from overflow_watch.foundation.clock import ensure_utc, from_epoch_millis

logger = logging.getLogger(__name__)

# Companies disagree on which descriptive field holds the site name.
_SITE_NAME_FIELDS = ("SiteName", "PermitName", "LocationName", "Name")


class StormOverflowHubAdapter(FeatureAdapter):
    """Maps Storm Overflow Hub features to canonical Observations."""

    @property
    def name(self) -> str:
        return "storm_overflow_hub"

    def parse(self, raw: dict[str, Any], source_id: str) -> Observation:
        attrs, geometry = _split_feature(raw)

        # ── Required fields ──────────────────────────────────────────────
        site_id = attrs.get("Id")
        if site_id is None or str(site_id).strip() == "":
            raise ParseError("feature missing 'Id'")
        site_id = str(site_id).strip()

        status = _parse_status(attrs.get("Status"), site_id)
        discharging = status == MonitorStatus.DISCHARGING

        # ── Timestamps ───────────────────────────────────────────────────
        changed_at = _parse_timestamp(attrs.get("StatusStart"), "StatusStart", site_id)
        if changed_at is None and discharging:
            changed_at = _parse_timestamp(
                attrs.get("LatestEventStart"), "LatestEventStart", site_id
            )

        try:
            return Observation(
                source_id=source_id,
                site_id=site_id,
                is_discharging=discharging,
                status_changed_at=changed_at,
                watercourse=_clean_text(attrs.get("ReceivingWaterCourse")),
                site_name=_first_text(attrs, _SITE_NAME_FIELDS),
                coordinates=_parse_coordinates(attrs, geometry),
                raw_status=status.value,
                attributes=dict(attrs),
            )
        except ValidationError as exc:
            raise ParseError(f"invalid observation: {exc.errors()[0]['msg']}", site_id) from exc


# ── Field helpers ────────────────────────────────────────────────────────────


def _split_feature(raw: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    if not isinstance(raw, dict):
        raise ParseError(f"feature is {type(raw).__name__}, expected object")
    attrs = raw.get("attributes")
    if attrs is None:
        attrs = raw.get("properties")
    if not isinstance(attrs, dict):
        raise ParseError("feature has neither 'attributes' nor 'properties'")
    geometry = raw.get("geometry")
    return attrs, geometry if isinstance(geometry, dict) else {}


def _parse_status(value: Any, site_id: str) -> MonitorStatus:
    if value is None:
        raise ParseError("feature missing 'Status'", site_id)
    try:
        return MonitorStatus(int(value))
    except (TypeError, ValueError):
        raise ParseError(f"unrecognised Status {value!r}", site_id) from None


def _parse_timestamp(value: Any, field: str, site_id: str) -> Optional[datetime]:
    """Feed date as UTC, or None when absent or unreadable.

    A bad date never rejects the feature: Status alone decides whether the
    site is discharging, and the tracker estimates a missing start.
    """
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return from_epoch_millis(value)
        if isinstance(value, str):
            text = value.strip()
            if text.lstrip("-").isdigit():
                return from_epoch_millis(int(text))
            return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except (OverflowError, OSError, ValueError):
        pass
    logger.warning("site %s: ignoring unparseable %s %r", site_id, field, value)
    return None


def _parse_coordinates(attrs: dict[str, Any], geometry: dict[str, Any]) -> Optional[Coordinates]:
    lat, lon = attrs.get("Latitude"), attrs.get("Longitude")
    if lat is None or lon is None:
        if "coordinates" in geometry:
            point = geometry.get("coordinates")
            if isinstance(point, (list, tuple)) and len(point) >= 2:
                lon, lat = point[0], point[1]
            else:
                lon, lat = None, None
        else:
            lon, lat = geometry.get("x"), geometry.get("y")
    if lat is None or lon is None:
        return None
    try:
        return Coordinates(latitude=float(lat), longitude=float(lon))
    except (TypeError, ValueError):
        # Out-of-range point: keep the observation, drop the location.
        return None


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_text(attrs: dict[str, Any], fields: tuple[str, ...]) -> Optional[str]:
    for field in fields:
        text = _clean_text(attrs.get(field))
        if text:
            return text
    return None
