"""Adapter Registry — resolves feature adapters by name.

Each SourceConfig names the adapter that understands its layer schema.
The registry looks the adapter up, routes raw features through it, and
keeps per-adapter acceptance statistics.

No heuristics.  No guessing.  Fail fast if a source names an unknown adapter.
"""

from __future__ import annotations

import logging
from typing import Any

from overflow_watch.adapters.base import FeatureAdapter
from overflow_watch.domain.errors import NoAdapterFoundError, ParseError
from overflow_watch.domain.observation import Observation
from overflow_watch.domain.sources import SourceConfig

logger = logging.getLogger(__name__)


class AdapterStats:
    """Per-adapter parsing statistics for observability."""

    __slots__ = ("adapter_name", "accepted_count", "rejected_count", "last_rejection")

    def __init__(self, adapter_name: str) -> None:
        self.adapter_name = adapter_name
        self.accepted_count: int = 0
        self.rejected_count: int = 0
        self.last_rejection: str | None = None

    def to_dict(self) -> dict:
        return {
            "adapter_name": self.adapter_name,
            "accepted_count": self.accepted_count,
            "rejected_count": self.rejected_count,
            "last_rejection": self.last_rejection,
        }


class AdapterRegistry:
    """Registry of feature adapters with lookup and stats tracking.

    Usage:
        registry = AdapterRegistry()
        registry.register(StormOverflowHubAdapter())

        observation = registry.parse(source, raw_feature)
    """

    def __init__(self) -> None:
        self._adapters: dict[str, FeatureAdapter] = {}
        self._stats: dict[str, AdapterStats] = {}

    def register(self, adapter: FeatureAdapter) -> None:
        """Add an adapter to the registry.  Re-registering a name replaces it."""
        self._adapters[adapter.name] = adapter
        self._stats.setdefault(adapter.name, AdapterStats(adapter.name))
        logger.info("Registered adapter: %s", adapter.name)

    def get(self, name: str) -> FeatureAdapter:
        try:
            return self._adapters[name]
        except KeyError:
            raise NoAdapterFoundError(
                f"No adapter named '{name}' (registered: {sorted(self._adapters)})"
            ) from None

    def validate_sources(self, sources: list[SourceConfig]) -> None:
        """Raise NoAdapterFoundError if any source names an unknown adapter."""
        for source in sources:
            self.get(source.adapter)

    def parse(self, source: SourceConfig, raw: dict[str, Any]) -> Observation:
        """Route one raw feature through the source's adapter.

        Raises:
            NoAdapterFoundError: If the source's adapter is not registered.
            ParseError: If the adapter rejects the feature.
        """
        adapter = self.get(source.adapter)
        stats = self._stats[adapter.name]
        try:
            observation = adapter.parse(raw, source.source_id)
        except ParseError as exc:
            stats.rejected_count += 1
            stats.last_rejection = f"{source.source_id}: {exc}"
            raise
        stats.accepted_count += 1
        return observation

    @property
    def adapter_names(self) -> list[str]:
        """List of registered adapter names in registration order."""
        return list(self._adapters)

    @property
    def stats(self) -> list[dict]:
        """Per-adapter stats for observability endpoints."""
        return [s.to_dict() for s in self._stats.values()]

    @property
    def total_accepted(self) -> int:
        return sum(s.accepted_count for s in self._stats.values())

    @property
    def total_rejected(self) -> int:
        return sum(s.rejected_count for s in self._stats.values())
