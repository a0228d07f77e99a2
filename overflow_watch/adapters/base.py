"""Abstract base for feature adapters.

Feature adapters normalise raw FeatureServer records from heterogeneous
upstream schemas into the canonical Observation model.

Architectural rules:
    1. Adapters must NOT mutate the incoming feature dict.
    2. parse() must return a fully valid Observation or raise ParseError.
    3. No adapter may touch the EventTracker or the store directly.
    4. No lifecycle logic lives inside an adapter, only field mapping.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from overflow_watch.domain.observation import Observation


class FeatureAdapter(ABC):
    """Base class for converting raw upstream features into Observations."""

    @abstractmethod
    def parse(self, raw: dict[str, Any], source_id: str) -> Observation:
        """Translate one raw feature into a validated Observation.

        The input dict must NOT be mutated.

        Raises:
            ParseError: If the feature cannot be normalised.  ``site_id`` is
                set on the error whenever the site could still be identified.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name that source configurations refer to."""
        ...
