"""Exception taxonomy for overflow-watch.

Recoverable errors (fetch, parse, persistence, publish) are caught at the
seam that owns them and logged.  Only configuration problems found at
startup are allowed to stop the process.
"""

from __future__ import annotations


class OverflowWatchError(Exception):
    """Base class for every error raised by this package."""


class FetchError(OverflowWatchError):
    """A source could not be fetched this tick (transport, HTTP or API error)."""

    def __init__(self, source_id: str, reason: str) -> None:
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"Fetch from '{source_id}' failed: {reason}")


class ParseError(OverflowWatchError):
    """A single raw feature could not be normalised into an Observation."""

    def __init__(self, reason: str, site_id: str | None = None) -> None:
        self.reason = reason
        self.site_id = site_id
        super().__init__(reason if site_id is None else f"site {site_id}: {reason}")


class NoAdapterFoundError(OverflowWatchError):
    """Raised when a source names an adapter that is not registered."""


class PersistenceError(OverflowWatchError):
    """The event store could not be written.  Tracking continues in memory."""


class StoreFormatError(OverflowWatchError):
    """The persisted store is unreadable.  Fatal at startup."""


class PublishError(OverflowWatchError):
    """A publish batch failed; every entry stays undispatched."""


class EventLifecycleError(OverflowWatchError):
    """An illegal transition was attempted on a DischargeEvent."""
