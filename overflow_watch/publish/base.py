"""Cycle publisher contract.

A publisher receives one ordered batch per publishing cycle and either
succeeds or raises PublishError.  Publishers must tolerate receiving the
same events again: a batch whose outcome was ambiguous is retried.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from overflow_watch.domain.errors import PublishError
from overflow_watch.domain.event import DischargeEvent

logger = logging.getLogger(__name__)


class PublishBatch(BaseModel):
    """The events of one publishing cycle, most recently ended first."""

    cycle_id: str
    created_at: datetime
    events: list[DischargeEvent] = Field(..., min_length=1)

    @property
    def event_ids(self) -> list[str]:
        return [e.event_id for e in self.events]


class CyclePublisher(ABC):
    """Base class for publishing collaborators."""

    @abstractmethod
    async def publish(self, batch: PublishBatch) -> None:
        """Publish the batch.

        Raises:
            PublishError: If the batch was not (or not certainly) published.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...


class CompositePublisher(CyclePublisher):
    """Runs publishers in order; the first failure fails the whole batch."""

    def __init__(self, publishers: list[CyclePublisher]) -> None:
        if not publishers:
            raise ValueError("CompositePublisher needs at least one publisher")
        self._publishers = list(publishers)

    @property
    def name(self) -> str:
        return "+".join(p.name for p in self._publishers)

    async def publish(self, batch: PublishBatch) -> None:
        for publisher in self._publishers:
            try:
                await publisher.publish(batch)
            except PublishError:
                raise
            except Exception as exc:
                raise PublishError(f"{publisher.name} failed: {exc}") from exc
            logger.info("Cycle %s published via %s", batch.cycle_id, publisher.name)
