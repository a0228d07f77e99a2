"""Publishing cycle — moves queued events to the publisher, all or nothing.

A batch is only marked dispatched after the publisher returns; any failure
leaves every event in it undispatched so the next cycle retries the lot.
The retry reuses the failed cycle_id while every event of the failed batch
is still postable, so publishers that already succeeded overwrite their own
output instead of emitting a second cycle.  When a PublishLedger is given,
the daily count survives restarts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from overflow_watch.domain.errors import PersistenceError, PublishError
from overflow_watch.foundation.clock import ensure_utc, utc_now
from overflow_watch.foundation.identifiers import cycle_id as make_cycle_id
from overflow_watch.publish.base import CyclePublisher, PublishBatch
from overflow_watch.scheduler.threshold_queue import ThresholdQueue
from overflow_watch.store.publish_ledger import PublishLedger

logger = logging.getLogger(__name__)


class CycleStatus(str, Enum):
    PUBLISHED = "published"
    EMPTY = "empty"
    DAILY_LIMIT = "daily_limit"
    FAILED = "failed"


@dataclass
class CycleOutcome:
    status: CycleStatus
    cycle_id: str | None = None
    event_ids: list[str] = field(default_factory=list)
    error: str | None = None


class PublishingCycle:
    """Reads the queue on each tick and hands the batch to the publisher.

    Args:
        queue: The ThresholdQueue to drain.
        publisher: Collaborator that publishes a batch or raises.
        max_publishes_per_day: Successful publishes allowed per UTC day.
        ledger: Optional durable record of the daily count.
    """

    def __init__(
        self,
        queue: ThresholdQueue,
        publisher: CyclePublisher,
        max_publishes_per_day: int = 16,
        ledger: PublishLedger | None = None,
    ) -> None:
        self._queue = queue
        self._publisher = publisher
        self._max_per_day = max_publishes_per_day
        self._publishes_today = 0
        self._counter_date: date | None = None
        self._last_outcome: CycleOutcome | None = None
        self._ledger = ledger
        self._failed: tuple[str, datetime, frozenset[str]] | None = None

    @property
    def publishes_today(self) -> int:
        return self._publishes_today

    @property
    def last_outcome(self) -> CycleOutcome | None:
        return self._last_outcome

    async def restore(self, now: datetime | None = None) -> int:
        """Load today's publish count from the ledger.  Returns it.

        Raises:
            StoreFormatError: If the ledger file is unreadable.
        """
        await self._reset_daily_counter(self._normalise(now))
        return self._publishes_today

    async def run_once(self, now: datetime | None = None) -> CycleOutcome:
        now = self._normalise(now)
        await self._reset_daily_counter(now)
        self._queue.cleanup(now)
        outcome = await self._run(now)
        self._last_outcome = outcome
        return outcome

    async def _run(self, now: datetime) -> CycleOutcome:
        if self._publishes_today >= self._max_per_day:
            logger.info(
                "Daily publish limit reached (%d/%d); skipping cycle",
                self._publishes_today,
                self._max_per_day,
            )
            return CycleOutcome(CycleStatus.DAILY_LIMIT)

        events = self._queue.get_postable()
        if not events:
            logger.info("No postable events in queue")
            return CycleOutcome(CycleStatus.EMPTY)

        batch = self._build_batch(events, now)
        logger.info(
            "Cycle %s: publishing %d event(s) (%d/%d today)",
            batch.cycle_id,
            len(events),
            self._publishes_today + 1,
            self._max_per_day,
        )
        try:
            await self._publisher.publish(batch)
        except PublishError as exc:
            logger.error("Cycle %s failed, batch stays queued: %s", batch.cycle_id, exc)
            return self._failed_outcome(batch, exc)
        except Exception as exc:
            logger.error(
                "Cycle %s failed unexpectedly, batch stays queued: %s",
                batch.cycle_id,
                exc,
                exc_info=True,
            )
            return self._failed_outcome(batch, exc)

        self._failed = None
        for event_id in batch.event_ids:
            self._queue.mark_dispatched(event_id)
        self._publishes_today += 1
        await self._record_publish(now)
        return CycleOutcome(CycleStatus.PUBLISHED, batch.cycle_id, batch.event_ids)

    def _build_batch(self, events: list, now: datetime) -> PublishBatch:
        ids = frozenset(e.event_id for e in events)
        if self._failed is not None:
            failed_id, failed_at, failed_ids = self._failed
            if failed_ids <= ids:
                logger.info("Retrying cycle %s", failed_id)
                return PublishBatch(cycle_id=failed_id, created_at=failed_at, events=events)
            logger.info("Cycle %s no longer matches the queue; starting a new cycle", failed_id)
            self._failed = None
        return PublishBatch(cycle_id=make_cycle_id(now), created_at=now, events=events)

    def _failed_outcome(self, batch: PublishBatch, exc: Exception) -> CycleOutcome:
        self._failed = (batch.cycle_id, batch.created_at, frozenset(batch.event_ids))
        return CycleOutcome(CycleStatus.FAILED, batch.cycle_id, batch.event_ids, str(exc))

    async def _record_publish(self, now: datetime) -> None:
        if self._ledger is None:
            return
        try:
            await self._ledger.record(now.date(), self._publishes_today)
        except PersistenceError as exc:
            logger.warning("Publish ledger write failed; daily cap may reset on restart: %s", exc)

    async def _reset_daily_counter(self, now: datetime) -> None:
        today = now.date()
        if self._counter_date != today:
            if self._counter_date is not None:
                logger.info("New day: publish counter reset")
            self._publishes_today = await self._ledger.count_for(today) if self._ledger else 0
            self._counter_date = today

    @staticmethod
    def _normalise(now: datetime | None) -> datetime:
        return ensure_utc(now) if now is not None else utc_now()

    def status(self) -> dict:
        last = self._last_outcome
        return {
            "publisher": self._publisher.name,
            "publishes_today": self._publishes_today,
            "max_publishes_per_day": self._max_per_day,
            "last_cycle": None
            if last is None
            else {"status": last.status.value, "cycle_id": last.cycle_id, "events": len(last.event_ids)},
        }
