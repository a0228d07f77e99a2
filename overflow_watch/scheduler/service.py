"""MonitorService — the two timers and the startup/shutdown sequence.

Startup restores the active events from the store before the first poll.
Shutdown cancels both timers (an in-flight fetch is abandoned), then
drains the store so a write already started always lands.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable

from overflow_watch.scheduler.periodic import PeriodicTask
from overflow_watch.scheduler.publishing_cycle import CycleOutcome, PublishingCycle
from overflow_watch.scheduler.threshold_queue import ThresholdQueue
from overflow_watch.store.event_store import JsonEventStore
from overflow_watch.tracker.event_tracker import EventTracker
from overflow_watch.tracker.poller import PollSummary, SourcePoller

logger = logging.getLogger(__name__)


class MonitorService:
    def __init__(
        self,
        poller: SourcePoller,
        tracker: EventTracker,
        queue: ThresholdQueue,
        cycle: PublishingCycle,
        store: JsonEventStore,
        poll_interval_seconds: float = 60,
        publish_interval_seconds: float = 90 * 60,
        publish_on_start: bool = True,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> None:
        self.poller = poller
        self.tracker = tracker
        self.queue = queue
        self.cycle = cycle
        self.store = store
        self._closers = list(closers or [])
        self._poll_task = PeriodicTask("poll", poll_interval_seconds, self.poll_once)
        self._publish_task = PeriodicTask(
            "publish", publish_interval_seconds, self.publish_once, run_immediately=publish_on_start
        )
        self.last_poll: PollSummary | None = None
        self.started = False

    async def start(self) -> None:
        """Restore state, then start both timers.  Raises StoreFormatError on a corrupt store or ledger."""
        await self.tracker.restore()
        await self.cycle.restore()
        self._poll_task.start()
        self._publish_task.start()
        self.started = True
        logger.info(
            "Monitoring %d source(s); publishing via %s",
            len(self.poller.sources),
            self.cycle.status()["publisher"],
        )

    async def stop(self) -> None:
        await self._poll_task.stop()
        await self._publish_task.stop()
        await self.store.close()
        for close in self._closers:
            await close()
        self.started = False
        logger.info("Monitor service stopped")

    async def poll_once(self, now: datetime | None = None) -> PollSummary:
        summary = await self.poller.poll_all(now)
        self.queue.cleanup(summary.polled_at)
        self.last_poll = summary
        return summary

    async def publish_once(self, now: datetime | None = None) -> CycleOutcome:
        return await self.cycle.run_once(now)
