"""Tests for the PublishingCycle and the periodic timer."""

import asyncio
import json
from datetime import timedelta
from pathlib import Path

import pytest

from overflow_watch.domain.errors import PersistenceError, PublishError, StoreFormatError
from overflow_watch.publish.base import CompositePublisher, CyclePublisher, PublishBatch
from overflow_watch.publish.site import SiteCyclePublisher
from overflow_watch.scheduler.periodic import PeriodicTask
from overflow_watch.scheduler.publishing_cycle import CycleStatus, PublishingCycle
from overflow_watch.scheduler.threshold_queue import ThresholdQueue
from overflow_watch.store.publish_ledger import PublishLedger

from tests.test_models import _BASE, _completed_event


class _Publisher(CyclePublisher):
    def __init__(self, fail_with: Exception | None = None, label: str = "fake") -> None:
        self.fail_with = fail_with
        self.label = label
        self.batches: list[PublishBatch] = []

    @property
    def name(self) -> str:
        return self.label

    async def publish(self, batch: PublishBatch) -> None:
        self.batches.append(batch)
        if self.fail_with is not None:
            raise self.fail_with


def _queue_with(*site_ids: str, minutes: int = 700) -> ThresholdQueue:
    queue = ThresholdQueue(min_duration_minutes=600)
    for offset, site in enumerate(site_ids):
        queue.add_event(_completed_event(site_id=site, minutes=minutes + offset), _BASE)
    return queue


_NOW = _BASE + timedelta(hours=13)


class TestPublishingCycle:
    @pytest.mark.asyncio
    async def test_batch_is_published_and_dispatched(self) -> None:
        queue = _queue_with("A", "B", "C")
        publisher = _Publisher()
        cycle = PublishingCycle(queue, publisher)

        outcome = await cycle.run_once(_NOW)

        assert outcome.status is CycleStatus.PUBLISHED
        assert outcome.cycle_id == "2026-01-02_01-00-00"
        [batch] = publisher.batches
        assert [e.site_id for e in batch.events] == ["C", "B", "A"]
        assert queue.get_postable() == []
        assert cycle.publishes_today == 1

    @pytest.mark.asyncio
    async def test_dispatched_events_are_not_republished(self) -> None:
        queue = _queue_with("A")
        publisher = _Publisher()
        cycle = PublishingCycle(queue, publisher)
        await cycle.run_once(_NOW)
        outcome = await cycle.run_once(_NOW + timedelta(minutes=90))
        assert outcome.status is CycleStatus.EMPTY
        assert len(publisher.batches) == 1

    @pytest.mark.asyncio
    async def test_empty_queue_is_a_no_op(self) -> None:
        publisher = _Publisher()
        cycle = PublishingCycle(ThresholdQueue(), publisher)
        outcome = await cycle.run_once(_NOW)
        assert outcome.status is CycleStatus.EMPTY
        assert publisher.batches == []
        assert cycle.publishes_today == 0

    @pytest.mark.asyncio
    async def test_publish_error_leaves_batch_queued(self) -> None:
        queue = _queue_with("A", "B")
        cycle = PublishingCycle(queue, _Publisher(PublishError("site down")))

        outcome = await cycle.run_once(_NOW)

        assert outcome.status is CycleStatus.FAILED
        assert outcome.error == "site down"
        assert len(queue.get_postable()) == 2
        assert cycle.publishes_today == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_leaves_batch_queued(self) -> None:
        queue = _queue_with("A")
        cycle = PublishingCycle(queue, _Publisher(RuntimeError("bug")))
        outcome = await cycle.run_once(_NOW)
        assert outcome.status is CycleStatus.FAILED
        assert len(queue.get_postable()) == 1

    @pytest.mark.asyncio
    async def test_failed_batch_is_retried_next_cycle(self) -> None:
        queue = _queue_with("A")
        publisher = _Publisher(PublishError("flaky"))
        cycle = PublishingCycle(queue, publisher)
        await cycle.run_once(_NOW)
        publisher.fail_with = None
        outcome = await cycle.run_once(_NOW + timedelta(minutes=90))
        assert outcome.status is CycleStatus.PUBLISHED
        assert publisher.batches[0].event_ids == publisher.batches[1].event_ids

    @pytest.mark.asyncio
    async def test_retry_reuses_cycle_id(self) -> None:
        queue = _queue_with("A")
        publisher = _Publisher(PublishError("flaky"))
        cycle = PublishingCycle(queue, publisher)
        failed = await cycle.run_once(_NOW)
        publisher.fail_with = None
        retried = await cycle.run_once(_NOW + timedelta(minutes=90))
        assert retried.cycle_id == failed.cycle_id
        assert publisher.batches[1].created_at == publisher.batches[0].created_at

    @pytest.mark.asyncio
    async def test_retry_with_new_events_keeps_cycle_id(self) -> None:
        queue = _queue_with("A")
        publisher = _Publisher(PublishError("flaky"))
        cycle = PublishingCycle(queue, publisher)
        failed = await cycle.run_once(_NOW)
        queue.add_event(_completed_event(site_id="B"), _BASE)
        publisher.fail_with = None
        retried = await cycle.run_once(_NOW + timedelta(minutes=90))
        assert retried.cycle_id == failed.cycle_id
        assert len(retried.event_ids) == 2

    @pytest.mark.asyncio
    async def test_new_cycle_id_once_failed_batch_is_gone(self) -> None:
        queue = _queue_with("A")
        publisher = _Publisher(PublishError("flaky"))
        cycle = PublishingCycle(queue, publisher)
        failed = await cycle.run_once(_NOW)
        later = _BASE + timedelta(days=7)
        queue.add_event(_completed_event(site_id="B", start=later), later)
        publisher.fail_with = None
        outcome = await cycle.run_once(_BASE + timedelta(days=8))
        assert outcome.status is CycleStatus.PUBLISHED
        assert outcome.cycle_id != failed.cycle_id

    @pytest.mark.asyncio
    async def test_partial_failure_retry_writes_one_cycle_file(self, tmp_path: Path) -> None:
        site = SiteCyclePublisher(tmp_path)
        social = _Publisher(PublishError("x down"), "x")
        cycle = PublishingCycle(_queue_with("A", "B"), CompositePublisher([site, social]))

        failed = await cycle.run_once(_NOW)
        assert failed.status is CycleStatus.FAILED
        social.fail_with = None
        retried = await cycle.run_once(_NOW + timedelta(minutes=90))

        assert retried.status is CycleStatus.PUBLISHED
        files = sorted(p.name for p in site.cycles_dir.glob("*.json"))
        assert files == [f"{failed.cycle_id}.json", "manifest.json"]
        manifest = json.loads((site.cycles_dir / "manifest.json").read_text())
        assert manifest["cycles"] == [f"{failed.cycle_id}.json"]
        assert [b.cycle_id for b in social.batches] == [failed.cycle_id, failed.cycle_id]

    @pytest.mark.asyncio
    async def test_daily_limit(self) -> None:
        queue = ThresholdQueue(min_duration_minutes=600)
        publisher = _Publisher()
        cycle = PublishingCycle(queue, publisher, max_publishes_per_day=2)
        for i in range(3):
            queue.add_event(_completed_event(site_id=f"S{i}"), _BASE)
            outcome = await cycle.run_once(_NOW + timedelta(minutes=i))
        assert outcome.status is CycleStatus.DAILY_LIMIT
        assert len(publisher.batches) == 2
        assert len(queue.get_postable()) == 1

    @pytest.mark.asyncio
    async def test_daily_limit_resets_on_new_utc_day(self) -> None:
        queue = _queue_with("A")
        cycle = PublishingCycle(queue, _Publisher(), max_publishes_per_day=1)
        await cycle.run_once(_NOW)
        queue.add_event(_completed_event(site_id="B"), _BASE)
        blocked = await cycle.run_once(_NOW + timedelta(hours=1))
        assert blocked.status is CycleStatus.DAILY_LIMIT
        next_day = await cycle.run_once(_NOW + timedelta(days=1))
        assert next_day.status is CycleStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_cycle_evicts_expired_entries(self) -> None:
        queue = _queue_with("A")
        cycle = PublishingCycle(queue, _Publisher())
        outcome = await cycle.run_once(_BASE + timedelta(days=30))
        assert outcome.status is CycleStatus.EMPTY
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_status(self) -> None:
        cycle = PublishingCycle(_queue_with("A"), _Publisher())
        await cycle.run_once(_NOW)
        status = cycle.status()
        assert status["publisher"] == "fake"
        assert status["last_cycle"]["status"] == "published"

    @pytest.mark.asyncio
    async def test_daily_limit_survives_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.json"
        first = PublishingCycle(
            _queue_with("A"), _Publisher(), max_publishes_per_day=1, ledger=PublishLedger(path)
        )
        assert (await first.run_once(_NOW)).status is CycleStatus.PUBLISHED

        restarted = PublishingCycle(
            _queue_with("B"), _Publisher(), max_publishes_per_day=1, ledger=PublishLedger(path)
        )
        assert await restarted.restore(_NOW) == 1
        outcome = await restarted.run_once(_NOW + timedelta(minutes=90))
        assert outcome.status is CycleStatus.DAILY_LIMIT

        tomorrow = await restarted.run_once(_NOW + timedelta(days=1))
        assert tomorrow.status is CycleStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_ledger_write_failure_keeps_the_publish(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        queue = _queue_with("A")
        cycle = PublishingCycle(queue, _Publisher(), ledger=PublishLedger(blocker / "ledger.json"))
        outcome = await cycle.run_once(_NOW)
        assert outcome.status is CycleStatus.PUBLISHED
        assert cycle.publishes_today == 1
        assert queue.get_postable() == []


class TestPublishLedger:
    @pytest.mark.asyncio
    async def test_missing_file_counts_zero(self, tmp_path: Path) -> None:
        ledger = PublishLedger(tmp_path / "ledger.json")
        assert await ledger.count_for(_NOW.date()) == 0

    @pytest.mark.asyncio
    async def test_record_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.json"
        await PublishLedger(path).record(_NOW.date(), 3)
        document = json.loads(path.read_text())
        assert document["version"] == 1
        assert document["days"] == {"2026-01-02": 3}
        assert await PublishLedger(path).count_for(_NOW.date()) == 3

    @pytest.mark.asyncio
    async def test_old_days_are_pruned(self, tmp_path: Path) -> None:
        ledger = PublishLedger(tmp_path / "ledger.json")
        for i in range(40):
            await ledger.record((_BASE + timedelta(days=i)).date(), 1)
        document = json.loads(ledger.path.read_text())
        assert len(document["days"]) == 30
        assert await ledger.count_for(_BASE.date()) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        ["not json", '{"version": 2, "days": {}}', '{"version": 1, "days": {"2026-01-02": -1}}'],
    )
    async def test_corrupt_file_raises(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "ledger.json"
        path.write_text(content)
        with pytest.raises(StoreFormatError):
            await PublishLedger(path).count_for(_NOW.date())

    @pytest.mark.asyncio
    async def test_unwritable_path_raises_persistence_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        with pytest.raises(PersistenceError):
            await PublishLedger(blocker / "ledger.json").record(_NOW.date(), 1)


class TestCompositePublisher:
    @pytest.mark.asyncio
    async def test_runs_publishers_in_order(self) -> None:
        first, second = _Publisher(label="site"), _Publisher(label="x")
        composite = CompositePublisher([first, second])
        cycle = PublishingCycle(_queue_with("A"), composite)
        await cycle.run_once(_NOW)
        assert composite.name == "site+x"
        assert len(first.batches) == len(second.batches) == 1

    @pytest.mark.asyncio
    async def test_first_failure_stops_the_chain(self) -> None:
        first, second = _Publisher(PublishError("nope"), "site"), _Publisher(label="x")
        queue = _queue_with("A")
        outcome = await PublishingCycle(queue, CompositePublisher([first, second])).run_once(_NOW)
        assert outcome.status is CycleStatus.FAILED
        assert second.batches == []

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_publish_error(self) -> None:
        composite = CompositePublisher([_Publisher(KeyError("k"), "site")])
        batch = PublishBatch(cycle_id="c", created_at=_NOW, events=[_completed_event()])
        with pytest.raises(PublishError):
            await composite.publish(batch)

    def test_needs_a_publisher(self) -> None:
        with pytest.raises(ValueError):
            CompositePublisher([])


class TestPeriodicTask:
    @pytest.mark.asyncio
    async def test_runs_until_stopped_and_survives_errors(self) -> None:
        calls: list[int] = []

        async def tick() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")

        task = PeriodicTask("tick", 0.01, tick)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()
        assert len(calls) >= 2
        assert not task.running

    @pytest.mark.asyncio
    async def test_delayed_start(self) -> None:
        calls: list[int] = []

        async def tick() -> None:
            calls.append(1)

        task = PeriodicTask("tick", 60, tick, run_immediately=False)
        task.start()
        await asyncio.sleep(0.01)
        await task.stop()
        assert calls == []

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PeriodicTask("tick", 0, lambda: None)
