"""Tests for the ThresholdQueue."""

from datetime import timedelta

import pytest

from overflow_watch.domain.event import DischargeEvent
from overflow_watch.scheduler.threshold_queue import ThresholdQueue

from tests.test_models import _BASE, _completed_event, _observation


@pytest.fixture
def queue() -> ThresholdQueue:
    return ThresholdQueue(min_duration_minutes=600, retention=timedelta(days=7))


class TestAddEvent:
    def test_long_event_is_queued(self, queue: ThresholdQueue) -> None:
        assert queue.add_event(_completed_event(minutes=700), _BASE)
        assert "thames_water:CSO0042" in queue
        assert len(queue) == 1

    def test_threshold_is_inclusive(self, queue: ThresholdQueue) -> None:
        assert queue.add_event(_completed_event(minutes=600), _BASE)

    def test_short_event_is_rejected(self, queue: ThresholdQueue) -> None:
        assert not queue.add_event(_completed_event(minutes=300), _BASE)
        assert len(queue) == 0

    def test_active_event_is_rejected(self, queue: ThresholdQueue) -> None:
        active = DischargeEvent.start(_observation(), _BASE, _BASE)
        assert not queue.add_event(active, _BASE)

    def test_same_event_id_queued_once(self, queue: ThresholdQueue) -> None:
        assert queue.add_event(_completed_event(minutes=700), _BASE)
        later = _completed_event(start=_BASE + timedelta(days=1), minutes=800)
        assert not queue.add_event(later, _BASE)
        assert len(queue) == 1

    def test_same_site_on_two_sources_queues_both(self, queue: ThresholdQueue) -> None:
        assert queue.add_event(_completed_event(source_id="thames_water"), _BASE)
        assert queue.add_event(_completed_event(source_id="anglian_water"), _BASE)
        assert len(queue) == 2

    def test_queue_keeps_its_own_copy(self, queue: ThresholdQueue) -> None:
        event = _completed_event()
        queue.add_event(event, _BASE)
        event.watercourse = "Mutated"
        assert queue.get_postable()[0].watercourse == "River Thames"

    def test_negative_threshold_rejected(self) -> None:
        with pytest.raises(ValueError):
            ThresholdQueue(min_duration_minutes=-1)


class TestGetPostable:
    def test_most_recently_ended_first(self, queue: ThresholdQueue) -> None:
        queue.add_event(_completed_event(site_id="A", minutes=700), _BASE)
        queue.add_event(_completed_event(site_id="B", minutes=900), _BASE)
        queue.add_event(_completed_event(site_id="C", minutes=800), _BASE)
        assert [e.site_id for e in queue.get_postable()] == ["B", "C", "A"]

    def test_ties_keep_insertion_order(self, queue: ThresholdQueue) -> None:
        for site in ("A", "B", "C"):
            queue.add_event(_completed_event(site_id=site, minutes=700), _BASE)
        assert [e.site_id for e in queue.get_postable()] == ["A", "B", "C"]

    def test_dispatched_entries_excluded(self, queue: ThresholdQueue) -> None:
        queue.add_event(_completed_event(site_id="A"), _BASE)
        queue.add_event(_completed_event(site_id="B"), _BASE)
        queue.mark_dispatched("thames_water:A")
        assert [e.site_id for e in queue.get_postable()] == ["B"]
        assert queue.entry("thames_water:A").dispatched

    def test_empty_queue(self, queue: ThresholdQueue) -> None:
        assert queue.get_postable() == []


class TestMarkDispatched:
    def test_unknown_id_is_ignored(self, queue: ThresholdQueue) -> None:
        queue.mark_dispatched("nobody:nowhere")
        assert len(queue) == 0

    def test_dispatched_entry_still_blocks_requeue(self, queue: ThresholdQueue) -> None:
        queue.add_event(_completed_event(), _BASE)
        queue.mark_dispatched("thames_water:CSO0042")
        assert not queue.add_event(_completed_event(start=_BASE + timedelta(days=1)), _BASE)


class TestCleanup:
    def test_evicts_entries_past_retention(self, queue: ThresholdQueue) -> None:
        queue.add_event(_completed_event(site_id="OLD", start=_BASE - timedelta(days=10)), _BASE)
        queue.add_event(_completed_event(site_id="NEW"), _BASE)
        removed = queue.cleanup(_BASE + timedelta(days=1))
        assert removed == 1
        assert "thames_water:OLD" not in queue
        assert "thames_water:NEW" in queue

    def test_evicts_dispatched_and_undispatched_alike(self, queue: ThresholdQueue) -> None:
        queue.add_event(_completed_event(site_id="A"), _BASE)
        queue.add_event(_completed_event(site_id="B"), _BASE)
        queue.mark_dispatched("thames_water:A")
        assert queue.cleanup(_BASE + timedelta(days=30)) == 2
        assert len(queue) == 0

    def test_site_can_queue_again_after_cleanup(self, queue: ThresholdQueue) -> None:
        queue.add_event(_completed_event(), _BASE)
        queue.cleanup(_BASE + timedelta(days=30))
        assert queue.add_event(_completed_event(start=_BASE + timedelta(days=29)), _BASE)

    def test_stats(self, queue: ThresholdQueue) -> None:
        queue.add_event(_completed_event(site_id="A"), _BASE)
        queue.add_event(_completed_event(site_id="B"), _BASE)
        queue.mark_dispatched("thames_water:A")
        assert queue.stats() == {
            "total": 2,
            "postable": 1,
            "dispatched": 1,
            "min_duration_minutes": 600,
        }
