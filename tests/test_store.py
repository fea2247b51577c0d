"""Tests for the feed store: appends, compaction, tombstones, retention."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from httpfeed_core.allocator import PositionAllocator
from httpfeed_core.entry import FeedEntry, FeedKind, Operation
from httpfeed_core.errors import AllocationExhausted
from httpfeed_core.models import FeedItem
from httpfeed_core.store import COMPACT_MIN_RETIRED, FeedStore, IndexSnapshot

ORDER = "com.example.order"


class TestAppend:
    def test_append_assigns_positions(self):
        store = FeedStore("orders")
        a = store.append(ORDER, "1", data={"n": 1})
        b = store.append(ORDER, "2", data={"n": 2})
        assert (a.position, b.position) == (1, 2)
        assert store.snapshot().positions == (1, 2)
        assert store.last_position == 2
        assert len(store) == 2

    def test_entry_fields(self):
        store = FeedStore("orders")
        e = store.append(ORDER, "1", data={"n": 1}, idempotency_key="k-1")
        assert e.type == ORDER
        assert e.id == "1"
        assert e.operation == Operation.PUT
        assert e.idempotency_key == "k-1"
        assert e.data == {"n": 1}
        assert e.created is not None and e.created.tzinfo is not None

    def test_operation_accepts_string(self):
        store = FeedStore("orders")
        e = store.append(ORDER, "1", "delete")
        assert e.operation == Operation.DELETE
        assert e.is_tombstone

    def test_empty_type_or_id_rejected(self):
        store = FeedStore("orders")
        with pytest.raises(ValueError):
            store.append("", "1")
        with pytest.raises(ValueError):
            store.append(ORDER, "")

    def test_delete_with_data_rejected(self):
        store = FeedStore("orders")
        with pytest.raises(ValueError, match="must not carry data"):
            store.append(ORDER, "1", Operation.DELETE, {"x": 1})

    def test_put_without_data_is_not_a_tombstone_on_the_wire(self):
        store = FeedStore("orders")
        e = store.append(ORDER, "1")
        assert e.data is None
        assert not e.is_tombstone

        body = FeedItem.from_entry(e).to_wire()
        assert "data" in body
        assert body["data"] is None
        assert "operation" not in body["meta"]

    def test_exhaustion_propagates(self):
        store = FeedStore("orders", allocator=PositionAllocator(maximum=1))
        store.append(ORDER, "1")
        with pytest.raises(AllocationExhausted):
            store.append(ORDER, "2")
        assert store.snapshot().positions == (1,)

    def test_shared_allocator_interleaves_positions(self):
        allocator = PositionAllocator()
        orders = FeedStore("orders", allocator=allocator)
        audit = FeedStore("audit", FeedKind.EVENT, allocator)
        orders.append(ORDER, "1")
        audit.append("com.example.audit", "a")
        orders.append(ORDER, "2")
        assert orders.snapshot().positions == (1, 3)
        assert audit.snapshot().positions == (2,)


class TestCompaction:
    def test_data_feed_retires_previous_entry(self):
        store = FeedStore("orders", FeedKind.DATA)
        store.append(ORDER, "A", data={"v": 1})
        store.append(ORDER, "B", data={"v": 1})
        store.append(ORDER, "A", data={"v": 2})

        snap = store.snapshot()
        assert snap.positions == (2, 3)
        assert [e.id for e in snap] == ["B", "A"]
        assert store.get("A").data == {"v": 2}
        assert len(store) == 2

    def test_positions_never_renumbered(self):
        store = FeedStore("orders", FeedKind.DATA)
        store.append(ORDER, "A")
        store.append(ORDER, "A")
        store.append(ORDER, "A")
        assert store.snapshot().positions == (3,)
        assert store.get("A").position == 3

    def test_delete_retires_and_leaves_tombstone(self):
        store = FeedStore("orders", FeedKind.DATA)
        store.append(ORDER, "A", data={"v": 1})
        tomb = store.append(ORDER, "A", Operation.DELETE)

        snap = store.snapshot()
        assert snap.positions == (2,)
        assert snap.entries[2] is tomb
        assert tomb.data is None
        assert store.get("A").is_tombstone

    def test_event_feed_keeps_everything(self):
        store = FeedStore("audit", FeedKind.EVENT)
        store.append("com.example.audit", "A")
        store.append("com.example.audit", "A")
        assert store.snapshot().positions == (1, 2)

    def test_get_unknown_id(self):
        assert FeedStore("orders").get("missing") is None


class TestSnapshots:
    def test_snapshot_is_immutable_view(self):
        store = FeedStore("orders")
        store.append(ORDER, "A")
        before = store.snapshot()
        store.append(ORDER, "A")
        after = store.snapshot()

        assert before.positions == (1,)
        assert after.positions == (2,)
        assert after.version == before.version + 1
        with pytest.raises(TypeError):
            before.entries[99] = None  # type: ignore[index]

    def test_after_bisects_past_retired_offset(self):
        store = FeedStore("orders")
        store.append(ORDER, "A")  # 1
        store.append(ORDER, "B")  # 2
        store.append(ORDER, "A")  # 3 retires 1
        snap = store.snapshot()
        assert [e.position for e in snap.after(1, 10)] == [2, 3]
        assert [e.position for e in snap.after(0, 1)] == [2]
        assert snap.after(3, 10) == []
        assert snap.after(None, 0) == []

    def test_after_with_predicate_applies_before_limit(self):
        store = FeedStore("audit", FeedKind.EVENT)
        for i in range(6):
            store.append("even" if i % 2 == 0 else "odd", str(i))
        snap = store.snapshot()
        odd = snap.after(None, 2, lambda e: e.type == "odd")
        assert [e.id for e in odd] == ["1", "3"]

    def test_empty_snapshot(self):
        snap = IndexSnapshot()
        assert len(snap) == 0
        assert list(snap) == []
        assert snap.after(None, 10) == []

    def test_concurrent_readers_never_see_torn_state(self):
        store = FeedStore("orders", FeedKind.DATA)
        store.append(ORDER, "A", data=0)
        stop = threading.Event()
        violations: list[IndexSnapshot] = []

        def reader() -> None:
            while not stop.is_set():
                snap = store.snapshot()
                ids = [e.id for e in snap]
                if ids.count("A") != 1:
                    violations.append(snap)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for t in readers:
            t.start()
        for i in range(1, 2000):
            store.append(ORDER, "A", data=i)
        stop.set()
        for t in readers:
            t.join()

        assert violations == []
        assert store.get("A").data == 1999


class TestLog:
    def test_old_snapshot_unaffected_by_later_retirement(self):
        store = FeedStore("orders")
        store.append(ORDER, "A", data={"v": 1})
        store.append(ORDER, "B", data={"v": 1})
        before = store.snapshot()
        store.append(ORDER, "A", data={"v": 2})
        store.append(ORDER, "C", data={"v": 1})

        assert before.positions == (1, 2)
        assert [e.data for e in before.after(None, 10)] == [{"v": 1}, {"v": 1}]
        assert store.snapshot().positions == (2, 3, 4)

    def test_retired_slots_are_compacted(self):
        store = FeedStore("orders")
        for i in range(COMPACT_MIN_RETIRED * 3):
            store.append(ORDER, str(i % 3), data={"n": i})

        snap = store.snapshot()
        assert len(snap) == 3
        assert snap.length < COMPACT_MIN_RETIRED * 2
        last = COMPACT_MIN_RETIRED * 3
        assert snap.positions == (last - 2, last - 1, last)
        assert store.get("0").data == {"n": last - 3}

    def test_snapshot_taken_before_compaction_stays_valid(self):
        store = FeedStore("orders")
        store.append(ORDER, "keep", data=0)
        for i in range(COMPACT_MIN_RETIRED):
            store.append(ORDER, "hot", data=i)
        before = store.snapshot()
        for i in range(COMPACT_MIN_RETIRED * 2):
            store.append(ORDER, "hot", data=i)

        assert [e.id for e in before] == ["keep", "hot"]
        assert before.after(1, 10)[0].data == COMPACT_MIN_RETIRED - 1

    def test_append_cost_does_not_grow_with_feed_size(self):
        store = FeedStore("orders")
        for i in range(20_000):
            store.append(ORDER, str(i % 100), data=i)
        snap = store.snapshot()
        assert len(snap) == 100
        assert snap.version >= 20_000
        assert [e.data for e in snap.after(19_990, 5)] == [19_990, 19_991, 19_992, 19_993, 19_994]


class TestRetention:
    def _at(self, minutes: int) -> datetime:
        return datetime(2026, 1, 1, tzinfo=UTC) + timedelta(minutes=minutes)

    def test_event_feed_drops_old_entries(self):
        store = FeedStore("audit", FeedKind.EVENT)
        store.append("t", "1", created=self._at(0))
        store.append("t", "2", created=self._at(10))
        store.append("t", "3", created=self._at(20))

        removed = store.apply_retention(self._at(15))
        assert removed == 2
        assert store.snapshot().positions == (3,)

    def test_data_feed_only_drops_old_tombstones(self):
        store = FeedStore("orders", FeedKind.DATA)
        store.append(ORDER, "live", data={"v": 1}, created=self._at(0))
        store.append(ORDER, "gone", data={"v": 1}, created=self._at(0))
        store.append(ORDER, "gone", Operation.DELETE, created=self._at(1))

        removed = store.apply_retention(self._at(30))
        assert removed == 1
        assert [e.id for e in store.snapshot()] == ["live"]
        assert store.get("gone") is None

    def test_nothing_to_expire(self):
        store = FeedStore("audit", FeedKind.EVENT)
        store.append("t", "1", created=self._at(10))
        version = store.snapshot().version
        assert store.apply_retention(self._at(5)) == 0
        assert store.snapshot().version == version

    def test_retention_keeps_positions_monotonic(self):
        store = FeedStore("audit", FeedKind.EVENT)
        store.append("t", "1", created=self._at(0))
        store.apply_retention(self._at(5))
        e = store.append("t", "2")
        assert e.position == 2


class TestListeners:
    def test_listener_receives_appends(self):
        store = FeedStore("orders")
        seen: list[FeedEntry] = []
        store.subscribe(seen.append)
        e = store.append(ORDER, "A")
        store.unsubscribe(seen.append)
        store.append(ORDER, "B")
        assert seen == [e]

    def test_failing_listener_does_not_break_writer(self, caplog):
        store = FeedStore("orders")

        def bad(entry: FeedEntry) -> None:
            raise RuntimeError("listener boom")

        store.subscribe(bad)
        e = store.append(ORDER, "A")
        assert e.position == 1
        assert "Append listener failed" in caplog.text

    def test_unsubscribe_unknown_is_noop(self):
        FeedStore("orders").unsubscribe(lambda e: None)
