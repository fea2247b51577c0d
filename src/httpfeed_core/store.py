"""Append-only feed store with per-id compaction for data feeds.

Entries live in an append-only log shared by successive snapshots. An
append adds one slot and, for data feeds, stamps the slot it retires with
the version that retires it; then a new ``IndexSnapshot`` (log, length,
version) is published. A snapshot shows a slot if it lies within its
length and was not retired at or before its version, so a concurrent scan
sees either the state before an append or the state after it -- never the
old and new entry for the same id together, and never neither.

Retention and the occasional compaction of retired slots rebuild the log
into a fresh object; snapshots taken earlier keep reading the old one.

Usage::

    store = FeedStore("orders", FeedKind.DATA)
    store.append("com.example.order", "123456", data={"status": "open"})
    store.append("com.example.order", "123456", Operation.DELETE)

    snap = store.snapshot()
    snap.positions   # (2,) -- position 1 was retired by the delete
"""

from __future__ import annotations

import logging
import threading
from bisect import bisect_right
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from httpfeed_core.allocator import PositionAllocator
from httpfeed_core.entry import FeedEntry, FeedKind, Operation, utcnow

logger = logging.getLogger(__name__)

AppendListener = Callable[[FeedEntry], None]
EntryPredicate = Callable[[FeedEntry], bool]

# Rebuild the log once retired slots outnumber live ones (and are at least this many).
COMPACT_MIN_RETIRED = 1024


class _Log:
    """Backing arrays of a store. Slots are only ever appended or retired."""

    __slots__ = ("positions", "entries", "retired_at")

    def __init__(self, entries: Iterable[FeedEntry] = ()) -> None:
        self.entries: list[FeedEntry] = list(entries)
        self.positions: list[int] = [e.position for e in self.entries]
        self.retired_at: list[int | None] = [None] * len(self.entries)


@dataclass(frozen=True)
class IndexSnapshot:
    """Immutable, versioned view of the live entries of a feed."""

    version: int = 0
    length: int = 0
    live: int = 0
    _log: _Log = field(default_factory=_Log, repr=False, compare=False)

    def __len__(self) -> int:
        return self.live

    def _visible(self, slot: int) -> bool:
        retired = self._log.retired_at[slot]
        return retired is None or retired > self.version

    def _scan(self, start: int = 0) -> Iterator[FeedEntry]:
        log = self._log
        for slot in range(start, self.length):
            if self._visible(slot):
                yield log.entries[slot]

    def __iter__(self) -> Iterator[FeedEntry]:
        return self._scan()

    @property
    def positions(self) -> tuple[int, ...]:
        return tuple(e.position for e in self)

    @property
    def entries(self) -> Mapping[int, FeedEntry]:
        """Read-only position to entry mapping of the live entries."""
        return MappingProxyType({e.position: e for e in self})

    def after(
        self,
        offset_exclusive: int | None,
        limit: int,
        predicate: EntryPredicate | None = None,
    ) -> list[FeedEntry]:
        """Live entries with ``position > offset_exclusive``, ascending, at most *limit*.

        *predicate* narrows the view before the limit is applied.
        """
        if limit <= 0:
            return []
        start = 0
        if offset_exclusive is not None:
            start = bisect_right(self._log.positions, offset_exclusive, 0, self.length)

        items: list[FeedEntry] = []
        for entry in self._scan(start):
            if predicate is None or predicate(entry):
                items.append(entry)
                if len(items) >= limit:
                    break
        return items


class FeedStore:
    """Ordered collection of feed entries.

    Data feeds keep at most one live entry per id: appending for an
    existing id retires the previous entry, leaving a gap at its position.
    Event feeds keep every entry until ``apply_retention()`` cuts them off.
    """

    def __init__(
        self,
        name: str,
        kind: FeedKind = FeedKind.DATA,
        allocator: PositionAllocator | None = None,
    ) -> None:
        self.name = name
        self.kind = FeedKind(kind)
        self._allocator = allocator or PositionAllocator()
        self._write_lock = threading.Lock()
        self._snapshot = IndexSnapshot()
        # id -> slot of its live entry in the current log (data feeds only)
        self._live_slots: dict[str, int] = {}
        self._retired = 0
        self._listeners: list[AppendListener] = []
        self._last_position: int | None = None

    def __len__(self) -> int:
        return len(self._snapshot)

    @property
    def last_position(self) -> int | None:
        """Highest position appended to this store, retired or not."""
        return self._last_position

    def snapshot(self) -> IndexSnapshot:
        """The current consistent view. Never blocks on writers."""
        return self._snapshot

    def get(self, entry_id: str) -> FeedEntry | None:
        """The live entry for *entry_id* in a data feed, or None."""
        with self._write_lock:
            slot = self._live_slots.get(entry_id)
            if slot is None:
                return None
            return self._snapshot._log.entries[slot]

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def append(
        self,
        type: str,  # noqa: A002
        id: str,  # noqa: A002
        operation: Operation | str = Operation.PUT,
        data: Any | None = None,
        *,
        idempotency_key: str | None = None,
        created: datetime | None = None,
    ) -> FeedEntry:
        """Append an entry and return it with its allocated position.

        Raises:
            ValueError: On an empty type/id, or a delete carrying data.
            AllocationExhausted: If the position counter is exhausted.
        """
        operation = Operation(operation)
        if not type:
            raise ValueError("Entry type must not be empty")
        if not id:
            raise ValueError("Entry id must not be empty")
        if operation == Operation.DELETE and data is not None:
            raise ValueError("A delete entry must not carry data")

        with self._write_lock:
            position = self._allocator.allocate()
            entry = FeedEntry(
                position=position,
                type=type,
                id=id,
                operation=operation,
                created=created or utcnow(),
                idempotency_key=idempotency_key,
                data=data,
            )
            self._publish_append(entry)
            self._last_position = position
            if self._retired >= COMPACT_MIN_RETIRED and self._retired > len(self._snapshot):
                self._rebuild(self._snapshot)

        logger.debug("Feed %s appended %s", self.name, entry.description)
        self._notify(entry)
        return entry

    def _publish_append(self, entry: FeedEntry) -> None:
        snap = self._snapshot
        log = snap._log
        version = snap.version + 1
        live = snap.live + 1

        # Slots past the published length are invisible until the swap below.
        log.entries.append(entry)
        log.positions.append(entry.position)
        log.retired_at.append(None)
        slot = len(log.entries) - 1

        if self.kind == FeedKind.DATA:
            previous = self._live_slots.get(entry.id)
            if previous is not None:
                log.retired_at[previous] = version
                self._retired += 1
                live -= 1
                logger.debug(
                    "Feed %s retired position %d for id %s",
                    self.name,
                    log.positions[previous],
                    entry.id,
                )
            self._live_slots[entry.id] = slot

        self._snapshot = IndexSnapshot(version=version, length=slot + 1, live=live, _log=log)

    def _rebuild(self, snap: IndexSnapshot, keep: EntryPredicate | None = None) -> int:
        """Publish a fresh log holding the live entries of *snap* that pass *keep*."""
        survivors = [e for e in snap if keep is None or keep(e)]
        log = _Log(survivors)
        self._live_slots = (
            {e.id: slot for slot, e in enumerate(survivors)} if self.kind == FeedKind.DATA else {}
        )
        self._retired = 0
        self._snapshot = IndexSnapshot(
            version=snap.version + 1, length=len(survivors), live=len(survivors), _log=log
        )
        return len(snap) - len(survivors)

    def apply_retention(self, before: datetime) -> int:
        """Remove entries created before *before*; returns how many were removed.

        Event feeds drop every entry older than the cutoff. Data feeds only
        drop old tombstones: live state is never expired.
        """

        def expired(e: FeedEntry) -> bool:
            return (
                e.created is not None
                and e.created < before
                and (self.kind == FeedKind.EVENT or e.is_tombstone)
            )

        with self._write_lock:
            snap = self._snapshot
            if not any(expired(e) for e in snap):
                return 0
            removed = self._rebuild(snap, keep=lambda e: not expired(e))

        logger.info("Feed %s retention removed %d entries before %s", self.name, removed, before)
        return removed

    # ------------------------------------------------------------------ #
    # Listeners
    # ------------------------------------------------------------------ #

    def subscribe(self, listener: AppendListener) -> None:
        """Call *listener* with every entry appended from now on."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: AppendListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, entry: FeedEntry) -> None:
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Append listener failed on feed %s", self.name)
