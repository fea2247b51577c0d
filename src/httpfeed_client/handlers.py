"""Item handlers and the idempotency wrapper that makes replay safe.

After a crash the poller re-fetches the page of its last persisted
cursor, so items can be delivered more than once. ``IdempotentHandler``
remembers which deliveries were applied and skips repeats.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol

import anyio

from httpfeed_core.entry import FeedEntry

logger = logging.getLogger(__name__)

ItemHandler = Callable[[FeedEntry], Awaitable[None] | None]


def delivery_key(entry: FeedEntry) -> str:
    """Deduplication key: the idempotency key if present, else the item identity."""
    if entry.idempotency_key:
        return entry.idempotency_key
    return f"{entry.type}:{entry.id}:{entry.operation.value}:{entry.position}"


async def call_handler(handler: ItemHandler, entry: FeedEntry) -> None:
    """Invoke a sync or async handler."""
    result = handler(entry)
    if inspect.isawaitable(result):
        await result


class ProcessedKeys(Protocol):
    """Record of deliveries whose effects were applied."""

    async def contains(self, key: str) -> bool: ...

    async def add(self, key: str) -> None: ...


class InMemoryProcessedKeys:
    def __init__(self) -> None:
        self._keys: set[str] = set()

    def __len__(self) -> int:
        return len(self._keys)

    async def contains(self, key: str) -> bool:
        return key in self._keys

    async def add(self, key: str) -> None:
        self._keys.add(key)


class JsonFileProcessedKeys:
    """Processed keys kept on disk, one JSON string per line.

    ``add()`` appends and fsyncs before returning, so a restarted consumer
    skips every delivery whose effect was already applied. A last line
    torn by a crash is ignored on load. File IO runs in a worker thread.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._keys: set[str] | None = None
        self._torn_tail = False

    async def contains(self, key: str) -> bool:
        return key in await self._load()

    async def add(self, key: str) -> None:
        keys = await self._load()
        if key in keys:
            return
        await anyio.to_thread.run_sync(self._append, key)
        keys.add(key)

    async def _load(self) -> set[str]:
        if self._keys is None:
            self._keys = await anyio.to_thread.run_sync(self._read)
        return self._keys

    def _read(self) -> set[str]:
        if not self.path.exists():
            return set()
        text = self.path.read_text(encoding="utf-8")
        self._torn_tail = bool(text) and not text.endswith("\n")
        keys: set[str] = set()
        for lineno, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                keys.add(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable line %d of %s", lineno, self.path)
        return keys

    def _append(self, key: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            if self._torn_tail:
                f.write("\n")
            f.write(json.dumps(key) + "\n")
            f.flush()
            os.fsync(f.fileno())
        self._torn_tail = False


class IdempotentHandler:
    """Wraps a handler so re-delivered items have no second effect.

    A key is recorded only after the wrapped handler returned, so a
    failed item is attempted again on the next delivery.
    """

    def __init__(self, handler: ItemHandler, seen: ProcessedKeys | None = None) -> None:
        self._handler = handler
        self.seen = seen if seen is not None else InMemoryProcessedKeys()
        self.skipped = 0

    async def __call__(self, entry: FeedEntry) -> None:
        key = delivery_key(entry)
        if await self.seen.contains(key):
            self.skipped += 1
            logger.debug("Skipping already processed %s (key=%s)", entry.description, key)
            return
        await call_handler(self._handler, entry)
        await self.seen.add(key)
