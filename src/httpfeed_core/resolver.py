"""Offset resolution: "give me the entries after position P".

An offset that lands on a retired (compacted) position is not an error:
resolution continues from the next surviving position greater than it.
An offset beyond the end of the feed simply yields nothing.
"""

from __future__ import annotations

import asyncio
import logging

from httpfeed_core.entry import FeedEntry
from httpfeed_core.store import EntryPredicate, FeedStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 1000


class OffsetResolver:
    """Resolves client offsets against a single store snapshot.

    The page limit is chosen by the server, not by the client.
    """

    def __init__(self, store: FeedStore, limit: int = DEFAULT_PAGE_LIMIT) -> None:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self.store = store
        self.limit = limit

    def query(
        self,
        offset_exclusive: int | None = None,
        limit: int | None = None,
        predicate: EntryPredicate | None = None,
    ) -> list[FeedEntry]:
        """Live entries with ``position > offset_exclusive``, ascending, at most *limit*.

        ``None`` means the start of the feed. *limit* may only narrow the
        server page limit. *predicate* is an already parsed filter applied
        before the limit.
        """
        limit = self.limit if limit is None else min(limit, self.limit)
        return self.store.snapshot().after(offset_exclusive, limit, predicate)

    async def wait_for_entries(
        self,
        offset_exclusive: int | None,
        timeout: float,
        predicate: EntryPredicate | None = None,
    ) -> list[FeedEntry]:
        """Long-polling variant of ``query()``.

        Returns immediately if entries are available, otherwise waits up to
        *timeout* seconds for a matching append and queries again. Appends
        may happen on other threads; the wake-up is handed to this loop.
        """
        items = self.query(offset_exclusive, predicate=predicate)
        if items or timeout <= 0:
            return items

        loop = asyncio.get_running_loop()
        appended = asyncio.Event()

        def on_append(entry: FeedEntry) -> None:
            if offset_exclusive is not None and entry.position <= offset_exclusive:
                return
            if predicate is not None and not predicate(entry):
                return
            loop.call_soon_threadsafe(appended.set)

        self.store.subscribe(on_append)
        try:
            # Re-check after subscribing so an append in between is not missed.
            items = self.query(offset_exclusive, predicate=predicate)
            if items:
                return items
            try:
                await asyncio.wait_for(appended.wait(), timeout=timeout)
            except TimeoutError:
                logger.debug(
                    "Long poll on feed %s timed out after %.1fs at offset %s",
                    self.store.name,
                    timeout,
                    offset_exclusive,
                )
                return []
        finally:
            self.store.unsubscribe(on_append)

        return self.query(offset_exclusive, predicate=predicate)
