"""Feed registry: the named feeds a server publishes.

All feeds of a registry share one position allocator, so positions are
unique server-wide.
"""

from __future__ import annotations

import logging

from httpfeed_core.allocator import PositionAllocator
from httpfeed_core.entry import FeedKind
from httpfeed_core.resolver import DEFAULT_PAGE_LIMIT, OffsetResolver
from httpfeed_core.store import FeedStore

logger = logging.getLogger(__name__)


class FeedRegistry:
    """Owns the stores and resolvers of every published feed."""

    def __init__(
        self,
        allocator: PositionAllocator | None = None,
        *,
        page_limit: int = DEFAULT_PAGE_LIMIT,
    ) -> None:
        self.allocator = allocator or PositionAllocator()
        self.page_limit = page_limit
        self._stores: dict[str, FeedStore] = {}
        self._resolvers: dict[str, OffsetResolver] = {}

    def create(self, name: str, kind: FeedKind | str = FeedKind.DATA) -> FeedStore:
        """Register a new feed.

        Raises:
            ValueError: If a feed with that name already exists.
        """
        if name in self._stores:
            raise ValueError(f"Feed {name!r} already exists")
        store = FeedStore(name, FeedKind(kind), self.allocator)
        self._stores[name] = store
        self._resolvers[name] = OffsetResolver(store, limit=self.page_limit)
        logger.info("Registered %s feed %r", store.kind.value, name)
        return store

    def get(self, name: str) -> FeedStore | None:
        return self._stores.get(name)

    def resolver(self, name: str) -> OffsetResolver | None:
        return self._resolvers.get(name)

    def names(self) -> list[str]:
        return sorted(self._stores)

    def stores(self) -> list[FeedStore]:
        """Registered stores, ordered by feed name."""
        return [self._stores[name] for name in self.names()]

    def __contains__(self, name: object) -> bool:
        return name in self._stores
