"""HTTP feed engine: ordering, compaction, offset resolution and paging.

Server writes flow through the allocator into the store; server reads
flow from the store through the resolver into the page builder::

    allocator = PositionAllocator()
    store = FeedStore("orders", FeedKind.DATA, allocator)
    store.append("com.example.order", "123456", data={"status": "open"})

    resolver = OffsetResolver(store, limit=1000)
    page = PageBuilder("/feeds/orders").build(None, resolver.query(None))
"""

from httpfeed_core.allocator import PositionAllocator
from httpfeed_core.entry import MAX_POSITION, FeedEntry, FeedKind, Operation
from httpfeed_core.errors import (
    AllocationExhausted,
    ClientRequestError,
    CursorPersistenceFailure,
    FeedError,
    FeedProtocolError,
    HandlerFailure,
    ServerUnavailable,
    TransientTransportError,
    is_transient,
)
from httpfeed_core.page import FeedPage, PageBuilder
from httpfeed_core.resolver import DEFAULT_PAGE_LIMIT, OffsetResolver
from httpfeed_core.store import FeedStore, IndexSnapshot

__all__ = [
    "DEFAULT_PAGE_LIMIT",
    "MAX_POSITION",
    "AllocationExhausted",
    "ClientRequestError",
    "CursorPersistenceFailure",
    "FeedEntry",
    "FeedError",
    "FeedKind",
    "FeedPage",
    "FeedProtocolError",
    "FeedStore",
    "HandlerFailure",
    "IndexSnapshot",
    "OffsetResolver",
    "Operation",
    "PageBuilder",
    "PositionAllocator",
    "ServerUnavailable",
    "TransientTransportError",
    "is_transient",
]
