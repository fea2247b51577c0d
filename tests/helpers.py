"""Shared test fixtures: scripted transports, recording handlers, flaky stores.

``ScriptedTransport`` is a programmable feed transport that returns
scripted pages. ``StoreTransport`` serves pages straight from an
in-process ``FeedStore`` so poller tests run the real server-side engine
without HTTP.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from urllib.parse import parse_qs, urlsplit

from httpfeed_client.cursor import ClientCursor, InMemoryCursorStore
from httpfeed_core.entry import FeedEntry, Operation
from httpfeed_core.page import FeedPage, PageBuilder
from httpfeed_core.resolver import OffsetResolver
from httpfeed_core.store import FeedStore

FEED_URL = "http://feeds.test/feeds/orders"


class ScriptedTransport:
    """Programmable transport for testing.

    Takes a list of FeedPage objects (or exceptions). Each call to
    fetch() pops the next one. Raises if the script runs out.

    Usage::

        transport = ScriptedTransport([
            make_page(FEED_URL, [entry(1, "a")]),
            TransientTransportError("connection reset"),
            make_page(FEED_URL + "?offset=1", []),
        ])
    """

    def __init__(self, pages: Sequence[FeedPage | Exception] | None = None) -> None:
        self._pages: list[FeedPage | Exception] = list(pages or [])
        self.links: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.links)

    def add(self, page: FeedPage | Exception) -> None:
        self._pages.append(page)

    async def fetch(self, link: str) -> FeedPage:
        self.links.append(link)
        if not self._pages:
            raise RuntimeError(
                f"ScriptedTransport exhausted: {len(self.links)} calls but no more scripted pages"
            )
        page = self._pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page


class StoreTransport:
    """Serves pages from an in-process store, the way the HTTP app does."""

    def __init__(self, store: FeedStore, *, limit: int = 1000, base_url: str = FEED_URL) -> None:
        self.resolver = OffsetResolver(store, limit=limit)
        self.builder = PageBuilder(base_url)
        self.links: list[str] = []
        self.fail_next: list[Exception] = []

    async def fetch(self, link: str) -> FeedPage:
        self.links.append(link)
        if self.fail_next:
            raise self.fail_next.pop(0)
        raw = parse_qs(urlsplit(link).query).get("offset", [None])[0]
        offset = int(raw) if raw is not None else None
        return self.builder.build(raw, self.resolver.query(offset))


class RecordingHandler:
    """Applies items to a key-value "downstream system" and records calls.

    ``fail_at`` positions raise once each (or ``fail_times`` times).
    """

    def __init__(self, fail_at: Sequence[int] = (), *, fail_times: int = 1) -> None:
        self.state: dict[str, Any] = {}
        self.calls: list[int] = []
        self.effects = 0
        self._failures = {p: fail_times for p in fail_at}

    async def __call__(self, entry: FeedEntry) -> None:
        self.calls.append(entry.position)
        if self._failures.get(entry.position, 0) > 0:
            self._failures[entry.position] -= 1
            raise RuntimeError(f"boom at {entry.position}")
        self.effects += 1
        if entry.operation == Operation.DELETE:
            self.state.pop(entry.id, None)
        else:
            self.state[entry.id] = entry.data


class FlakyCursorStore(InMemoryCursorStore):
    """Cursor store whose save() fails a scripted number of times."""

    def __init__(self, failures: int = 0) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def save(self, cursor: ClientCursor) -> None:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise OSError("disk full")
        await super().save(cursor)


# ------------------------------------------------------------------ #
# Builders (convenience for tests)
# ------------------------------------------------------------------ #


def entry(
    position: int,
    id: str,  # noqa: A002
    data: Any | None = None,
    *,
    type: str = "com.example.order",  # noqa: A002
    operation: Operation = Operation.PUT,
    idempotency_key: str | None = None,
) -> FeedEntry:
    """Create a feed entry with sensible defaults."""
    return FeedEntry(
        position=position,
        type=type,
        id=id,
        operation=operation,
        idempotency_key=idempotency_key,
        data=data if data is not None or operation == Operation.DELETE else {"id": id},
    )


def make_page(self_link: str, items: Sequence[FeedEntry], base_url: str = FEED_URL) -> FeedPage:
    """Create a page the way the server links it."""
    next_link = f"{base_url}?offset={items[-1].position}" if items else None
    return FeedPage(self_link=self_link, next_link=next_link, items=tuple(items))
