"""Poller lifecycle events.

Typed, frozen dataclasses representing every observable step of a
polling loop. Each concrete type inherits from `PollerEvent` and exposes
a human-readable `description` property.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PollerEvent:
    """Base class for all poller events."""

    @property
    def description(self) -> str:
        """Human-readable one-line summary of this event."""
        return self.__class__.__name__


# ---------------------------------------------------------------------------
# Page lifecycle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageFetched(PollerEvent):
    """Emitted when a page was fetched successfully."""

    link: str
    item_count: int
    has_next: bool

    @property
    def description(self) -> str:
        more = "" if self.has_next else ", end of feed"
        return f"Fetched {self.item_count} items from {self.link}{more}"


@dataclass(frozen=True)
class PageProcessed(PollerEvent):
    """Emitted when every item of a page was handled."""

    link: str
    item_count: int
    duration: float

    @property
    def description(self) -> str:
        return f"Processed {self.item_count} items from {self.link} in {self.duration:.2f}s"


@dataclass(frozen=True)
class CursorPersisted(PollerEvent):
    """Emitted when the cursor was saved durably."""

    link: str

    @property
    def description(self) -> str:
        return f"Cursor persisted at {self.link}"


# ---------------------------------------------------------------------------
# Failures and retries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FetchFailed(PollerEvent):
    """Emitted when a fetch failed transiently and will be retried."""

    link: str
    error: str
    attempt: int
    delay: float

    @property
    def description(self) -> str:
        return (
            f"Fetch of {self.link} failed (attempt {self.attempt}, "
            f"retry in {self.delay:.1f}s): {self.error}"
        )


@dataclass(frozen=True)
class HandlerFailed(PollerEvent):
    """Emitted when an item handler failed; the page will be retried."""

    link: str
    position: int
    error: str
    attempt: int
    delay: float

    @property
    def description(self) -> str:
        return (
            f"Handler failed at position {self.position} of {self.link} "
            f"(attempt {self.attempt}, retry in {self.delay:.1f}s): {self.error}"
        )


@dataclass(frozen=True)
class PersistRetrying(PollerEvent):
    """Emitted when saving the cursor failed and is about to be retried."""

    link: str
    attempt: int
    delay: float
    error: str = ""

    @property
    def description(self) -> str:
        base = f"Persisting cursor {self.link} retrying (attempt {self.attempt}, delay {self.delay:.1f}s)"
        if self.error:
            return f"{base}: {self.error}"
        return base


# ---------------------------------------------------------------------------
# Idle and shutdown
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PollerSleeping(PollerEvent):
    """Emitted when the feed has no new items and the poller idles."""

    link: str
    delay: float

    @property
    def description(self) -> str:
        return f"No new items at {self.link}, sleeping {self.delay:.1f}s"


@dataclass(frozen=True)
class PollerStopped(PollerEvent):
    """Emitted when the loop stops, cleanly or fatally."""

    link: str
    error: str = ""

    @property
    def description(self) -> str:
        if self.error:
            return f"Poller stopped at {self.link}: {self.error}"
        return f"Poller stopped at {self.link}"


# ------------------------------------------------------------------ #
# Event emitter
# ------------------------------------------------------------------ #


_SENTINEL = object()  # Signals end of stream


class EventEmitter:
    """Delivers poller events to a callback, an async iterator, or both.

    ``on_event`` runs inline on every ``emit()``. ``events()`` drains a
    queue until ``close()``; a poller nobody iterates should pass
    ``stream=False`` so the queue does not grow without bound.
    """

    def __init__(
        self,
        on_event: Callable[[PollerEvent], None] | None = None,
        *,
        stream: bool = True,
    ) -> None:
        self._on_event = on_event
        self._queue: asyncio.Queue[PollerEvent | object] = asyncio.Queue()
        self._stream = stream
        self._closed = False

    def emit(self, event: PollerEvent) -> None:
        """Emit an event to callback and stream consumers."""
        if self._on_event is not None:
            self._on_event(event)
        if self._stream and not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        """Signal end of event stream."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_SENTINEL)

    async def events(self) -> AsyncIterator[PollerEvent]:
        """Async iterator over emitted events. Terminates on close()."""
        while True:
            item = await self._queue.get()
            if item is _SENTINEL:
                break
            yield item  # type: ignore[misc]
