"""Cursor-driven polling loop for one remote feed.

State machine::

    idle -> fetching -> processing -> persisting -> fetching   (page had next)
                                                \\-> sleeping -> fetching   (end of feed)
    fetching/processing --(transient failure)--> backoff -> fetching (same link)

The cursor is persisted only after every item of a page was handled.
A crash before that point replays the same page on restart, which is
safe because handlers are idempotent. The cursor is never advanced
past items that were not processed.

Usage::

    async with HttpFeedTransport() as transport:
        poller = CursorPoller(
            "http://orders.example/feeds/orders",
            transport,
            IdempotentHandler(apply_order),
            JsonFileCursorStore("cursors.json"),
        )
        await poller.run()   # until poller.stop() or the abort signal is set
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

import anyio

from httpfeed_client.abort import AbortSignal
from httpfeed_client.cursor import ClientCursor, CursorStore
from httpfeed_client.events import (
    CursorPersisted,
    EventEmitter,
    FetchFailed,
    HandlerFailed,
    PageFetched,
    PageProcessed,
    PersistRetrying,
    PollerEvent,
    PollerSleeping,
    PollerStopped,
)
from httpfeed_client.handlers import ItemHandler, call_handler
from httpfeed_client.transport import FeedTransport
from httpfeed_core.errors import (
    CursorPersistenceFailure,
    FeedProtocolError,
    HandlerFailure,
    TransientTransportError,
    is_transient,
)
from httpfeed_core.page import FeedPage

logger = logging.getLogger(__name__)


class PollerState(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    PERSISTING = "persisting"
    SLEEPING = "sleeping"
    BACKOFF = "backoff"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff. ``max_attempts=None`` retries forever."""

    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    max_attempts: int | None = None

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        delay = self.initial_delay * self.multiplier ** max(0, attempt - 1)
        return min(delay, self.max_delay)

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts


@dataclass
class PollerConfig:
    poll_interval: float = 5.0
    fetch_timeout: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    persist_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(initial_delay=0.5, max_delay=10.0, max_attempts=5)
    )

    @classmethod
    def from_env(cls) -> PollerConfig:
        return cls(
            poll_interval=float(os.getenv("HTTPFEED_POLL_INTERVAL", "5")),
            fetch_timeout=float(os.getenv("HTTPFEED_FETCH_TIMEOUT", "30")),
            retry=RetryPolicy(
                initial_delay=float(os.getenv("HTTPFEED_RETRY_INITIAL_DELAY", "1")),
                max_delay=float(os.getenv("HTTPFEED_RETRY_MAX_DELAY", "60")),
            ),
            persist_retry=RetryPolicy(
                initial_delay=0.5,
                max_delay=10.0,
                max_attempts=int(os.getenv("HTTPFEED_PERSIST_ATTEMPTS", "5")),
            ),
        )


@dataclass(frozen=True)
class PollResult:
    """Outcome of one fetch/process/persist cycle."""

    link: str
    items_processed: int
    next_link: str | None

    @property
    def has_more(self) -> bool:
        """A non-empty page: more data may be available right away."""
        return self.next_link is not None


class CursorPoller:
    """Sequential polling loop for one feed.

    Never fetches page N+1 before page N was fully processed and its
    cursor persisted. Independent feeds get independent pollers.
    """

    def __init__(
        self,
        feed_url: str,
        transport: FeedTransport,
        handler: ItemHandler,
        cursor_store: CursorStore,
        *,
        config: PollerConfig | None = None,
        abort_signal: AbortSignal | None = None,
        on_event: Callable[[PollerEvent], None] | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.feed_url = feed_url
        self.config = config or PollerConfig()
        self.abort_signal = abort_signal or AbortSignal()
        self.emitter = emitter or EventEmitter(on_event, stream=False)
        self._transport = transport
        self._handler = handler
        self._cursor_store = cursor_store
        self._state = PollerState.IDLE
        self._cursor: ClientCursor | None = None
        self._persisted_link: str | None = None
        self._last_position: int | None = None

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def cursor(self) -> ClientCursor | None:
        """The last durably persisted (or loaded) cursor."""
        return self._cursor

    def stop(self) -> None:
        """Request a cooperative stop after the in-flight page."""
        self.abort_signal.set()

    # ------------------------------------------------------------------ #
    # Loop
    # ------------------------------------------------------------------ #

    async def run(self) -> None:
        """Poll until the abort signal is set.

        Transient failures are retried with backoff and never raised
        (unless the retry policy has ``max_attempts``). Fatal failures
        propagate with the persisted cursor intact. The event stream is
        closed when this returns, either way.
        """
        try:
            await self._loop()
        except Exception as e:
            self._set_state(PollerState.FAILED)
            error = f"{type(e).__name__}: {e}"
            self.emitter.emit(PollerStopped(link=self._current_link(), error=error))
            raise
        else:
            self._set_state(PollerState.STOPPED)
            logger.info("Stopped polling %s at %s", self.feed_url, self._current_link())
            self.emitter.emit(PollerStopped(link=self._current_link()))
        finally:
            self.emitter.close()

    async def _loop(self) -> None:
        cursor = await self._ensure_cursor()
        logger.info("Polling %s from %s", self.feed_url, cursor.current_link)
        failures = 0

        while not self.abort_signal.is_set:
            try:
                result = await self.poll_once()
            except Exception as e:
                if not is_transient(e):
                    raise
                failures += 1
                if self.config.retry.exhausted(failures):
                    logger.error("Giving up on %s after %d attempts: %s", self.feed_url, failures, e)
                    raise
                delay = self.config.retry.delay_for(failures)
                self._on_transient_failure(e, failures, delay)
                if await self.abort_signal.sleep(delay):
                    return
                continue

            failures = 0
            if result.has_more:
                continue

            self._set_state(PollerState.SLEEPING)
            self.emitter.emit(PollerSleeping(link=result.link, delay=self.config.poll_interval))
            if await self.abort_signal.sleep(self.config.poll_interval):
                return

    async def poll_once(self) -> PollResult:
        """Fetch the current link, process its items and persist the cursor.

        Raises:
            TransientTransportError: Fetch failed or timed out.
            ServerUnavailable: The server answered 5xx.
            HandlerFailure: An item handler raised; nothing was persisted.
            CursorPersistenceFailure: The cursor could not be saved.
            ClientRequestError, FeedProtocolError: Fatal request/response problems.
        """
        cursor = await self._ensure_cursor()
        link = cursor.current_link

        page = await self._fetch(link)
        self._check_order(page)
        self.emitter.emit(PageFetched(link=link, item_count=len(page.items), has_next=page.has_more))

        self._set_state(PollerState.PROCESSING)
        started = time.monotonic()
        for entry in page.items:
            try:
                await call_handler(self._handler, entry)
            except Exception as e:
                raise HandlerFailure(entry, e) from e
        self.emitter.emit(
            PageProcessed(link=link, item_count=len(page.items), duration=time.monotonic() - started)
        )

        self._set_state(PollerState.PERSISTING)
        next_cursor = cursor.advance(page.next_link) if page.next_link else cursor
        await self._persist(next_cursor)
        if page.items:
            self._last_position = page.items[-1].position

        return PollResult(link=link, items_processed=len(page.items), next_link=page.next_link)

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #

    async def _ensure_cursor(self) -> ClientCursor:
        if self._cursor is None:
            stored = await self._cursor_store.load(self.feed_url)
            if stored is not None:
                self._cursor = stored
                self._persisted_link = stored.current_link
            else:
                self._cursor = ClientCursor.initial(self.feed_url)
        return self._cursor

    async def _fetch(self, link: str) -> FeedPage:
        self._set_state(PollerState.FETCHING)
        try:
            with anyio.fail_after(self.config.fetch_timeout):
                return await self._transport.fetch(link)
        except TimeoutError as e:
            raise TransientTransportError(
                f"Fetching {link} exceeded {self.config.fetch_timeout}s"
            ) from e

    def _check_order(self, page: FeedPage) -> None:
        previous = self._last_position
        for entry in page.items:
            if previous is not None and entry.position <= previous:
                raise FeedProtocolError(
                    f"Feed {self.feed_url} returned position {entry.position} "
                    f"after {previous}; positions must strictly increase"
                )
            previous = entry.position
        if page.items and page.next_link is None:
            raise FeedProtocolError(f"Feed {self.feed_url} returned items without a next link")

    async def _persist(self, cursor: ClientCursor) -> None:
        if cursor.current_link == self._persisted_link:
            self._cursor = cursor
            return

        policy = self.config.persist_retry
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._cursor_store.save(cursor)
                break
            except Exception as e:
                last_good = self._cursor or ClientCursor.initial(self.feed_url)
                if policy.exhausted(attempt):
                    self._set_state(PollerState.FAILED)
                    logger.error(
                        "Could not persist cursor %s for %s after %d attempts; "
                        "last persisted cursor is %s",
                        cursor.current_link,
                        self.feed_url,
                        attempt,
                        self._persisted_link,
                    )
                    raise CursorPersistenceFailure(last_good, attempt, e) from e
                delay = policy.delay_for(attempt)
                logger.warning(
                    "Persisting cursor %s failed (attempt %d), retrying in %.1fs: %s",
                    cursor.current_link,
                    attempt,
                    delay,
                    e,
                )
                self.emitter.emit(
                    PersistRetrying(link=cursor.current_link, attempt=attempt, delay=delay, error=str(e))
                )
                # Not interruptible: a stop request waits for the cursor to land.
                await anyio.sleep(delay)

        self._cursor = cursor
        self._persisted_link = cursor.current_link
        logger.debug("Cursor for %s persisted at %s", self.feed_url, cursor.current_link)
        self.emitter.emit(CursorPersisted(link=cursor.current_link))

    def _on_transient_failure(self, error: Exception, attempt: int, delay: float) -> None:
        self._set_state(PollerState.BACKOFF)
        link = self._current_link()
        if isinstance(error, HandlerFailure):
            logger.warning(
                "Handler failed on %s, retrying page %s in %.1fs: %s", self.feed_url, link, delay, error
            )
            self.emitter.emit(
                HandlerFailed(
                    link=link,
                    position=error.entry.position,
                    error=str(error.cause),
                    attempt=attempt,
                    delay=delay,
                )
            )
        else:
            logger.warning("Fetching %s failed, retrying in %.1fs: %s", link, delay, error)
            self.emitter.emit(FetchFailed(link=link, error=str(error), attempt=attempt, delay=delay))

    def _current_link(self) -> str:
        return self._cursor.current_link if self._cursor else self.feed_url

    def _set_state(self, state: PollerState) -> None:
        if state != self._state:
            logger.debug("Poller %s: %s -> %s", self.feed_url, self._state.value, state.value)
            self._state = state
