"""Error taxonomy shared by the feed server and the polling client.

Transient conditions (``TransientTransportError``, ``ServerUnavailable``,
``HandlerFailure``) are retried locally by the poller and never reach the
caller. Structural conditions (``ClientRequestError``, ``FeedProtocolError``,
``AllocationExhausted``, ``CursorPersistenceFailure``) are surfaced to the
operator with the last-known-good cursor intact.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from httpfeed_client.cursor import ClientCursor
    from httpfeed_core.entry import FeedEntry


class FeedError(Exception):
    """Base class for every feed error."""


class TransientTransportError(FeedError):
    """Network failure or timeout while talking to a feed."""


class ServerUnavailable(FeedError):
    """The feed server answered with a 5xx (or 429) status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClientRequestError(FeedError):
    """Malformed request: bad offset, bad filter, unknown feed.

    A syntactically valid offset that points at a compacted position is
    *not* a client error; it resolves to the next surviving entry.
    """

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class FeedProtocolError(FeedError):
    """The server answered 2xx with a body that is not a valid feed page."""


class AllocationExhausted(FeedError):
    """The position counter reached the end of the 64-bit range."""


class HandlerFailure(FeedError):
    """Processing of a single feed item failed."""

    def __init__(self, entry: FeedEntry, cause: BaseException) -> None:
        super().__init__(
            f"Handler failed for {entry.type}/{entry.id} at position {entry.position}: "
            f"{type(cause).__name__}: {cause}"
        )
        self.entry = entry
        self.cause = cause


class CursorPersistenceFailure(FeedError):
    """The cursor could not be persisted after all retries.

    Requires operator intervention: advancing without persisting would
    risk skipping items, stalling silently would hide the outage.
    """

    def __init__(self, cursor: ClientCursor, attempts: int, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Failed to persist cursor {cursor.current_link!r} after {attempts} attempts"
            + (f": {type(cause).__name__}: {cause}" if cause is not None else "")
        )
        self.cursor = cursor
        self.attempts = attempts
        self.cause = cause


_TRANSIENT = (TransientTransportError, ServerUnavailable, HandlerFailure, TimeoutError)


def is_transient(exc: BaseException) -> bool:
    """Whether the poller should retry after *exc* without surfacing it."""
    return isinstance(exc, _TRANSIENT)
