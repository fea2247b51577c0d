"""HTTP feed client -- cursor-driven, crash-safe consumption of a feed.

One ``CursorPoller`` per feed drives fetch -> process -> persist. Handlers
are wrapped in ``IdempotentHandler`` so replay after a crash has no
duplicate effect.
"""

from httpfeed_client.abort import AbortSignal
from httpfeed_client.cursor import ClientCursor, CursorStore, InMemoryCursorStore, JsonFileCursorStore
from httpfeed_client.events import EventEmitter, PollerEvent
from httpfeed_client.handlers import (
    IdempotentHandler,
    InMemoryProcessedKeys,
    ItemHandler,
    JsonFileProcessedKeys,
    ProcessedKeys,
    delivery_key,
)
from httpfeed_client.poller import CursorPoller, PollerConfig, PollerState, PollResult, RetryPolicy
from httpfeed_client.transport import FeedTransport, HttpFeedTransport

__all__ = [
    "AbortSignal",
    "ClientCursor",
    "CursorPoller",
    "CursorStore",
    "EventEmitter",
    "FeedTransport",
    "HttpFeedTransport",
    "IdempotentHandler",
    "InMemoryCursorStore",
    "InMemoryProcessedKeys",
    "ItemHandler",
    "JsonFileCursorStore",
    "JsonFileProcessedKeys",
    "PollResult",
    "PollerConfig",
    "PollerEvent",
    "PollerState",
    "ProcessedKeys",
    "RetryPolicy",
    "delivery_key",
]
