"""Feed entry data model.

An entry is immutable once appended. ``operation`` is a tagged variant
(``put`` | ``delete``) rather than a class hierarchy; a ``delete`` entry
carries no ``data`` and acts as a tombstone for its ``id``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

MAX_POSITION = 2**63 - 1


class Operation(StrEnum):
    """What an entry does to the resource identified by its ``id``."""

    PUT = "put"
    DELETE = "delete"


class FeedKind(StrEnum):
    """Data feeds are compacted per id; event feeds keep every entry."""

    DATA = "data"
    EVENT = "event"


@dataclass(frozen=True)
class FeedEntry:
    """A single item of a feed, identified by its server-assigned position."""

    position: int
    type: str
    id: str
    operation: Operation = Operation.PUT
    created: datetime | None = None
    idempotency_key: str | None = None
    data: Any | None = None

    @property
    def is_tombstone(self) -> bool:
        return self.operation == Operation.DELETE

    @property
    def description(self) -> str:
        """Human-readable one-line summary of this entry."""
        return f"{self.type}/{self.id} {self.operation.value} @ {self.position}"


def utcnow() -> datetime:
    return datetime.now(UTC)
