"""Client cursors and the stores that persist them.

A cursor is the link a consumer will fetch next: the feed root URL on
first subscription, then the last ``next`` link whose page was fully
processed.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Protocol

import anyio


@dataclass(frozen=True)
class ClientCursor:
    """Durable pointer marking a client's progress through one feed."""

    feed_url: str
    current_link: str

    @classmethod
    def initial(cls, feed_url: str) -> ClientCursor:
        return cls(feed_url=feed_url, current_link=feed_url)

    def advance(self, link: str) -> ClientCursor:
        return ClientCursor(feed_url=self.feed_url, current_link=link)


class CursorStore(Protocol):
    """Durable storage for client cursors, keyed by feed URL."""

    async def load(self, feed_url: str) -> ClientCursor | None: ...

    async def save(self, cursor: ClientCursor) -> None: ...


class InMemoryCursorStore:
    """Cursor store for tests and throwaway consumers."""

    def __init__(self) -> None:
        self._cursors: dict[str, ClientCursor] = {}
        self.save_count = 0

    async def load(self, feed_url: str) -> ClientCursor | None:
        return self._cursors.get(feed_url)

    async def save(self, cursor: ClientCursor) -> None:
        self._cursors[cursor.feed_url] = cursor
        self.save_count += 1


class JsonFileCursorStore:
    """Keeps every cursor in one JSON document on disk.

    Writes go to a temporary file in the same directory that is then
    atomically renamed over the target, so a crash leaves either the old
    or the new document. File IO runs in a worker thread.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self, feed_url: str) -> ClientCursor | None:
        cursors = await anyio.to_thread.run_sync(self._read)
        link = cursors.get(feed_url)
        if link is None:
            return None
        return ClientCursor(feed_url=feed_url, current_link=link)

    async def save(self, cursor: ClientCursor) -> None:
        await anyio.to_thread.run_sync(self._write, cursor)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open(encoding="utf-8") as f:
            data = json.load(f)
        return {c["feed_url"]: c["current_link"] for c in data.get("cursors", [])}

    def _write(self, cursor: ClientCursor) -> None:
        cursors = self._read()
        cursors[cursor.feed_url] = cursor.current_link
        document = {
            "cursors": [
                asdict(ClientCursor(feed_url=url, current_link=link))
                for url, link in sorted(cursors.items())
            ]
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
