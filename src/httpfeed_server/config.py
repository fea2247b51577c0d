"""Server settings, read from the environment and overridable from the CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from httpfeed_core.entry import FeedKind
from httpfeed_core.resolver import DEFAULT_PAGE_LIMIT


def parse_feed_spec(spec: str) -> tuple[str, FeedKind]:
    """Parse ``name`` or ``name:kind`` into a feed name and kind.

    Raises:
        ValueError: On an empty name or an unknown kind.
    """
    name, _, kind = spec.strip().partition(":")
    name = name.strip()
    if not name:
        raise ValueError(f"Invalid feed spec {spec!r}: empty name")
    try:
        return name, FeedKind((kind.strip() or FeedKind.DATA.value).lower())
    except ValueError:
        raise ValueError(
            f"Invalid feed spec {spec!r}: kind must be one of "
            f"{', '.join(k.value for k in FeedKind)}"
        ) from None


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8080
    page_limit: int = DEFAULT_PAGE_LIMIT
    max_wait: float = 30.0
    page_cache_seconds: int = 5
    feeds: list[tuple[str, FeedKind]] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> ServerSettings:
        feeds_raw = os.getenv("HTTPFEED_FEEDS", "")
        return cls(
            host=os.getenv("HTTPFEED_HOST", "127.0.0.1").strip(),
            port=int(os.getenv("HTTPFEED_PORT", "8080")),
            page_limit=int(os.getenv("HTTPFEED_PAGE_LIMIT", str(DEFAULT_PAGE_LIMIT))),
            max_wait=float(os.getenv("HTTPFEED_MAX_WAIT", "30")),
            page_cache_seconds=int(os.getenv("HTTPFEED_PAGE_CACHE_SECONDS", "5")),
            feeds=[parse_feed_spec(p) for p in feeds_raw.split(",") if p.strip()],
        )
