"""Feed pages and the builder that links them together.

``self_link`` always echoes the requested offset. ``next_link`` exists
if and only if the page has items, and points past the last one. A page
without ``next_link`` tells the client to wait before asking again.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from urllib.parse import urlencode

from httpfeed_core.entry import FeedEntry

OFFSET_PARAM = "offset"


@dataclass(frozen=True)
class FeedPage:
    """One response of a feed: links plus items in ascending position order."""

    self_link: str
    next_link: str | None = None
    items: tuple[FeedEntry, ...] = ()

    @property
    def has_more(self) -> bool:
        """Whether the client may fetch again without delay."""
        return self.next_link is not None

    @property
    def last_position(self) -> int | None:
        return self.items[-1].position if self.items else None


class PageBuilder:
    """Builds pages for one feed URL.

    *params* are pass-through query parameters (e.g. ``filter[type]``)
    that are kept on every link so the client stays on the same view.
    """

    def __init__(self, base_url: str, params: Mapping[str, str] | None = None) -> None:
        self.base_url = base_url
        self.params = {k: v for k, v in (params or {}).items() if k != OFFSET_PARAM}

    def link_for(self, offset: int | str | None) -> str:
        query: dict[str, str] = dict(self.params)
        if offset is not None and offset != "":
            query[OFFSET_PARAM] = str(offset)
        if not query:
            return self.base_url
        separator = "&" if "?" in self.base_url else "?"
        return f"{self.base_url}{separator}{urlencode(query, safe='[]')}"

    def build(self, requested_offset: int | str | None, items: Sequence[FeedEntry]) -> FeedPage:
        items = tuple(items)
        next_link = self.link_for(items[-1].position) if items else None
        return FeedPage(
            self_link=self.link_for(requested_offset),
            next_link=next_link,
            items=items,
        )
