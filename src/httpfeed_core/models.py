"""Pydantic models for the JSON wire format.

A page on the wire::

    {
      "links": {"self": {"href": "/feeds/orders?offset=123"},
                "next": {"href": "/feeds/orders?offset=126"}},
      "items": [
        {"position": 124,
         "meta": {"type": "com.example.order", "id": "123456",
                  "created": "2026-01-01T00:00:00Z"},
         "data": {...}}
      ]
    }

``operation`` is only written for deletes and ``idempotencyKey`` only
when set. A put always carries ``data`` (``null`` when empty) so that an
absent ``data`` unambiguously marks a tombstone.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from httpfeed_core.entry import FeedEntry, Operation
from httpfeed_core.page import FeedPage

# ------------------------------------------------------------------ #
# Page models
# ------------------------------------------------------------------ #


class Link(BaseModel):
    href: str


class PageLinks(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    self_: Link = Field(..., alias="self")
    next: Link | None = None


class ItemMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., min_length=1)
    id: str = Field(..., min_length=1)
    operation: Operation = Operation.PUT
    created: datetime | None = None
    idempotency_key: str | None = Field(None, alias="idempotencyKey")


class FeedItem(BaseModel):
    """One item of a page."""

    position: int
    meta: ItemMeta
    links: dict[str, Link] | None = None
    data: Any | None = None

    @classmethod
    def from_entry(cls, entry: FeedEntry) -> FeedItem:
        return cls(
            position=entry.position,
            meta=ItemMeta(
                type=entry.type,
                id=entry.id,
                operation=entry.operation,
                created=entry.created,
                idempotency_key=entry.idempotency_key,
            ),
            data=entry.data,
        )

    def to_entry(self) -> FeedEntry:
        return FeedEntry(
            position=self.position,
            type=self.meta.type,
            id=self.meta.id,
            operation=self.meta.operation,
            created=self.meta.created,
            idempotency_key=self.meta.idempotency_key,
            data=self.data,
        )

    def to_wire(self) -> dict[str, Any]:
        body = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if self.meta.operation == Operation.PUT:
            body["meta"].pop("operation", None)
            body.setdefault("data", None)
        return body


class FeedPageModel(BaseModel):
    """A full feed response."""

    links: PageLinks
    items: list[FeedItem] = Field(default_factory=list)

    @classmethod
    def from_page(cls, page: FeedPage) -> FeedPageModel:
        return cls(
            links=PageLinks(
                self_=Link(href=page.self_link),
                next=Link(href=page.next_link) if page.next_link else None,
            ),
            items=[FeedItem.from_entry(e) for e in page.items],
        )

    def to_page(self) -> FeedPage:
        return FeedPage(
            self_link=self.links.self_.href,
            next_link=self.links.next.href if self.links.next else None,
            items=tuple(item.to_entry() for item in self.items),
        )

    def to_wire(self) -> dict[str, Any]:
        links: dict[str, Any] = {"self": {"href": self.links.self_.href}}
        if self.links.next is not None:
            links["next"] = {"href": self.links.next.href}
        return {"links": links, "items": [item.to_wire() for item in self.items]}


# ------------------------------------------------------------------ #
# Publishing models
# ------------------------------------------------------------------ #


class AppendRequest(BaseModel):
    """POST /feeds/{name} request body."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., min_length=1, description="Entry type discriminator")
    id: str = Field(..., min_length=1, description="Caller-assigned logical key")
    operation: Operation = Field(Operation.PUT, description="put or delete")
    idempotency_key: str | None = Field(None, alias="idempotencyKey")
    data: Any | None = Field(None, description="Payload; must be absent for delete")


class RetentionRequest(BaseModel):
    """POST /feeds/{name}/retention request body."""

    before: datetime = Field(..., description="Entries created before this instant expire")


class FeedInfo(BaseModel):
    """One row of GET /feeds."""

    name: str
    kind: str
    entries: int
    last_position: int | None = None
