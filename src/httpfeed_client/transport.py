"""httpx transport: fetches one feed page and classifies failures.

Failure mapping:
- network errors and timeouts -> TransientTransportError
- 5xx and 429 -> ServerUnavailable
- other 4xx -> ClientRequestError
- 2xx with an unparseable body -> FeedProtocolError
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError

from httpfeed_core.errors import (
    ClientRequestError,
    FeedProtocolError,
    ServerUnavailable,
    TransientTransportError,
)
from httpfeed_core.models import FeedPageModel
from httpfeed_core.page import FeedPage

logger = logging.getLogger(__name__)


class FeedTransport(Protocol):
    """Fetches the page behind a feed link."""

    async def fetch(self, link: str) -> FeedPage: ...


class HttpFeedTransport:
    """Fetches feed pages over HTTP.

    Usage::

        async with HttpFeedTransport(timeout=10.0) as transport:
            page = await transport.fetch("http://orders.example/feeds/orders")

    *wait* enables server-side long polling: the server may hold an empty
    response for up to that many seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 10.0,
        wait: float = 0.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout + wait)
        self._wait = wait
        self._headers = {"Accept": "application/json", **(headers or {})}

    async def __aenter__(self) -> HttpFeedTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, link: str) -> FeedPage:
        url = httpx.URL(link)
        if self._wait > 0:
            # Keep the offset already in the link.
            url = url.copy_merge_params({"timeout": str(int(self._wait * 1000))})
        try:
            response = await self._client.get(url, headers=self._headers)
        except httpx.TimeoutException as e:
            raise TransientTransportError(f"Timed out fetching {link}: {e}") from e
        except httpx.TransportError as e:
            raise TransientTransportError(f"Transport error fetching {link}: {e}") from e

        status = response.status_code
        if status >= 500 or status == 429:
            raise ServerUnavailable(f"Feed server returned {status} for {link}", status)
        if status >= 400:
            raise ClientRequestError(
                f"Feed server rejected {link} with {status}: {response.text[:500]}",
                status,
            )

        try:
            model = FeedPageModel.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise FeedProtocolError(f"Invalid feed page from {link}: {e}") from e

        page = model.to_page()
        logger.debug("Fetched %d items from %s", len(page.items), link)
        return FeedPage(
            self_link=self._absolute(link, page.self_link),
            next_link=self._absolute(link, page.next_link) if page.next_link else None,
            items=page.items,
        )

    @staticmethod
    def _absolute(base: str, link: str) -> str:
        return str(httpx.URL(base).join(link))
