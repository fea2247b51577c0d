"""Starlette application exposing feeds over HTTP.

Authentication and filter parsing are pass-through concerns: an optional
``entry_filter`` hook turns the non-offset query parameters of a request
into a predicate before the offset resolver is invoked.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from functools import partial

import anyio
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from httpfeed_core.errors import AllocationExhausted, ClientRequestError
from httpfeed_core.models import AppendRequest, FeedInfo, FeedItem, FeedPageModel, RetentionRequest
from httpfeed_core.page import OFFSET_PARAM, PageBuilder
from httpfeed_core.store import EntryPredicate
from httpfeed_server.config import ServerSettings
from httpfeed_server.feeds import FeedRegistry

logger = logging.getLogger(__name__)

TIMEOUT_PARAM = "timeout"

# Turns pass-through query parameters into a predicate. Raises
# ClientRequestError for parameters it cannot interpret.
EntryFilterFactory = Callable[[Mapping[str, str]], EntryPredicate | None]

# Global feed registry and settings (set during app creation)
_registry: FeedRegistry | None = None
_settings: ServerSettings = ServerSettings()
_entry_filter: EntryFilterFactory | None = None


def get_registry() -> FeedRegistry:
    if _registry is None:
        raise RuntimeError("FeedRegistry not initialized")
    return _registry


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _parse_offset(raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ClientRequestError(f"Invalid offset {raw!r}: must be an integer") from None


def _parse_wait(raw: str | None) -> float:
    """Long-poll timeout in milliseconds, capped at the server's max wait."""
    if raw is None or raw == "":
        return 0.0
    try:
        millis = int(raw)
    except ValueError:
        raise ClientRequestError(f"Invalid timeout {raw!r}: must be milliseconds") from None
    if millis < 0:
        raise ClientRequestError(f"Invalid timeout {raw!r}: must not be negative")
    return min(millis / 1000.0, _settings.max_wait)


def _build_predicate(params: Mapping[str, str]) -> EntryPredicate | None:
    if not params:
        return None
    if _entry_filter is None:
        raise ClientRequestError(f"Unsupported query parameters: {', '.join(sorted(params))}")
    return _entry_filter(params)


def _accepts_json(accept: str | None) -> bool:
    if not accept:
        return True
    media_types = {part.split(";")[0].strip().lower() for part in accept.split(",")}
    return bool(media_types & {"application/json", "application/*", "*/*"})


def _cache_control(has_items: bool, filtered: bool) -> str:
    if not has_items or filtered or _settings.page_cache_seconds <= 0:
        return "no-cache"
    return f"public, max-age={_settings.page_cache_seconds}"


# ------------------------------------------------------------------ #
# GET /feeds -- list feeds
# ------------------------------------------------------------------ #


async def list_feeds(request: Request) -> JSONResponse:
    """List the published feeds."""
    registry = get_registry()
    feeds = []
    for store in registry.stores():
        info = FeedInfo(
            name=store.name,
            kind=store.kind.value,
            entries=len(store),
            last_position=store.last_position,
        )
        feeds.append(info.model_dump())
    return JSONResponse({"feeds": feeds})


# ------------------------------------------------------------------ #
# GET /feeds/{name} -- read a page
# ------------------------------------------------------------------ #


async def get_feed(request: Request) -> JSONResponse:
    """Return the entries after ``offset`` as a linked page."""
    registry = get_registry()
    name = request.path_params["name"]
    resolver = registry.resolver(name)

    if resolver is None:
        return _error(f"Feed {name} not found", 404)

    if not _accepts_json(request.headers.get("accept")):
        return _error("Only application/json is available", 406)

    raw_offset = request.query_params.get(OFFSET_PARAM)
    passthrough = {
        k: v for k, v in request.query_params.items() if k not in (OFFSET_PARAM, TIMEOUT_PARAM)
    }

    try:
        offset = _parse_offset(raw_offset)
        wait = _parse_wait(request.query_params.get(TIMEOUT_PARAM))
        predicate = _build_predicate(passthrough)
    except ClientRequestError as e:
        return _error(str(e), e.status_code)

    if wait > 0:
        items = await resolver.wait_for_entries(offset, wait, predicate)
    else:
        items = resolver.query(offset, predicate=predicate)

    page = PageBuilder(request.url.path, passthrough).build(raw_offset, items)

    return JSONResponse(
        FeedPageModel.from_page(page).to_wire(),
        headers={"Cache-Control": _cache_control(bool(items), bool(passthrough))},
    )


# ------------------------------------------------------------------ #
# POST /feeds/{name} -- publish an entry
# ------------------------------------------------------------------ #


async def append_entry(request: Request) -> JSONResponse:
    """Append a put or delete entry to a feed."""
    registry = get_registry()
    name = request.path_params["name"]
    store = registry.get(name)

    if store is None:
        return _error(f"Feed {name} not found", 404)

    try:
        body = await request.json()
    except Exception:  # noqa: BLE001
        return _error("Invalid JSON body", 400)

    try:
        req = AppendRequest.model_validate(body)
    except ValidationError as e:
        return JSONResponse({"error": "Invalid entry", "detail": str(e)}, status_code=400)

    try:
        # Appends hold the store lock; keep them off the event loop.
        entry = await anyio.to_thread.run_sync(
            partial(
                store.append,
                req.type,
                req.id,
                req.operation,
                req.data,
                idempotency_key=req.idempotency_key,
            )
        )
    except ValueError as e:
        return _error(str(e), 400)
    except AllocationExhausted as e:
        logger.error("Cannot append to feed %s: %s", name, e)
        return _error(str(e), 503)

    return JSONResponse(FeedItem.from_entry(entry).to_wire(), status_code=201)


# ------------------------------------------------------------------ #
# POST /feeds/{name}/retention -- apply a retention cutoff
# ------------------------------------------------------------------ #


async def apply_retention(request: Request) -> JSONResponse:
    """Expire entries created before the given instant."""
    registry = get_registry()
    name = request.path_params["name"]
    store = registry.get(name)

    if store is None:
        return _error(f"Feed {name} not found", 404)

    try:
        body = await request.json()
    except Exception:  # noqa: BLE001
        return _error("Invalid JSON body", 400)

    try:
        req = RetentionRequest.model_validate(body)
    except ValidationError as e:
        return JSONResponse({"error": "Invalid retention request", "detail": str(e)}, status_code=400)

    if req.before.tzinfo is None:
        return _error("'before' must include a timezone", 400)

    removed = store.apply_retention(req.before)
    return JSONResponse({"feed": name, "removed": removed})


# ------------------------------------------------------------------ #
# App factory
# ------------------------------------------------------------------ #


def create_app(
    registry: FeedRegistry | None = None,
    settings: ServerSettings | None = None,
    *,
    entry_filter: EntryFilterFactory | None = None,
) -> Starlette:
    """Create the Starlette application serving *registry*."""
    global _registry, _settings, _entry_filter  # noqa: PLW0603
    _settings = settings or ServerSettings()
    _registry = registry or FeedRegistry(page_limit=_settings.page_limit)
    _entry_filter = entry_filter

    routes = [
        Route("/feeds", list_feeds, methods=["GET"]),
        Route("/feeds/{name}", get_feed, methods=["GET"]),
        Route("/feeds/{name}", append_entry, methods=["POST"]),
        Route("/feeds/{name}/retention", apply_retention, methods=["POST"]),
    ]

    app = Starlette(routes=routes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app
