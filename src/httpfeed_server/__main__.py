"""Entry point for running the feed server.

Usage:
    uv run python -m httpfeed_server --feed orders --feed audit:event
    uv run python -m httpfeed_server --port 9000 --page-limit 500
    HTTPFEED_FEEDS=orders,audit:event uv run python -m httpfeed_server
"""

from __future__ import annotations

import argparse

import uvicorn

from httpfeed_core.logging_config import setup_logging
from httpfeed_server.app import create_app
from httpfeed_server.config import ServerSettings, parse_feed_spec
from httpfeed_server.feeds import FeedRegistry


def main() -> None:
    settings = ServerSettings.from_env()

    parser = argparse.ArgumentParser(description="HTTP feed server")
    parser.add_argument("--host", default=settings.host, help="Bind host")
    parser.add_argument("--port", type=int, default=settings.port, help="Bind port")
    parser.add_argument(
        "--feed",
        action="append",
        default=[],
        metavar="NAME[:KIND]",
        help="Feed to publish (kind: data or event, default data). Repeatable.",
    )
    parser.add_argument(
        "--page-limit",
        type=int,
        default=settings.page_limit,
        help="Max items per page",
    )
    parser.add_argument(
        "--max-wait",
        type=float,
        default=settings.max_wait,
        help="Max long-poll wait in seconds",
    )
    parser.add_argument("--log-level", default="INFO", help="Log level")
    args = parser.parse_args()

    try:
        setup_logging(args.log_level)
    except ValueError as e:
        parser.error(str(e))

    settings.host = args.host
    settings.port = args.port
    settings.page_limit = args.page_limit
    settings.max_wait = args.max_wait
    if args.feed:
        try:
            settings.feeds = [parse_feed_spec(spec) for spec in args.feed]
        except ValueError as e:
            parser.error(str(e))

    registry = FeedRegistry(page_limit=settings.page_limit)
    for name, kind in settings.feeds:
        registry.create(name, kind)

    app = create_app(registry, settings)

    print(f"Feed server starting on http://{settings.host}:{settings.port}")
    print(f"Page limit: {settings.page_limit}, max long-poll wait: {settings.max_wait}s")
    print()
    print("Feeds:")
    for name, kind in settings.feeds:
        print(f"  GET  http://{settings.host}:{settings.port}/feeds/{name}  ({kind.value})")
    if not settings.feeds:
        print("  (none configured -- pass --feed NAME[:KIND])")
    print()

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
