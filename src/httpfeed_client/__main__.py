"""Entry point for tailing a feed from the command line.

Prints one JSON line per item and persists the cursor after each page.

Usage:
    uv run python -m httpfeed_client http://localhost:8080/feeds/orders
    uv run python -m httpfeed_client http://localhost:8080/feeds/orders --cursor-file cursors.json
    uv run python -m httpfeed_client http://localhost:8080/feeds/audit --wait 20
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal

from httpfeed_client.abort import AbortSignal
from httpfeed_client.cursor import CursorStore, InMemoryCursorStore, JsonFileCursorStore
from httpfeed_client.handlers import (
    IdempotentHandler,
    InMemoryProcessedKeys,
    JsonFileProcessedKeys,
    ProcessedKeys,
)
from httpfeed_client.poller import CursorPoller, PollerConfig
from httpfeed_client.transport import HttpFeedTransport
from httpfeed_core.entry import FeedEntry
from httpfeed_core.errors import FeedError
from httpfeed_core.logging_config import setup_logging
from httpfeed_core.models import FeedItem


def print_item(entry: FeedEntry) -> None:
    print(json.dumps(FeedItem.from_entry(entry).to_wire()), flush=True)


async def tail(args: argparse.Namespace, config: PollerConfig) -> None:
    abort = AbortSignal()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, abort.set)

    store: CursorStore = (
        JsonFileCursorStore(args.cursor_file) if args.cursor_file else InMemoryCursorStore()
    )
    keys_file = args.keys_file or (f"{args.cursor_file}.keys" if args.cursor_file else None)
    processed: ProcessedKeys = (
        JsonFileProcessedKeys(keys_file) if keys_file else InMemoryProcessedKeys()
    )

    async with HttpFeedTransport(timeout=args.timeout, wait=args.wait) as transport:
        poller = CursorPoller(
            args.url,
            transport,
            IdempotentHandler(print_item, processed),
            store,
            config=config,
            abort_signal=abort,
        )
        await poller.run()


def main() -> None:
    config = PollerConfig.from_env()

    parser = argparse.ArgumentParser(description="Tail an HTTP feed")
    parser.add_argument("url", help="Feed root URL")
    parser.add_argument("--cursor-file", default=None, help="JSON file persisting the cursor")
    parser.add_argument(
        "--keys-file",
        default=None,
        help="File recording processed items (default: <cursor-file>.keys)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=config.poll_interval,
        help="Seconds to wait when the feed has no new items",
    )
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTP timeout in seconds")
    parser.add_argument("--wait", type=float, default=0.0, help="Long-poll wait in seconds")
    parser.add_argument("--log-level", default="WARNING", help="Log level")
    args = parser.parse_args()

    try:
        setup_logging(args.log_level)
    except ValueError as e:
        parser.error(str(e))
    config.poll_interval = args.poll_interval
    config.fetch_timeout = max(config.fetch_timeout, args.timeout + args.wait)

    try:
        asyncio.run(tail(args, config))
    except FeedError as e:
        logging.getLogger(__name__).error("Feed consumer stopped: %s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
