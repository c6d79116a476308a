"""
Command-line access to the synchronization engine.

Usage:
    python -m tokensync fetch <token>
    python -m tokensync show <token>
    python -m tokensync sync <token> [--ttl MS] [--swr]
"""
import argparse
import asyncio
import sys
from typing import List, Optional

from config.settings import settings

from .cache.core import UpdateSource
from .engine import SyncEngine
from .errors import FetchError
from .utils.helpers import configure_logging, describe_entry, format_document


async def _fetch(engine: SyncEngine, token: str) -> int:
    document = await engine.fetch(token)
    print(format_document(document))
    return 0


def _show(engine: SyncEngine, token: str) -> int:
    entry = engine.store.read(token)
    print(describe_entry(entry))
    if entry is None:
        return 1
    print(format_document(entry.payload))
    return 0


async def _sync(engine: SyncEngine, token: str, ttl_ms: Optional[int], swr: bool) -> int:
    failures: List[BaseException] = []

    def show(document, source: UpdateSource) -> None:
        print(f"--- {source.value}")
        print(format_document(document))

    engine.attach(token, show, ttl_ms=ttl_ms, swr=swr, eager=True, on_error=failures.append)
    await engine.drain()
    for error in failures:
        print(f"failed to load: {error}", file=sys.stderr)
    return 1 if failures else 0


async def _run(args: argparse.Namespace) -> int:
    async with SyncEngine.from_settings(settings) as engine:
        if args.command == "fetch":
            return await _fetch(engine, args.token)
        if args.command == "show":
            return _show(engine, args.token)
        return await _sync(engine, args.token, args.ttl, args.swr)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch and cache token documents")
    parser.add_argument(
        "--log-level",
        default=settings.tokensync_log_level,
        help=f"Logging level (default: {settings.tokensync_log_level})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch a document and cache it")
    fetch_parser.add_argument("token")

    show_parser = subparsers.add_parser("show", help="Print the cached document")
    show_parser.add_argument("token")

    sync_parser = subparsers.add_parser("sync", help="Run one synchronization round")
    sync_parser.add_argument("token")
    sync_parser.add_argument(
        "--ttl",
        type=int,
        default=None,
        help=f"Freshness TTL in ms (default: {settings.tokensync_default_ttl_ms})",
    )
    sync_parser.add_argument("--swr", action="store_true", help="Revalidate even when fresh")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        return asyncio.run(_run(args))
    except FetchError as e:
        print(f"failed to load: {e}", file=sys.stderr)
        return 1
