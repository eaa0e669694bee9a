"""
Command line entry point.

Usage:
    python -m lucidlookup serve [--host HOST] [--port PORT]
    python -m lucidlookup refresh
    python -m lucidlookup stats
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import uvicorn

from lucidlookup.logging_setup import init_logging
from lucidlookup.pipeline.fetcher import FetchError
from lucidlookup.pipeline.mirror import MirrorError, to_epoch_ms
from lucidlookup.pipeline.normalize import ParseError
from lucidlookup.pipeline.refresh import RefreshTrigger
from lucidlookup.settings import Settings, settings

logger = logging.getLogger("lucidlookup")


def serve(app_settings: Settings, host: str | None, port: int | None) -> int:
    # The module-level app is built from the same settings singleton.
    uvicorn.run(
        "lucidlookup.main:app",
        host=host or app_settings.host,
        port=port or app_settings.port,
        log_level=app_settings.log_level.lower(),
    )
    return 0


async def _refresh_once(app_settings: Settings) -> int:
    from lucidlookup.main import build_coordinator

    coordinator = build_coordinator(app_settings)
    try:
        outcome = await coordinator.refresh(force=True, trigger=RefreshTrigger.MANUAL)
    except (FetchError, ParseError) as e:
        logger.error("Refresh failed: %s", e)
        return 1
    finally:
        coordinator.fetcher.close()
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0


def refresh(app_settings: Settings) -> int:
    return asyncio.run(_refresh_once(app_settings))


def stats(app_settings: Settings) -> int:
    from lucidlookup.pipeline.mirror import SnapshotMirror

    mirror = SnapshotMirror(app_settings.cache_path)
    try:
        snapshot = mirror.load()
    except MirrorError as e:
        logger.error("%s", e)
        return 1
    if snapshot is None:
        print(json.dumps({"path": str(mirror.path), "exists": False}, indent=2))
        return 1
    print(
        json.dumps(
            {
                "path": str(mirror.path),
                "exists": True,
                "count": len(snapshot),
                "lastUpdate": to_epoch_ms(snapshot.fetched_at) if snapshot.fetched_at else None,
                "lastUpdateISO": snapshot.fetched_at.isoformat() if snapshot.fetched_at else None,
            },
            indent=2,
        )
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="lucidlookup", description="LUCID register lookup service")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    sub.add_parser("refresh", help="Download the register once and write the cache file")
    sub.add_parser("stats", help="Show metadata of the cache file")

    args = parser.parse_args(argv)
    init_logging(settings.log_level)

    if args.command == "serve":
        return serve(settings, args.host, args.port)
    if args.command == "refresh":
        return refresh(settings)
    return stats(settings)


if __name__ == "__main__":
    sys.exit(main())
