#!/usr/bin/env python3
"""Watch one database path and print every change.

Reads the database location from ``RTDB_DATABASE_URL`` or ``RTDB_PROJECT_ID``
and the identity token from ``--token`` or ``RTDB_AUTH_TOKEN``.

Use this to check that a path streams the way you expect before wiring an
endpoint into an application.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyrtdb import DatabaseEndpoint, RtdbClient, RtdbConfig, RtdbError  # noqa: E402


@dataclass
class WatchStats:
    started_at: float
    changes: int = 0
    last_change_at: float | None = None


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print live changes of a realtime database path.",
    )
    parser.add_argument(
        "path",
        help="Database path to watch, e.g. 'rooms/lobby'.",
    )
    parser.add_argument(
        "--token",
        default=os.environ.get("RTDB_AUTH_TOKEN"),
        help="Identity token sent with every request (default: $RTDB_AUTH_TOKEN).",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--no-refetch",
        action="store_true",
        help="Adopt root events directly instead of re-reading the whole path.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print values as indented JSON.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_value(value: Any, *, pretty: bool, stats: WatchStats) -> None:
    stats.changes += 1
    stats.last_change_at = time.time()
    stamp = time.strftime("%H:%M:%S", time.localtime(stats.last_change_at))
    text = json.dumps(value, indent=2 if pretty else None, ensure_ascii=False, default=str)
    print(f"[watch] {stamp} #{stats.changes}: {text}")


async def _watch(args: argparse.Namespace, config: RtdbConfig, stats: WatchStats) -> None:
    token = args.token
    async with RtdbClient(config, token_provider=(lambda: token) if token else None) as client:
        async with DatabaseEndpoint(client, Any, args.path, full_refetch=not args.no_refetch) as endpoint:
            endpoint.subscribe(lambda value: _print_value(value, pretty=args.json, stats=stats))
            initial = await endpoint.get()
            print(f"[watch] {endpoint.path}: {json.dumps(initial, ensure_ascii=False, default=str)}")

            deadline = time.monotonic() + args.duration if args.duration > 0 else None
            while endpoint.is_streaming:
                if deadline is not None and time.monotonic() >= deadline:
                    break
                await asyncio.sleep(0.5)

            if endpoint.stream_error is not None:
                print(f"[watch] Stream stopped: {endpoint.stream_error.__cause__}", file=sys.stderr)


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = RtdbConfig.from_env()
    except RtdbError as exc:
        print(f"[watch] Configuration error: {exc}", file=sys.stderr)
        return 2

    stats = WatchStats(started_at=time.time())
    try:
        asyncio.run(_watch(args, config, stats))
    except KeyboardInterrupt:
        pass
    except RtdbError as exc:  # pragma: no cover - network/system interaction
        print(f"[watch] Failed: {exc}", file=sys.stderr)
        return 1

    runtime = time.time() - stats.started_at
    print(f"[watch] Summary: {stats.changes} change(s) in {runtime:.1f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
