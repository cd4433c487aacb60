# ventasync/cli.py
# Command-line client for the sync layer.
#   ventasync get ventas
#   ventasync watch productos --interval 5 --cycles 3

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from typing import Any

from ventasync.config import SyncSettings
from ventasync.errors import SyncError
from ventasync.logging_conf import setup_logging
from ventasync.service import SyncService
from ventasync.version import SERVICE_NAME, SERVICE_VERSION


def _positive_float(raw: str) -> float:
    value = float(raw)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {raw}")
    return value


def _dump(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2), flush=True)


async def _get(settings: SyncSettings, resource: str) -> int:
    async with SyncService(settings) as service:
        _dump(await service.resource(resource).obtener())
    return 0


async def _watch(
    settings: SyncSettings, resource: str, interval_s: float | None, cycles: int | None
) -> int:
    async with SyncService(settings) as service:
        service.resource(resource)  # validates the name
        done = asyncio.Event()
        seen = 0

        def on_change(payload: Any) -> None:
            nonlocal seen
            seen += 1
            _dump({"resource": resource, "change": seen, "payload": payload})
            if cycles is not None and seen >= cycles:
                done.set()

        if not service.poller.start_polling(resource, on_change, interval_s):
            print(f"polling is disabled for {resource}", file=sys.stderr)
            return 2
        await done.wait()
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog=SERVICE_NAME, description="VentaSoft data sync client")
    ap.add_argument("--version", action="version", version=f"{SERVICE_NAME} {SERVICE_VERSION}")
    ap.add_argument("--api-url", default=None, help="Backend base URL (default: $VS_API_URL)")
    ap.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING...")
    sub = ap.add_subparsers(dest="command", required=True)

    g = sub.add_parser("get", help="Read a resource (through the cache) and print it")
    g.add_argument("resource")

    w = sub.add_parser("watch", help="Poll a resource and print every change")
    w.add_argument("resource")
    w.add_argument("--interval", type=_positive_float, default=None, help="Seconds between polls")
    w.add_argument("--cycles", type=int, default=None, help="Exit after N changes")
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, plain=True)

    settings = SyncSettings.from_env()
    if args.api_url:
        settings = replace(settings, api_url=args.api_url.rstrip("/"))

    resource = args.resource.strip().lower()
    try:
        if args.command == "get":
            return asyncio.run(_get(settings, resource))
        return asyncio.run(_watch(settings, resource, args.interval, args.cycles))
    except SyncError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
