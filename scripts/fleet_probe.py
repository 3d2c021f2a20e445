#!/usr/bin/env python3
"""Developer probe for a live binfleet backing store.

Subcommands:

- ``check``   verify the telemetry table is reachable
- ``recent``  print the most recent telemetry rows
- ``send``    insert a test report for one device
- ``watch``   run the engine and print every applied update

Reads ``BINFLEET_SUPABASE_URL`` / ``BINFLEET_SUPABASE_KEY`` (and the other
``BINFLEET_*`` variables) from the environment.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

import aiohttp  # noqa: E402

from binfleet import FleetConfig, FleetEngine, NormalizedUpdate  # noqa: E402
from binfleet._transport import PostgrestTransport  # noqa: E402
from binfleet.exceptions import FleetError  # noqa: E402
from binfleet.ingestion.records import build_report  # noqa: E402

_LOG = logging.getLogger("fleet_probe")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe a binfleet backing store.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check", help="Check that the telemetry table is reachable")

    recent = sub.add_parser("recent", help="Print the most recent rows")
    recent.add_argument("--limit", type=int, default=10, help="Number of rows (default: 10)")

    send = sub.add_parser("send", help="Insert a test report")
    send.add_argument("device_id", type=int)
    send.add_argument("fill_level", type=float)
    send.add_argument("--battery", type=float, default=None, help="Battery level (default: 100)")

    watch = sub.add_parser("watch", help="Run the engine and print applied updates")
    watch.add_argument("--seconds", type=float, default=60.0, help="How long to watch (default: 60)")
    watch.add_argument("--no-synthetic", action="store_true", help="Only show sensor-backed updates")
    return parser.parse_args()


def _print_update(update: NormalizedUpdate) -> None:
    status = update.status.value if update.status is not None else "-"
    print(
        f"{update.observed_at.isoformat()} device={update.device_id} "
        f"fill={update.fill_level:.0f}% battery={update.battery_level} status={status} source={update.source}"
    )


async def _watch(config: FleetConfig, seconds: float) -> None:
    async with FleetEngine(config) as engine:
        engine.subscribe(_print_update)
        engine.connection.add_observer(lambda prev, cur: _LOG.info("push connection %s -> %s", prev, cur))
        await asyncio.sleep(seconds)
        stats = engine.stats()
        print(
            f"total={stats.total_bins} critical={stats.critical_bins} "
            f"avg_fill={stats.avg_fill_level:.1f} efficiency={stats.efficiency_score} "
            f"device_live={engine.device_live}"
        )


async def main() -> int:
    args = _parse_args()
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    overrides: dict[str, object] = {}
    if args.command == "watch" and args.no_synthetic:
        overrides["synthetic_enabled"] = False
    config = FleetConfig.from_env(**overrides)
    if not config.backing_store.configured:
        print("BINFLEET_SUPABASE_URL / BINFLEET_SUPABASE_KEY are not set", file=sys.stderr)
        return 2

    if args.command == "watch":
        await _watch(config, args.seconds)
        return 0

    async with aiohttp.ClientSession() as session:
        transport = PostgrestTransport(config.backing_store, session)
        if args.command == "check":
            try:
                await transport.ping()
            except FleetError as exc:
                print(f"unreachable: {exc}")
                return 1
            print("reachable")
            return 0
        if args.command == "recent":
            rows = await transport.fetch_recent(args.limit)
            print(json.dumps(rows, indent=2, default=str, ensure_ascii=False))
            return 0
        if args.command == "send":
            row = await transport.insert(build_report(args.device_id, args.fill_level, args.battery))
            print(json.dumps(row, indent=2, default=str, ensure_ascii=False))
            return 0
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
