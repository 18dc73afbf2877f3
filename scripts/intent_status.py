#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json

from dotenv import load_dotenv

from intent_solver.daemon_runtime.logging import setup_logger
from intent_solver.storage import StorageGateway, StorageSettings


def parse_args() -> argparse.Namespace:
    load_dotenv()
    settings = StorageSettings.from_env()
    parser = argparse.ArgumentParser(
        description="Show the solver status snapshot and queue operator clear requests.",
    )
    parser.add_argument("--redis-url", default=settings.redis_url)
    parser.add_argument(
        "--clear",
        nargs="+",
        metavar="INTENT_ID",
        default=[],
        help="Intent ids to drop from the running solver's tracking on its next status tick.",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print counts only instead of the full snapshot.",
    )
    return parser.parse_args()


def summarize(snapshot: dict[str, object]) -> dict[str, object]:
    summary: dict[str, object] = {}
    for key in ("pending", "retry", "gateway_unavailable", "processing", "settlement_queue"):
        value = snapshot.get(key)
        summary[key] = len(value) if isinstance(value, (list, dict)) else value
    for key in ("gateway_online", "in_flight", "recently_completed", "updated_at", "run_id"):
        summary[key] = snapshot.get(key)
    return summary


async def run(args: argparse.Namespace) -> None:
    settings = StorageSettings.from_env()
    settings.redis_url = args.redis_url
    storage = StorageGateway(settings, setup_logger("WARNING"))

    await storage.connect()
    try:
        if args.clear:
            added = await storage.request_clear(args.clear)
            print(f"[ok] queued {added} clear request(s): {', '.join(args.clear)}")

        snapshot = await storage.read_status()
        if snapshot is None:
            print("[info] no status snapshot found; is the solver running?")
            return
        payload = summarize(snapshot) if args.summary else snapshot
        print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    finally:
        await storage.close()


def main() -> None:
    asyncio.run(run(parse_args()))


if __name__ == "__main__":
    main()
