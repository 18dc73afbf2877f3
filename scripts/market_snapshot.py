#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import time

from dotenv import load_dotenv

from intent_solver.daemon_runtime.logging import setup_logger
from intent_solver.gateways import HttpMatchingGateway, MarketDataClient


def parse_args() -> argparse.Namespace:
    load_dotenv()
    parser = argparse.ArgumentParser(
        description="Print cached price and orderbook reads for one market.",
    )
    parser.add_argument("market_id")
    parser.add_argument("--outcome", type=int, choices=(0, 1), default=1)
    parser.add_argument(
        "--base-url",
        default=os.getenv("MATCHING_SERVICE_URL", "http://localhost:8080"),
        help="Matching service base URL (default: MATCHING_SERVICE_URL).",
    )
    parser.add_argument(
        "--rounds",
        type=int,
        default=1,
        help="Repeat the reads this many times to observe cache hits and backoff.",
    )
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between rounds.")
    parser.add_argument("--timeout", type=float, default=10.0)
    parser.add_argument("--verbose", action="store_true", help="Emit cache log lines on stderr.")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    logger = setup_logger("DEBUG" if args.verbose else "WARNING")
    matching = HttpMatchingGateway(
        logger=logger,
        base_url=args.base_url,
        request_timeout_seconds=args.timeout,
    )
    client = MarketDataClient(logger=logger, clock=time.time, matching=matching)

    await matching.connect()
    try:
        for round_index in range(max(1, args.rounds)):
            if round_index:
                await asyncio.sleep(max(0.0, args.interval))
            snapshot = {
                "round": round_index + 1,
                "market_id": args.market_id,
                "outcome": args.outcome,
                "healthy": await client.is_healthy(),
                "price": await client.get_price(args.market_id, args.outcome),
                "orderbook": await client.get_orderbook(args.market_id, args.outcome),
                "liquidity": await client.get_liquidity(args.market_id, args.outcome),
                "known_no_data": client.has_known_no_data(args.market_id),
                "cache_entries": len(client.cache),
            }
            print(json.dumps(snapshot, ensure_ascii=False, indent=2, default=str))
    finally:
        await matching.close()
        logging.shutdown()


def main() -> None:
    asyncio.run(run(parse_args()))


if __name__ == "__main__":
    main()
