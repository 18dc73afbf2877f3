from __future__ import annotations

import logging
import unittest
from unittest.mock import AsyncMock

from intent_solver.gateways.market_data import MarketDataClient
from intent_solver.gateways.query_cache import ResilientQueryCache, cache_key
from intent_solver.intents.errors import NotFoundError, TransientNetworkError


class FakeClock:
    def __init__(self, now: float = 5_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ResilientQueryCacheTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.cache = ResilientQueryCache(logger=logging.getLogger("test.cache"), clock=self.clock)

    async def test_hit_within_ttl_and_single_refresh_after(self) -> None:
        fetch = AsyncMock(side_effect=[{"price": 1}, {"price": 2}])

        first = await self.cache.get("price:m:1", ttl_seconds=5, fetch=fetch)
        self.clock.advance(4)
        second = await self.cache.get("price:m:1", ttl_seconds=5, fetch=fetch)
        self.clock.advance(2)
        third = await self.cache.get("price:m:1", ttl_seconds=5, fetch=fetch)

        self.assertEqual((first, second, third), ({"price": 1}, {"price": 1}, {"price": 2}))
        self.assertEqual(fetch.await_count, 2)

    async def test_not_found_is_cached_as_empty_success(self) -> None:
        fetch = AsyncMock(side_effect=NotFoundError("HTTP 404"))

        self.assertIsNone(await self.cache.get("orderbook:m:1", ttl_seconds=3, fetch=fetch))
        entry = self.cache.peek("orderbook:m:1")
        assert entry is not None
        self.assertEqual(entry.attempts, 0)
        self.assertEqual(entry.next_retry_at, 0.0)

        self.assertIsNone(await self.cache.get("orderbook:m:1", ttl_seconds=3, fetch=fetch))
        self.assertEqual(fetch.await_count, 1)

    async def test_failures_back_off_exponentially(self) -> None:
        fetch = AsyncMock(side_effect=TransientNetworkError("reset"))

        await self.cache.get("price:m:1", ttl_seconds=0, fetch=fetch)
        entry = self.cache.peek("price:m:1")
        assert entry is not None
        self.assertEqual(entry.attempts, 1)
        self.assertEqual(entry.next_retry_at, self.clock.now + 2.0)
        self.assertTrue(self.cache.is_backed_off("price:m:1"))

        self.clock.advance(1)
        await self.cache.get("price:m:1", ttl_seconds=0, fetch=fetch)
        self.assertEqual(fetch.await_count, 1)

        self.clock.advance(1)
        await self.cache.get("price:m:1", ttl_seconds=0, fetch=fetch)
        entry = self.cache.peek("price:m:1")
        assert entry is not None
        self.assertEqual(fetch.await_count, 2)
        self.assertEqual(entry.attempts, 2)
        self.assertEqual(entry.next_retry_at, self.clock.now + 4.0)

    async def test_failure_replaces_last_value_while_backed_off(self) -> None:
        fetch = AsyncMock(side_effect=[{"price": 1}, TransientNetworkError("reset")])

        self.assertEqual(await self.cache.get("price:m:1", ttl_seconds=5, fetch=fetch), {"price": 1})
        self.clock.advance(6)
        self.assertIsNone(await self.cache.get("price:m:1", ttl_seconds=5, fetch=fetch))
        self.clock.advance(1)

        self.assertIsNone(await self.cache.get("price:m:1", ttl_seconds=5, fetch=fetch))
        self.assertEqual(fetch.await_count, 2)

    async def test_success_after_failure_clears_backoff(self) -> None:
        fetch = AsyncMock(side_effect=[TransientNetworkError("reset"), {"ok": True}])

        await self.cache.get("health", ttl_seconds=1, fetch=fetch)
        self.clock.advance(3)
        self.assertEqual(await self.cache.get("health", ttl_seconds=1, fetch=fetch), {"ok": True})
        entry = self.cache.peek("health")
        assert entry is not None
        self.assertEqual((entry.attempts, entry.next_retry_at), (0, 0.0))

    async def test_old_entries_are_pruned_on_interval(self) -> None:
        await self.cache.get("a", ttl_seconds=5, fetch=AsyncMock(return_value=1))
        self.clock.advance(301)
        await self.cache.get("b", ttl_seconds=5, fetch=AsyncMock(return_value=2))

        self.assertIsNone(self.cache.peek("a"))
        self.assertIsNotNone(self.cache.peek("b"))
        self.assertEqual(len(self.cache), 1)

    def test_cache_key_joins_params(self) -> None:
        self.assertEqual(cache_key("price", "market_1", 0), "price:market_1:0")
        self.assertEqual(cache_key("health"), "health")


class MarketDataClientTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.matching = AsyncMock()
        self.client = MarketDataClient(
            logger=logging.getLogger("test.market_data"),
            clock=self.clock,
            matching=self.matching,
        )

    async def test_price_reads_are_cached_per_market_and_outcome(self) -> None:
        self.matching.get_price.return_value = {"price": 51000}

        await self.client.get_price("m", 1)
        await self.client.get_price("m", 1)
        await self.client.get_price("m", 0)

        self.assertEqual(self.matching.get_price.await_count, 2)

    async def test_known_no_data_requires_backed_off_price_and_orderbook(self) -> None:
        self.matching.get_price.side_effect = TransientNetworkError("down")
        self.matching.get_orderbook.side_effect = TransientNetworkError("down")

        self.assertFalse(self.client.has_known_no_data("m"))
        await self.client.get_price("m", 1)
        self.assertFalse(self.client.has_known_no_data("m"))
        await self.client.get_orderbook("m", 1)
        self.assertTrue(self.client.has_known_no_data("m"))

        self.clock.advance(5)
        self.assertFalse(self.client.has_known_no_data("m"))

    async def test_unhealthy_probe_is_backed_off(self) -> None:
        self.matching.healthcheck.return_value = False

        self.assertFalse(await self.client.is_healthy())
        self.assertFalse(await self.client.is_healthy())
        self.assertEqual(self.matching.healthcheck.await_count, 1)

        self.matching.healthcheck.return_value = True
        self.clock.advance(10)
        self.assertTrue(await self.client.is_healthy())


if __name__ == "__main__":
    unittest.main()
