from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from intent_solver.intents.backoff import CACHE_BACKOFF, BackoffPolicy
from intent_solver.intents.errors import GatewayUnavailableError
from intent_solver.intents.types import Clock

from .matching import HttpMatchingGateway
from .query_cache import ResilientQueryCache, cache_key


@dataclass(slots=True, frozen=True)
class CacheTtls:
    price_seconds: float = 5.0
    orderbook_seconds: float = 3.0
    health_seconds: float = 10.0
    liquidity_seconds: float = 5.0


class MarketDataClient:
    """Cached read access to price, orderbook, liquidity and health endpoints."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        clock: Clock,
        matching: HttpMatchingGateway,
        ttls: CacheTtls | None = None,
        backoff: BackoffPolicy = CACHE_BACKOFF,
    ) -> None:
        self._matching = matching
        self._ttls = ttls or CacheTtls()
        self.cache = ResilientQueryCache(logger=logger, clock=clock, backoff=backoff)

    async def get_price(self, market_id: str, outcome: int) -> Any:
        return await self.cache.get(
            cache_key("price", market_id, outcome),
            ttl_seconds=self._ttls.price_seconds,
            fetch=lambda: self._matching.get_price(market_id, outcome),
        )

    async def get_orderbook(self, market_id: str, outcome: int) -> Any:
        return await self.cache.get(
            cache_key("orderbook", market_id, outcome),
            ttl_seconds=self._ttls.orderbook_seconds,
            fetch=lambda: self._matching.get_orderbook(market_id, outcome),
        )

    async def get_liquidity(self, market_id: str, outcome: int) -> Any:
        return await self.cache.get(
            cache_key("liquidity", market_id, outcome),
            ttl_seconds=self._ttls.liquidity_seconds,
            fetch=lambda: self._matching.get_liquidity(market_id, outcome),
        )

    async def is_healthy(self) -> bool:
        async def probe() -> bool:
            if not await self._matching.healthcheck():
                raise GatewayUnavailableError("Matching service health check failed")
            return True

        healthy = await self.cache.get(
            cache_key("health"),
            ttl_seconds=self._ttls.health_seconds,
            fetch=probe,
        )
        return bool(healthy)

    def has_known_no_data(self, market_id: str) -> bool:
        """True when both outcome-1 price and orderbook are backed off with nothing cached."""
        for kind in ("price", "orderbook"):
            key = cache_key(kind, market_id, 1)
            entry = self.cache.peek(key)
            if entry is None or entry.data is not None or not self.cache.is_backed_off(key):
                return False
        return True
