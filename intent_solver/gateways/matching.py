from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from intent_solver.common import log_event
from intent_solver.intents.errors import (
    IntentSolverError,
    MalformedResponseError,
    MatchingHttpError,
    NotFoundError,
    RateLimitedError,
    TransientNetworkError,
    parse_retry_after_seconds,
)
from intent_solver.intents.types import Order, SubmissionResult, Trade

DEFAULT_ORDER_PATH = "/solver/orders"


def _preview(body: str, limit: int = 240) -> str:
    compact = " ".join(body.split())
    return compact if len(compact) <= limit else f"{compact[:limit]}..."


def market_path(kind: str, market_id: str, outcome: int) -> str:
    return f"/{kind}/{quote(str(market_id), safe='')}/{int(outcome)}"


class HttpMatchingGateway:
    """aiohttp client for the order-matching service."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        base_url: str,
        order_path: str = DEFAULT_ORDER_PATH,
        request_timeout_seconds: float = 10.0,
    ) -> None:
        self._logger = logger
        self._base_url = base_url.rstrip("/")
        self._order_path = "/" + order_path.strip("/")
        self._timeout_seconds = request_timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if not self._base_url:
            raise ValueError("MATCHING_SERVICE_URL is required.")
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"Accept": "application/json", "User-Agent": "intent-solver/1.0"},
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, path: str, *, payload: Any = None) -> tuple[int, str, float | None]:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("Matching service HTTP session is not initialized.")

        url = f"{self._base_url}{path}"
        try:
            async with self._session.request(method, url, json=payload) as response:
                status = response.status
                retry_after_seconds = parse_retry_after_seconds(response.headers.get("Retry-After"))
                body = await response.text()
        except asyncio.TimeoutError as error:
            raise TransientNetworkError(f"{method} {path} timed out") from error
        except aiohttp.ClientError as error:
            raise TransientNetworkError(f"{method} {path} failed: {error}") from error
        return status, body, retry_after_seconds

    @staticmethod
    def _decode(path: str, body: str) -> Any:
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as error:
            raise MalformedResponseError(f"{path} returned non-JSON body: {_preview(body)!r}") from error

    @staticmethod
    def _raise_for_status(path: str, status: int, body: str, retry_after_seconds: float | None) -> None:
        if status == 429:
            raise RateLimitedError(f"{path} rate limited", retry_after_seconds=retry_after_seconds)
        if status >= 400:
            raise MatchingHttpError(status, _preview(body))

    async def healthcheck(self) -> bool:
        try:
            status, _body, _retry_after = await self._request("GET", "/health")
        except IntentSolverError:
            return False
        return status == 200

    async def submit_order(self, order: Order) -> SubmissionResult:
        status, body, retry_after_seconds = await self._request(
            "POST",
            self._order_path,
            payload=order.to_wire(),
        )
        self._raise_for_status(self._order_path, status, body, retry_after_seconds)

        data = self._decode(self._order_path, body)
        if data is None:
            return SubmissionResult(trades=())
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Order submission returned {type(data).__name__}, expected object")

        raw_trades = data.get("trades") or []
        if not isinstance(raw_trades, list):
            raise MalformedResponseError("Order submission returned a non-list trades field")

        trades = tuple(Trade.from_wire(item) for item in raw_trades)
        log_event(
            self._logger,
            level="debug",
            event="order_submitted",
            message="Matching service accepted order",
            order_id=order.order_id,
            status=status,
            trades=len(trades),
        )
        return SubmissionResult(trades=trades)

    async def get_json(self, path: str) -> Any:
        """GET a read endpoint. A 404 raises NotFoundError so callers can cache it as empty."""
        status, body, retry_after_seconds = await self._request("GET", path)
        if status == 404:
            raise NotFoundError(f"{path} has no data")
        self._raise_for_status(path, status, body, retry_after_seconds)
        return self._decode(path, body)

    async def get_price(self, market_id: str, outcome: int) -> Any:
        return await self.get_json(market_path("price", market_id, outcome))

    async def get_orderbook(self, market_id: str, outcome: int) -> Any:
        return await self.get_json(market_path("orderbook", market_id, outcome))

    async def get_liquidity(self, market_id: str, outcome: int) -> Any:
        return await self.get_json(f"/solver{market_path('liquidity', market_id, outcome)}")

    async def get_health(self) -> Any:
        return await self.get_json("/health")
