from __future__ import annotations

import json
import logging
import os
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from intent_solver.intents.types import PendingTrade, Trade
from intent_solver.storage import StorageGateway, StorageSettings


def _settings() -> StorageSettings:
    with patch.dict(os.environ, {"SOLVER_ID": "solver one", "SOLVER_RUN_ID": "run-1"}, clear=True):
        return StorageSettings.from_env()


class StorageSettingsTests(unittest.TestCase):
    def test_keys_are_namespaced_by_solver_id(self) -> None:
        settings = _settings()
        self.assertEqual(settings.namespace, "solver-one")
        self.assertEqual(settings.event_stream_key, "solver-one:events")
        self.assertEqual(settings.status_key, "solver-one:status")
        self.assertEqual(settings.clear_request_key, "solver-one:clear_requests")
        self.assertEqual(settings.run_id, "run-1")


class StorageGatewayTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.redis = MagicMock()
        for name in ("set", "get", "xadd", "sadd", "spop", "hgetall", "ping"):
            setattr(self.redis, name, AsyncMock())
        self.pipeline = MagicMock()
        self.pipeline.execute = AsyncMock()
        self.redis.pipeline.return_value = self.pipeline
        self.storage = StorageGateway(_settings(), logging.getLogger("test.storage"))
        self.storage._redis = self.redis

    async def test_publish_event_appends_to_capped_stream(self) -> None:
        await self.storage.publish_event(
            level="ERROR",
            event="intent_abandoned",
            message="gone",
            details={"intent_id": "i1"},
        )

        args, kwargs = self.redis.xadd.await_args
        self.assertEqual(args[0], "solver-one:events")
        self.assertEqual(args[1]["event"], "intent_abandoned")
        self.assertEqual(json.loads(args[1]["details"]), {"intent_id": "i1"})
        self.assertEqual(kwargs, {"maxlen": 10_000, "approximate": True})

    async def test_publish_without_redis_is_skipped(self) -> None:
        self.storage._redis = None
        with self.assertLogs("test.storage", level="WARNING"):
            await self.storage.publish_event(level="INFO", event="x", message="y")

    async def test_status_round_trip(self) -> None:
        await self.storage.write_status({"pending": ["a"]})

        key, raw = self.redis.set.await_args.args
        self.assertEqual(key, "solver-one:status")
        self.assertEqual(self.redis.set.await_args.kwargs, {"ex": 120})

        self.redis.get.return_value = raw
        status = await self.storage.read_status()
        assert status is not None
        self.assertEqual(status["pending"], ["a"])
        self.assertEqual(status["run_id"], "run-1")

    async def test_invalid_status_reads_as_none(self) -> None:
        self.redis.get.return_value = "{not json"
        with self.assertLogs("test.storage", level="WARNING"):
            self.assertIsNone(await self.storage.read_status())

    async def test_settled_trade_is_written_with_expiry(self) -> None:
        trade = Trade(trade_id="t1", amount="10", price=51000, market_id="m", outcome=1, raw={"trade_id": "t1"})

        await self.storage.record_settled_trade(PendingTrade(intent_id="i1", trade=trade, queued_at=5.0))

        key = "solver-one:trades:settled:t1"
        mapping = self.pipeline.hset.call_args.kwargs["mapping"]
        self.assertEqual(self.pipeline.hset.call_args.args, (key,))
        self.assertEqual(mapping["intent_id"], "i1")
        self.assertEqual(mapping["price"], "51000")
        self.pipeline.expire.assert_called_once_with(key, 172800)
        self.pipeline.execute.assert_awaited_once()

    async def test_clear_requests_are_popped_as_a_list(self) -> None:
        self.redis.spop.return_value = ["a", "b"]
        self.assertEqual(await self.storage.pop_clear_requests(), ["a", "b"])
        self.redis.spop.return_value = None
        self.assertEqual(await self.storage.pop_clear_requests(), [])

        self.redis.sadd.return_value = 2
        self.assertEqual(await self.storage.request_clear(["a", "b"]), 2)
        self.redis.sadd.assert_awaited_with("solver-one:clear_requests", "a", "b")

    async def test_operations_require_connection(self) -> None:
        self.storage._redis = None
        with self.assertRaises(RuntimeError):
            await self.storage.update_heartbeat()


if __name__ == "__main__":
    unittest.main()
