from __future__ import annotations

import asyncio
import logging
import unittest
from unittest.mock import AsyncMock

from intent_solver.intents.settlement import SettlementQueue
from intent_solver.intents.types import Trade


def _trades(intent_id: str, count: int) -> list[Trade]:
    return [
        Trade(trade_id=f"{intent_id}_t{index}", amount="10", price=50000, market_id="m", outcome=1)
        for index in range(count)
    ]


class SettlementQueueTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.queue = SettlementQueue(
            logger=logging.getLogger("test.settlement"),
            clock=lambda: 100.0,
            batch_size=5,
            max_retries=2,
        )

    async def test_batches_are_capped(self) -> None:
        self.queue.enqueue("a", _trades("a", 7))
        confirm = AsyncMock()

        self.assertEqual(await self.queue.settle_batch(confirm), 5)
        self.assertEqual(len(self.queue), 2)
        self.assertEqual(await self.queue.settle_batch(confirm), 2)
        self.assertEqual(await self.queue.settle_batch(confirm), 0)

    async def test_last_trade_marks_intent_fully_executed(self) -> None:
        self.queue.enqueue("a", _trades("a", 2))

        with self.assertLogs("test.settlement", level="INFO") as logs:
            await self.queue.settle_batch(AsyncMock())

        executed = [record for record in logs.records if getattr(record, "event", "") == "intent_fully_executed"]
        self.assertEqual(len(executed), 1)

    async def test_intent_with_requeued_trade_is_not_fully_executed(self) -> None:
        self.queue.enqueue("a", _trades("a", 2))
        confirm = AsyncMock(side_effect=[ConnectionError("redis down"), None])

        with self.assertLogs("test.settlement", level="INFO") as logs:
            self.assertEqual(await self.queue.settle_batch(confirm), 1)

        executed = [record for record in logs.records if getattr(record, "event", "") == "intent_fully_executed"]
        self.assertEqual(executed, [])
        self.assertEqual(self.queue.pending_for("a"), 1)

    async def test_cancellation_mid_batch_keeps_unsettled_trades(self) -> None:
        self.queue.enqueue("a", _trades("a", 3))
        confirm = AsyncMock(side_effect=[None, asyncio.CancelledError()])

        with self.assertRaises(asyncio.CancelledError):
            await self.queue.settle_batch(confirm)

        self.assertEqual([item["trade_id"] for item in self.queue.snapshot()], ["a_t1", "a_t2"])

    async def test_failed_trade_is_requeued_with_incremented_retry_count(self) -> None:
        self.queue.enqueue("a", _trades("a", 1))
        confirm = AsyncMock(side_effect=[ConnectionError("redis down"), None])

        self.assertEqual(await self.queue.settle_batch(confirm), 0)
        self.assertEqual(self.queue.snapshot()[0]["retry_count"], 1)
        self.assertEqual(await self.queue.settle_batch(confirm), 1)
        self.assertEqual(len(self.queue), 0)

    async def test_trade_is_dropped_after_max_retries(self) -> None:
        self.queue.enqueue("a", _trades("a", 1))
        confirm = AsyncMock(side_effect=ConnectionError("redis down"))

        for _ in range(3):
            await self.queue.settle_batch(confirm)

        self.assertEqual(len(self.queue), 0)
        self.assertEqual(confirm.await_count, 3)


if __name__ == "__main__":
    unittest.main()
