from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Iterable

from intent_solver.common import log_event

from .types import Clock, PendingTrade, Trade

ConfirmTrade = Callable[[PendingTrade], Awaitable[None]]


class SettlementQueue:
    """FIFO of fills awaiting settlement bookkeeping.

    Settlement itself happens on the matching side; this queue only records
    that each fill was observed and confirmed.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        clock: Clock,
        batch_size: int = 5,
        max_retries: int = 5,
    ) -> None:
        self._logger = logger
        self._clock = clock
        self._batch_size = max(1, batch_size)
        self._max_retries = max(0, max_retries)
        self._queue: deque[PendingTrade] = deque()

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, intent_id: str, trades: Iterable[Trade]) -> int:
        now = self._clock()
        added = 0
        for trade in trades:
            self._queue.append(PendingTrade(intent_id=intent_id, trade=trade, queued_at=now))
            added += 1
        return added

    def pending_for(self, intent_id: str) -> int:
        return sum(1 for item in self._queue if item.intent_id == intent_id)

    async def settle_batch(self, confirm: ConfirmTrade) -> int:
        # Items leave the queue one at a time so pending_for still sees the rest of the batch.
        count = min(self._batch_size, len(self._queue))
        settled = 0
        for _ in range(count):
            if not self._queue:
                break
            item = self._queue.popleft()
            try:
                await confirm(item)
            except asyncio.CancelledError:
                self._queue.appendleft(item)
                raise
            except Exception as error:
                self._requeue(item, error)
                continue

            settled += 1
            log_event(
                self._logger,
                level="info",
                event="trade_settled",
                message="Trade settlement recorded",
                intent_id=item.intent_id,
                trade_id=item.trade_id,
                retry_count=item.retry_count,
            )
            if self.pending_for(item.intent_id) == 0:
                log_event(
                    self._logger,
                    level="info",
                    event="intent_fully_executed",
                    message="All trades for intent are settled",
                    intent_id=item.intent_id,
                )
        return settled

    def _requeue(self, item: PendingTrade, error: Exception) -> None:
        item.retry_count += 1
        if item.retry_count > self._max_retries:
            log_event(
                self._logger,
                level="error",
                event="trade_settlement_dropped",
                message="Trade settlement failed too many times and was dropped",
                intent_id=item.intent_id,
                trade_id=item.trade_id,
                retry_count=item.retry_count,
                error=str(error),
            )
            return

        self._queue.append(item)
        log_event(
            self._logger,
            level="warning",
            event="trade_settlement_requeued",
            message="Trade settlement failed; re-queued",
            intent_id=item.intent_id,
            trade_id=item.trade_id,
            retry_count=item.retry_count,
            error=str(error),
        )

    def snapshot(self) -> list[dict[str, object]]:
        return [
            {
                "intent_id": item.intent_id,
                "trade_id": item.trade_id,
                "retry_count": item.retry_count,
                "queued_at": item.queued_at,
            }
            for item in self._queue
        ]
