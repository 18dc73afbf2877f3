from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

from intent_solver.common import guarded_call, log_event, wait_for_tasks

from .backoff import BackoffPolicy
from .conversion import build_order
from .errors import (
    ErrorKind,
    GatewayUnavailableError,
    UnsupportedIntentError,
    classify_error,
    is_expected_error,
)
from .registry import IntentRegistry
from .settlement import SettlementQueue
from .types import Clock, CompletionResult, Intent, LedgerGateway, MatchingGateway, Trade


@dataclass(slots=True)
class GatewayState:
    """Last known reachability of the matching service, owned by the health monitor."""

    online: bool = False


def summarize_success(intent_id: str, trades: tuple[Trade, ...]) -> CompletionResult:
    return CompletionResult(
        intent_id=intent_id,
        success=True,
        output_amount=trades[0].amount if trades else None,
        execution_details=f"Processed {len(trades)} trades",
    )


class IntentProcessor:
    """Runs exactly one submission cycle for one intent."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        clock: Clock,
        registry: IntentRegistry,
        ledger: LedgerGateway,
        matching: MatchingGateway,
        settlement: SettlementQueue,
        gateway_state: GatewayState,
        backoff: BackoffPolicy,
        default_order_ttl_seconds: float = 3600.0,
    ) -> None:
        self._logger = logger
        self._clock = clock
        self._registry = registry
        self._ledger = ledger
        self._matching = matching
        self._settlement = settlement
        self._gateway_state = gateway_state
        self._backoff = backoff
        self._default_order_ttl_seconds = default_order_ttl_seconds
        self._notifications: set[asyncio.Task[None]] = set()

    @property
    def pending_notifications(self) -> int:
        return len(self._notifications)

    async def process(self, intent: Intent) -> bool:
        if not self._registry.mark_processing(intent.id):
            log_event(
                self._logger,
                level="debug",
                event="intent_already_processing",
                message="Intent is already being processed; skipping",
                intent_id=intent.id,
            )
            return False
        await self.process_claimed(intent)
        return True

    async def process_claimed(self, intent: Intent) -> None:
        """Process an intent whose id the caller already placed in ProcessingState."""
        try:
            await self._attempt(intent)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self._record_failure(intent, error)
        finally:
            self._registry.clear_processing(intent.id)

    async def _attempt(self, intent: Intent) -> None:
        if not self._gateway_state.online:
            raise GatewayUnavailableError("Matching service is offline")

        condition_id = await self._ledger.get_condition_id(intent.market_id)
        order = build_order(
            intent,
            condition_id=condition_id,
            now=self._clock(),
            default_ttl_seconds=self._default_order_ttl_seconds,
            logger=self._logger,
        )
        log_event(
            self._logger,
            level="info",
            event="order_submitting",
            message="Submitting order for intent",
            intent_id=intent.id,
            order_id=order.order_id,
            side=order.side.value,
            order_type=order.order_type.value,
            price=order.price,
            amount=order.amount,
        )
        result = await self._matching.submit_order(order)

        self._registry.complete(intent.id)
        queued = self._settlement.enqueue(intent.id, result.trades)
        log_event(
            self._logger,
            level="info",
            event="intent_processed",
            message="Intent submitted to matching service",
            intent_id=intent.id,
            trades=len(result.trades),
            queued_for_settlement=queued,
        )
        self._spawn_notification(summarize_success(intent.id, result.trades))

    def _record_failure(self, intent: Intent, error: Exception) -> None:
        kind = classify_error(error)
        terminal = isinstance(error, UnsupportedIntentError)
        record = self._registry.record_failure(
            intent.id,
            kind=kind,
            message=str(error) or type(error).__name__,
            backoff=self._backoff,
            terminal=terminal,
        )

        if kind is ErrorKind.MALFORMED_RESPONSE:
            level = "error"
        elif is_expected_error(error):
            level = "warning"
        else:
            level = "exception"

        log_event(
            self._logger,
            level=level,
            event="intent_attempt_failed",
            message="Intent attempt failed",
            intent_id=intent.id,
            error=str(error),
            error_kind=kind.value,
            terminal=terminal,
            tracked=record is not None,
            attempts=record.attempts if record else None,
            next_retry_in_seconds=(
                round(max(0.0, record.next_retry_at - self._clock()), 3) if record else None
            ),
        )

    def _spawn_notification(self, result: CompletionResult) -> None:
        task = asyncio.create_task(self._notify(result))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify(self, result: CompletionResult) -> None:
        await guarded_call(
            lambda: self._ledger.notify_completion(result.intent_id, result),
            logger=self._logger,
            event="completion_notify_failed",
            message="Failed to report intent completion to the ledger",
            intent_id=result.intent_id,
            success=result.success,
        )

    async def drain_notifications(self, timeout_seconds: float) -> int:
        return await wait_for_tasks(
            list(self._notifications),
            timeout_seconds=timeout_seconds,
            logger=self._logger,
            label="completion_notifications",
        )


class IntentDispatcher:
    """Fans intents out to background processor tasks.

    The ProcessingState claim is taken synchronously inside :meth:`dispatch`, so
    two dispatches of the same id in one event-loop turn yield one attempt.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        registry: IntentRegistry,
        processor: IntentProcessor,
        max_in_flight: int = 0,
    ) -> None:
        self._logger = logger
        self._registry = registry
        self._processor = processor
        self._semaphore = asyncio.Semaphore(max_in_flight) if max_in_flight > 0 else None
        self._max_in_flight = max_in_flight
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, intents: Iterable[Intent], *, reason: str) -> int:
        dispatched = 0
        for intent in intents:
            if intent.id not in self._registry:
                continue
            if not self._registry.mark_processing(intent.id):
                continue
            task = asyncio.create_task(self._run(intent))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            dispatched += 1

        if dispatched:
            log_event(
                self._logger,
                level="info",
                event="intents_dispatched",
                message="Dispatched intents to processor",
                reason=reason,
                dispatched=dispatched,
                in_flight=self.in_flight,
                max_in_flight=self._max_in_flight or None,
            )
        return dispatched

    async def _run(self, intent: Intent) -> None:
        try:
            if self._semaphore is None:
                await self._processor.process_claimed(intent)
                return
            async with self._semaphore:
                await self._processor.process_claimed(intent)
        finally:
            # Covers cancellation while still queued on the semaphore.
            self._registry.clear_processing(intent.id)

    async def join(self) -> None:
        """Wait until every task dispatched so far has finished."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def drain(self, timeout_seconds: float) -> int:
        return await wait_for_tasks(
            list(self._tasks),
            timeout_seconds=timeout_seconds,
            logger=self._logger,
            label="intent_processing",
        )
