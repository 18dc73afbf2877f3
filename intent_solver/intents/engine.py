from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from intent_solver.common import log_event

from .backoff import DAEMON_BACKOFF, BackoffPolicy
from .health import HealthMonitor
from .poller import IntentPoller
from .processor import GatewayState, IntentDispatcher, IntentProcessor
from .registry import IntentRegistry
from .settlement import ConfirmTrade, SettlementQueue
from .sweeper import RetrySweeper
from .types import Clock, EventSink, LedgerGateway, MatchingGateway


@dataclass(slots=True, frozen=True)
class OrchestratorConfig:
    intent_expiry_seconds: float = 3600.0
    default_order_ttl_seconds: float = 3600.0
    max_in_flight: int = 0
    settlement_batch_size: int = 5
    settlement_max_retries: int = 5


class IntentOrchestrator:
    """Wires the registry, processor and periodic passes around one ledger and one matching service."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        clock: Clock,
        ledger: LedgerGateway,
        matching: MatchingGateway,
        backoff: BackoffPolicy = DAEMON_BACKOFF,
        config: OrchestratorConfig | None = None,
        events: EventSink | None = None,
    ) -> None:
        self._logger = logger
        self.config = config or OrchestratorConfig()
        self.backoff = backoff
        self.registry = IntentRegistry(
            clock=clock,
            completed_ttl_seconds=self.config.intent_expiry_seconds,
        )
        self.gateway_state = GatewayState()
        self.settlement = SettlementQueue(
            logger=logger,
            clock=clock,
            batch_size=self.config.settlement_batch_size,
            max_retries=self.config.settlement_max_retries,
        )
        self.processor = IntentProcessor(
            logger=logger,
            clock=clock,
            registry=self.registry,
            ledger=ledger,
            matching=matching,
            settlement=self.settlement,
            gateway_state=self.gateway_state,
            backoff=backoff,
            default_order_ttl_seconds=self.config.default_order_ttl_seconds,
        )
        self.dispatcher = IntentDispatcher(
            logger=logger,
            registry=self.registry,
            processor=self.processor,
            max_in_flight=self.config.max_in_flight,
        )
        self.poller = IntentPoller(
            logger=logger,
            registry=self.registry,
            ledger=ledger,
            dispatcher=self.dispatcher,
            backoff=backoff,
        )
        self.sweeper = RetrySweeper(
            logger=logger,
            clock=clock,
            registry=self.registry,
            ledger=ledger,
            dispatcher=self.dispatcher,
            max_attempts=backoff.max_attempts,
            expiry_seconds=self.config.intent_expiry_seconds,
            events=events,
        )
        self.health = HealthMonitor(
            logger=logger,
            matching=matching,
            registry=self.registry,
            dispatcher=self.dispatcher,
            state=self.gateway_state,
            events=events,
        )
        if self.config.max_in_flight <= 0:
            log_event(
                logger,
                level="info",
                event="processor_concurrency_unbounded",
                message="Concurrent intent submissions are not capped",
            )

    async def poll_once(self) -> None:
        await self.poller.poll_once()

    async def sweep_once(self) -> None:
        await self.sweeper.sweep_once()

    async def probe_health_once(self) -> None:
        await self.health.probe_once()

    async def settle_once(self, confirm: ConfirmTrade) -> int:
        return await self.settlement.settle_batch(confirm)

    def status_snapshot(self) -> dict[str, Any]:
        snapshot = self.registry.snapshot()
        snapshot["gateway_online"] = self.gateway_state.online
        snapshot["in_flight"] = self.dispatcher.in_flight
        snapshot["pending_notifications"] = self.processor.pending_notifications
        snapshot["settlement_queue"] = self.settlement.snapshot()
        return snapshot

    def clear_intent(self, intent_id: str) -> bool:
        cleared = self.registry.clear(intent_id)
        log_event(
            self._logger,
            level="info" if cleared else "debug",
            event="intent_cleared",
            message="Operator clear request applied" if cleared else "Operator clear request matched nothing",
            intent_id=intent_id,
            cleared=cleared,
        )
        return cleared

    async def drain(self, timeout_seconds: float) -> None:
        await self.dispatcher.drain(timeout_seconds)
        await self.processor.drain_notifications(timeout_seconds)
