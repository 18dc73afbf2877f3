from __future__ import annotations

import asyncio
import logging

from intent_solver.common import guarded_call, log_event

from .errors import ErrorKind
from .processor import GatewayState, IntentDispatcher
from .registry import IntentRegistry
from .types import EventSink, MatchingGateway


class HealthMonitor:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        matching: MatchingGateway,
        registry: IntentRegistry,
        dispatcher: IntentDispatcher,
        state: GatewayState,
        events: EventSink | None = None,
    ) -> None:
        self._logger = logger
        self._matching = matching
        self._registry = registry
        self._dispatcher = dispatcher
        self._state = state
        self._events = events

    @property
    def online(self) -> bool:
        return self._state.online

    async def probe_once(self) -> bool:
        try:
            healthy = bool(await self._matching.healthcheck())
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                self._logger,
                level="debug",
                event="matching_health_probe_failed",
                message="Matching service health probe failed",
                error=str(error),
            )
            healthy = False

        was_online = self._state.online
        self._state.online = healthy
        if healthy and not was_online:
            await self._on_recovered()
        elif was_online and not healthy:
            await self._on_lost()
        return healthy

    async def _on_recovered(self) -> None:
        recovered = self._registry.reset_for_recovery(ErrorKind.GATEWAY_UNAVAILABLE)
        dispatched = self._dispatcher.dispatch(recovered, reason="gateway_recovered")
        log_event(
            self._logger,
            level="info",
            event="matching_gateway_online",
            message="Matching service is online",
            recovered=len(recovered),
            dispatched=dispatched,
        )
        await self._publish(
            level="INFO",
            event="matching_gateway_online",
            message="Matching service came online",
            details={"recovered": len(recovered), "dispatched": dispatched},
        )

    async def _on_lost(self) -> None:
        log_event(
            self._logger,
            level="warning",
            event="matching_gateway_offline",
            message="Matching service went offline; submissions are parked",
        )
        await self._publish(
            level="WARNING",
            event="matching_gateway_offline",
            message="Matching service went offline",
            details={},
        )

    async def _publish(self, *, level: str, event: str, message: str, details: dict[str, object]) -> None:
        events = self._events
        if events is None:
            return
        await guarded_call(
            lambda: events.publish_event(level=level, event=event, message=message, details=details),
            logger=self._logger,
            event=f"{event}_publish_failed",
            message=f"Failed to publish {event} event",
        )
