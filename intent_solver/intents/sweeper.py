from __future__ import annotations

import logging

from intent_solver.common import guarded_call, log_event

from .errors import ErrorKind
from .processor import IntentDispatcher
from .registry import IntentRegistry
from .types import Clock, CompletionResult, EventSink, LedgerGateway, RetryRecord


def failure_summary(record: RetryRecord) -> str:
    return f"Failed after {record.attempts} attempts: {record.last_error or 'Unknown error'}"


class RetrySweeper:
    """Re-dispatches intents whose backoff elapsed and abandons exhausted ones."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        clock: Clock,
        registry: IntentRegistry,
        ledger: LedgerGateway,
        dispatcher: IntentDispatcher,
        max_attempts: int,
        expiry_seconds: float,
        events: EventSink | None = None,
    ) -> None:
        self._logger = logger
        self._clock = clock
        self._registry = registry
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._max_attempts = max_attempts
        self._expiry_seconds = expiry_seconds
        self._events = events

    async def sweep_once(self) -> tuple[int, int]:
        retried = self.retry_pass()
        abandoned = await self.expiry_pass()
        self._registry.prune_completed()
        return retried, abandoned

    def retry_pass(self) -> int:
        due = self._registry.due_for_retry(max_attempts=self._max_attempts)
        return self._dispatcher.dispatch(due, reason="retry")

    async def expiry_pass(self) -> int:
        expired = self._registry.expired(
            max_attempts=self._max_attempts,
            expiry_seconds=self._expiry_seconds,
        )
        # Local state goes first so a failed notification can never block the id.
        for intent, _record in expired:
            self._registry.delete(intent.id)

        unresolved = self._registry.expired_unresolved(
            max_attempts=self._max_attempts,
            expiry_seconds=self._expiry_seconds,
        )
        for intent_id, _record in unresolved:
            self._registry.delete(intent_id)

        for intent, record in expired:
            await self._abandon(intent.id, record)
        for intent_id, record in unresolved:
            await self._abandon(intent_id, record)
        return len(expired) + len(unresolved)

    async def _abandon(self, intent_id: str, record: RetryRecord) -> None:
        age_seconds = self._clock() - record.first_seen_at
        reason = "max_attempts" if record.attempts >= self._max_attempts else "max_age"
        log_event(
            self._logger,
            level="error",
            event="intent_abandoned",
            message="Intent abandoned after exhausting retries",
            intent_id=intent_id,
            reason=reason,
            error_kind=ErrorKind.PERMANENT_EXPIRY.value,
            attempts=record.attempts,
            age_seconds=round(age_seconds, 3),
            last_error=record.last_error,
            last_error_kind=record.last_error_kind.value if record.last_error_kind else None,
        )

        result = CompletionResult(
            intent_id=intent_id,
            success=False,
            output_amount=None,
            execution_details=failure_summary(record),
        )
        await guarded_call(
            lambda: self._ledger.notify_completion(intent_id, result),
            logger=self._logger,
            event="failure_notify_failed",
            message="Failed to report abandoned intent to the ledger",
            intent_id=intent_id,
        )

        events = self._events
        if events is not None:
            await guarded_call(
                lambda: events.publish_event(
                    level="ERROR",
                    event="intent_abandoned",
                    message="Intent abandoned after exhausting retries",
                    details={
                        "intent_id": intent_id,
                        "reason": reason,
                        "attempts": record.attempts,
                        "last_error": record.last_error,
                    },
                ),
                logger=self._logger,
                event="intent_abandoned_publish_failed",
                message="Failed to publish intent_abandoned event",
                intent_id=intent_id,
            )
