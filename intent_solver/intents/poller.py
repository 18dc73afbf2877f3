from __future__ import annotations

import asyncio
import logging

from intent_solver.common import log_event

from .backoff import BackoffPolicy
from .errors import ErrorKind, classify_error, is_expected_error
from .processor import IntentDispatcher
from .registry import IntentRegistry
from .types import Intent, LedgerGateway


class IntentPoller:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        registry: IntentRegistry,
        ledger: LedgerGateway,
        dispatcher: IntentDispatcher,
        backoff: BackoffPolicy,
    ) -> None:
        self._logger = logger
        self._registry = registry
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._backoff = backoff
        self._max_attempts = backoff.max_attempts

    async def poll_once(self) -> int:
        """Run one poll tick and return how many intents were dispatched."""
        try:
            raw_ids = await self._ledger.get_pending_ids()
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                self._logger,
                level="warning" if is_expected_error(error) else "exception",
                event="pending_fetch_failed",
                message="Failed to fetch pending intents; abandoning this tick",
                error=str(error),
                error_kind=classify_error(error).value,
            )
            return 0

        pending_ids: list[str] = []
        seen: set[str] = set()
        for raw_id in raw_ids:
            if not isinstance(raw_id, str) or not raw_id.strip():
                continue
            intent_id = raw_id.strip()
            if intent_id not in seen:
                seen.add(intent_id)
                pending_ids.append(intent_id)

        ready: list[Intent] = []
        new_count = 0
        skipped_completed = 0
        for intent_id in pending_ids:
            if self._registry.is_recently_completed(intent_id):
                skipped_completed += 1
                continue

            known = self._registry.get(intent_id)
            if known is None:
                # A cleared id whose attempt is still running stays claimed until it finishes.
                if not self._registry.is_resolve_due(intent_id, max_attempts=self._max_attempts):
                    continue
                intent = await self._resolve(intent_id)
                if intent is None:
                    continue
                # Re-check after the await; another path may have tracked it.
                if (
                    intent_id in self._registry
                    or self._registry.is_recently_completed(intent_id)
                    or self._registry.is_processing(intent_id)
                ):
                    continue
                self._registry.put(intent)
                new_count += 1
                ready.append(intent)
                continue

            if self._registry.is_due(intent_id, max_attempts=self._max_attempts):
                ready.append(known)

        if pending_ids:
            log_event(
                self._logger,
                level="info",
                event="pending_intents_polled",
                message="Polled pending intents",
                pending=len(pending_ids),
                new=new_count,
                ready=len(ready),
                skipped_completed=skipped_completed,
                tracked=len(self._registry),
            )
        return self._dispatcher.dispatch(ready, reason="poll")

    async def _resolve(self, intent_id: str) -> Intent | None:
        try:
            intent = await self._ledger.get_intent(intent_id)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            kind = classify_error(error)
            attempts = None
            if kind is ErrorKind.MALFORMED_RESPONSE:
                # An unparseable record is backed off per id like a failed attempt.
                record = self._registry.record_unresolved_failure(
                    intent_id,
                    kind=kind,
                    message=str(error),
                    backoff=self._backoff,
                )
                attempts = record.attempts
            log_event(
                self._logger,
                level="warning" if is_expected_error(error) else "exception",
                event="intent_resolve_failed",
                message="Failed to resolve intent; will retry",
                intent_id=intent_id,
                error=str(error),
                error_kind=kind.value,
                attempts=attempts,
            )
            return None

        if intent is None:
            log_event(
                self._logger,
                level="debug",
                event="intent_not_yet_visible",
                message="Pending intent is not resolvable yet",
                intent_id=intent_id,
            )
        return intent
