from __future__ import annotations

from typing import Any

from .backoff import BackoffPolicy
from .errors import ErrorKind
from .types import Clock, Intent, RetryRecord


class IntentRegistry:
    """Single owner of intent bookkeeping.

    Every mutation is a synchronous method, so under asyncio each call is an
    atomic read-modify-write for the intent it touches. A record's ``attempts``
    only ever grows, except through :meth:`reset_for_recovery`.
    """

    def __init__(self, *, clock: Clock, completed_ttl_seconds: float = 3600.0) -> None:
        self._clock = clock
        self._completed_ttl_seconds = max(0.0, completed_ttl_seconds)
        self._intents: dict[str, Intent] = {}
        self._records: dict[str, RetryRecord] = {}
        self._processing: set[str] = set()
        self._completed: dict[str, float] = {}
        self._unresolved: dict[str, RetryRecord] = {}

    def __len__(self) -> int:
        return len(self._intents)

    def __contains__(self, intent_id: object) -> bool:
        return intent_id in self._intents

    def ids(self) -> list[str]:
        return list(self._intents)

    def get(self, intent_id: str) -> Intent | None:
        return self._intents.get(intent_id)

    def get_record(self, intent_id: str) -> RetryRecord | None:
        return self._records.get(intent_id)

    def put(self, intent: Intent) -> RetryRecord:
        existing = self._records.get(intent.id)
        if existing is not None:
            return existing

        now = self._clock()
        # An id that failed to parse keeps its age and attempt budget once it resolves.
        record = self._unresolved.pop(intent.id, None) or RetryRecord(first_seen_at=now, next_retry_at=now)
        record.next_retry_at = now
        self._intents[intent.id] = intent
        self._records[intent.id] = record
        self._completed.pop(intent.id, None)
        return record

    def delete(self, intent_id: str) -> bool:
        """Stop tracking an intent. A running attempt keeps its ProcessingState claim."""
        self._records.pop(intent_id, None)
        dropped_unresolved = self._unresolved.pop(intent_id, None) is not None
        return self._intents.pop(intent_id, None) is not None or dropped_unresolved

    def mark_processing(self, intent_id: str) -> bool:
        if intent_id in self._processing:
            return False
        self._processing.add(intent_id)
        return True

    def clear_processing(self, intent_id: str) -> None:
        self._processing.discard(intent_id)

    def is_processing(self, intent_id: str) -> bool:
        return intent_id in self._processing

    @property
    def processing_count(self) -> int:
        return len(self._processing)

    def is_due(self, intent_id: str, *, max_attempts: int) -> bool:
        record = self._records.get(intent_id)
        if record is None or intent_id in self._processing:
            return False
        return record.attempts < max_attempts and self._clock() >= record.next_retry_at

    def due_for_retry(self, *, max_attempts: int) -> list[Intent]:
        return [
            self._intents[intent_id]
            for intent_id in list(self._records)
            if self.is_due(intent_id, max_attempts=max_attempts)
        ]

    def record_failure(
        self,
        intent_id: str,
        *,
        kind: ErrorKind,
        message: str,
        backoff: BackoffPolicy,
        terminal: bool = False,
    ) -> RetryRecord | None:
        record = self._records.get(intent_id)
        if record is None:
            # Cleared or abandoned while the attempt was in flight.
            return None

        now = self._clock()
        record.attempts += 1
        if terminal:
            record.attempts = max(record.attempts, backoff.max_attempts)
        record.last_error = message
        record.last_error_kind = kind
        record.next_retry_at = backoff.next_retry_at(now, record.attempts)
        return record

    def unresolved_record(self, intent_id: str) -> RetryRecord | None:
        return self._unresolved.get(intent_id)

    def is_resolve_due(self, intent_id: str, *, max_attempts: int) -> bool:
        """True when an untracked id may be fetched from the ledger this tick."""
        if intent_id in self._processing:
            return False
        record = self._unresolved.get(intent_id)
        if record is None:
            return True
        return record.attempts < max_attempts and self._clock() >= record.next_retry_at

    def record_unresolved_failure(
        self,
        intent_id: str,
        *,
        kind: ErrorKind,
        message: str,
        backoff: BackoffPolicy,
    ) -> RetryRecord:
        now = self._clock()
        record = self._unresolved.get(intent_id)
        if record is None:
            record = RetryRecord(first_seen_at=now, next_retry_at=now)
            self._unresolved[intent_id] = record
        record.attempts += 1
        record.last_error = message
        record.last_error_kind = kind
        record.next_retry_at = backoff.next_retry_at(now, record.attempts)
        return record

    def reset_for_recovery(self, kind: ErrorKind) -> list[Intent]:
        now = self._clock()
        recovered: list[Intent] = []
        for intent_id, record in self._records.items():
            if record.last_error_kind is not kind:
                continue
            record.attempts = 0
            record.next_retry_at = now
            recovered.append(self._intents[intent_id])
        return recovered

    def expired(
        self,
        *,
        max_attempts: int,
        expiry_seconds: float,
    ) -> list[tuple[Intent, RetryRecord]]:
        now = self._clock()
        expired: list[tuple[Intent, RetryRecord]] = []
        for intent_id, record in self._records.items():
            if intent_id in self._processing:
                continue
            age = now - record.first_seen_at
            if record.attempts >= max_attempts or age > expiry_seconds:
                expired.append((self._intents[intent_id], record))
        return expired

    def expired_unresolved(
        self,
        *,
        max_attempts: int,
        expiry_seconds: float,
    ) -> list[tuple[str, RetryRecord]]:
        now = self._clock()
        return [
            (intent_id, record)
            for intent_id, record in self._unresolved.items()
            if record.attempts >= max_attempts or now - record.first_seen_at > expiry_seconds
        ]

    def complete(self, intent_id: str) -> None:
        self.delete(intent_id)
        self._completed[intent_id] = self._clock()

    def is_recently_completed(self, intent_id: str) -> bool:
        completed_at = self._completed.get(intent_id)
        if completed_at is None:
            return False
        return self._clock() - completed_at <= self._completed_ttl_seconds

    def prune_completed(self) -> int:
        cutoff = self._clock() - self._completed_ttl_seconds
        stale = [intent_id for intent_id, completed_at in self._completed.items() if completed_at < cutoff]
        for intent_id in stale:
            del self._completed[intent_id]
        return len(stale)

    def clear(self, intent_id: str) -> bool:
        """Forget an intent everywhere, including its completion tombstone.

        An attempt already in flight keeps its claim until it finishes.
        """
        removed = self.delete(intent_id)
        if self._completed.pop(intent_id, None) is not None:
            removed = True
        return removed

    def snapshot(self) -> dict[str, Any]:
        pending: list[str] = []
        retry: list[str] = []
        gateway_unavailable: list[str] = []
        for intent_id, record in self._records.items():
            if record.last_error_kind is ErrorKind.GATEWAY_UNAVAILABLE:
                gateway_unavailable.append(intent_id)
            elif record.attempts > 0:
                retry.append(intent_id)
            else:
                pending.append(intent_id)

        return {
            "pending": sorted(pending),
            "retry": sorted(retry),
            "gateway_unavailable": sorted(gateway_unavailable),
            "processing": sorted(self._processing),
            "unresolved": sorted(self._unresolved),
            "recently_completed": len(self._completed),
            "records": {
                intent_id: record.to_dict()
                for intent_id, record in (*self._records.items(), *self._unresolved.items())
            },
        }
