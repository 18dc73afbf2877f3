from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from intent_solver.common import log_event
from intent_solver.intents.backoff import CACHE_BACKOFF, BackoffPolicy
from intent_solver.intents.errors import NotFoundError, classify_error
from intent_solver.intents.types import Clock

T = TypeVar("T")


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    data: T | None
    timestamp: float
    attempts: int = 0
    next_retry_at: float = 0.0


def cache_key(kind: str, *params: Any) -> str:
    return ":".join([kind, *(str(param) for param in params)])


class ResilientQueryCache:
    """TTL cache for read queries with per-key backoff.

    While a key is backed off its last value is served even when stale, and a
    404 is stored as a successful empty result.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        clock: Clock,
        backoff: BackoffPolicy = CACHE_BACKOFF,
        max_entry_age_seconds: float = 300.0,
        prune_interval_seconds: float = 60.0,
    ) -> None:
        self._logger = logger
        self._clock = clock
        self._backoff = backoff
        self._max_entry_age_seconds = max_entry_age_seconds
        self._prune_interval_seconds = prune_interval_seconds
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._last_pruned_at = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: str) -> CacheEntry[Any] | None:
        return self._entries.get(key)

    def is_backed_off(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() < entry.next_retry_at

    def cached(self, key: str, ttl_seconds: float) -> tuple[bool, Any]:
        """Return ``(hit, data)`` without touching the network."""
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        now = self._clock()
        if now < entry.next_retry_at:
            return True, entry.data
        if now - entry.timestamp < ttl_seconds:
            return True, entry.data
        return False, None

    async def get(
        self,
        key: str,
        *,
        ttl_seconds: float,
        fetch: Callable[[], Awaitable[T]],
    ) -> T | None:
        self.prune_if_due()

        hit, data = self.cached(key, ttl_seconds)
        if hit:
            return data

        try:
            value = await fetch()
        except asyncio.CancelledError:
            raise
        except NotFoundError:
            log_event(
                self._logger,
                level="debug",
                event="query_cache_not_found",
                message="Query returned no data; caching empty result",
                key=key,
            )
            self._store_success(key, None)
            return None
        except Exception as error:
            self._store_failure(key, error)
            return None

        self._store_success(key, value)
        return value

    def _store_success(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(data=value, timestamp=self._clock())

    def _store_failure(self, key: str, error: Exception) -> None:
        previous = self._entries.get(key)
        attempts = (previous.attempts if previous else 0) + 1
        now = self._clock()
        entry = CacheEntry(
            data=None,
            timestamp=now,
            attempts=attempts,
            next_retry_at=self._backoff.next_retry_at(now, attempts),
        )
        self._entries[key] = entry

        exhausted = self._backoff.exhausted(attempts)
        log_event(
            self._logger,
            level="warning",
            event="query_cache_backoff",
            message=(
                "Query failed; max attempts reached, serving cached failures until entry expires"
                if exhausted
                else "Query failed; backing off"
            ),
            key=key,
            attempts=attempts,
            max_attempts=self._backoff.max_attempts,
            retry_in_seconds=round(entry.next_retry_at - now, 3),
            error=str(error),
            error_kind=classify_error(error).value,
        )

    def prune_if_due(self) -> int:
        if self._clock() - self._last_pruned_at < self._prune_interval_seconds:
            return 0
        return self.prune()

    def prune(self) -> int:
        now = self._clock()
        self._last_pruned_at = now
        stale = [
            key
            for key, entry in self._entries.items()
            if now - entry.timestamp > self._max_entry_age_seconds
        ]
        for key in stale:
            del self._entries[key]
        if stale:
            log_event(
                self._logger,
                level="debug",
                event="query_cache_pruned",
                message="Pruned old query cache entries",
                removed=len(stale),
                remaining=len(self._entries),
            )
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
