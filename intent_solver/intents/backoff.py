from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Exponential, capped, jittered retry delays.

    ``delay(attempts) = min(max_delay, initial_delay * factor ** attempts) + U(0, jitter)``.
    The policy holds no state; the random source is injectable so tests can pin it.
    """

    initial_delay: float = 1.0
    max_delay: float = 60.0
    factor: float = 2.0
    max_attempts: int = 5
    jitter: float = 1.0

    def base_delay(self, attempts: int) -> float:
        exponent = max(0, attempts)
        try:
            raw = self.initial_delay * (self.factor**exponent)
        except OverflowError:
            return self.max_delay
        return min(self.max_delay, raw)

    def delay(self, attempts: int, *, rng: Callable[[], float] = random.random) -> float:
        jitter = rng() * self.jitter if self.jitter > 0 else 0.0
        return self.base_delay(attempts) + jitter

    def next_retry_at(
        self,
        now: float,
        attempts: int,
        *,
        rng: Callable[[], float] = random.random,
    ) -> float:
        return now + self.delay(attempts, rng=rng)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts


DAEMON_BACKOFF = BackoffPolicy()
CACHE_BACKOFF = BackoffPolicy(initial_delay=1.0, max_delay=30.0, factor=2.0, max_attempts=5, jitter=0.0)
