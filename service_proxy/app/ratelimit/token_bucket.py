"""
In-memory token bucket rate limiter.
"""

import time
from typing import Callable, Optional


class TokenBucket:
    """Token bucket granting ``capacity`` bursts refilled at ``refill_rate``
    tokens per second.

    ``allow()`` never blocks: it consumes a token when one is available and
    reports whether it did. Buckets start full.
    """

    def __init__(self, capacity: int = 5, refill_rate: float = 2.0,
                 clock: Optional[Callable[[], float]] = None):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")

        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock or time.monotonic
        self._tokens = float(capacity)
        self._updated_at = self._clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated_at
        if elapsed > 0:
            self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_rate)
        self._updated_at = now

    @property
    def tokens(self) -> float:
        """Tokens currently available, refilled up to now."""
        self._refill()
        return self._tokens

    def allow(self) -> bool:
        """Consume one token if available."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def retry_after(self) -> float:
        """Seconds until the next token becomes available."""
        missing = 1.0 - self.tokens
        if missing <= 0:
            return 0.0
        return missing / self.refill_rate

    def __repr__(self) -> str:
        return f"TokenBucket(capacity={self.capacity}, refill_rate={self.refill_rate}, tokens={self._tokens:.2f})"
