"""
Circuit breaker for calls into external collaborators.
"""

import time
from enum import Enum
from typing import Dict, Any, Callable, Awaitable, Optional

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerOpenException(Exception):
    """Raised when a call is rejected because the breaker is open."""

    def __init__(self, name: str, retry_in: float):
        super().__init__(f"Circuit breaker '{name}' is OPEN - blocking call")
        self.name = name
        self.retry_in = retry_in


class CircuitBreaker:
    """Counts consecutive failures of an async call and short-circuits
    further calls for ``recovery_timeout`` seconds once ``failure_threshold``
    is reached. One trial call is let through after the timeout; its outcome
    closes or re-opens the breaker.
    """

    def __init__(self,
                 name: str = "default",
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 clock: Optional[Callable[[], float]] = None):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock or time.monotonic
        self.logger = get_logger(f"proxy.circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitBreakerState:
        if self._state == CircuitBreakerState.OPEN and self._retry_in() <= 0:
            self._state = CircuitBreakerState.HALF_OPEN
            self.logger.info("Circuit breaker transitioning to half-open")
        return self._state

    def _retry_in(self) -> float:
        return self.recovery_timeout - (self._clock() - self._opened_at)

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        if self.state == CircuitBreakerState.OPEN:
            raise CircuitBreakerOpenException(self.name, max(0.0, self._retry_in()))

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise

        if self._state != CircuitBreakerState.CLOSED:
            self.logger.info("Circuit breaker reset to CLOSED after successful call")
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        return result

    def _record_failure(self):
        self._failure_count += 1
        if self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._clock()
            self.logger.warning(
                "Circuit breaker opened due to failures",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self.state == CircuitBreakerState.OPEN
