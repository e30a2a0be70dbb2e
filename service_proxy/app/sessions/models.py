"""
Session state for one metered client.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict

from ..ratelimit import TokenBucket


@dataclass
class Session:
    """Metering state binding a client identity to a producer account.

    ``expected_value`` grows by the request price on every charged request;
    ``paid_value`` is the consumer balance delta since the session started.
    Counter updates happen while holding ``lock``.
    """

    id: str
    limiter: TokenBucket
    consumer: str
    producer: str
    initial_value: int
    last_seen: float
    created_at: float
    paid_value: int = 0
    expected_value: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def outstanding(self) -> int:
        """Value owed beyond what has been paid."""
        return self.expected_value - self.paid_value

    def touch(self, now: float) -> None:
        self.last_seen = now

    def is_idle(self, now: float, idle_timeout: float) -> bool:
        return now - self.last_seen > idle_timeout

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "consumer": self.consumer,
            "producer": self.producer,
            "initial_value": self.initial_value,
            "paid_value": self.paid_value,
            "expected_value": self.expected_value,
            "outstanding": self.outstanding,
            "tokens": round(self.limiter.tokens, 3),
            "last_seen": self.last_seen,
            "created_at": self.created_at,
        }
