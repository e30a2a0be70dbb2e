"""
Session registry with idle eviction.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from shared.logging import get_logger
from ..ratelimit import TokenBucket
from .models import Session

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from ..adapters.balance_client import BalanceOracle


class SessionRegistry:
    """Concurrent map from client identity to Session.

    One asyncio lock guards the mapping for inserts, lookups and sweeps.
    Session counters are guarded separately by each session's own lock.
    """

    def __init__(
        self,
        balance_oracle: "BalanceOracle",
        *,
        idle_timeout: float = 600.0,
        limiter_factory: Optional[Callable[[], TokenBucket]] = None,
        clock: Optional[Callable[[], float]] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.balance_oracle = balance_oracle
        self.idle_timeout = idle_timeout
        self._limiter_factory = limiter_factory or TokenBucket
        self._clock = clock or time.monotonic
        self.metrics = metrics
        self.logger = get_logger("proxy.session_registry")

        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._sessions

    async def get(self, client_id: str) -> Optional[Session]:
        """Return the session for ``client_id`` without refreshing it."""
        async with self._lock:
            return self._sessions.get(client_id)

    async def get_or_create(self, client_id: str, consumer: str, producer: str) -> Session:
        """Return the live session for ``client_id``, creating it if needed.

        Existing sessions get ``last_seen`` refreshed. New sessions snapshot
        the consumer balance; the oracle is queried outside the registry lock
        and a concurrent creation for the same client wins if it lands first.
        """
        async with self._lock:
            session = self._sessions.get(client_id)
            if session is not None:
                session.touch(self._clock())
                return session

        initial_value = await self.balance_oracle.balance_of(consumer)

        async with self._lock:
            session = self._sessions.get(client_id)
            if session is not None:
                session.touch(self._clock())
                return session

            now = self._clock()
            session = Session(
                id=client_id,
                limiter=self._limiter_factory(),
                consumer=consumer,
                producer=producer,
                initial_value=initial_value,
                last_seen=now,
                created_at=now,
            )
            self._sessions[client_id] = session
            active = len(self._sessions)

        self.logger.info(
            "New session",
            client_id=client_id,
            producer=producer,
            initial_value=initial_value,
        )
        self._report_active(active)
        return session

    async def sweep(self, now: Optional[float] = None) -> int:
        """Evict sessions idle for longer than ``idle_timeout``."""
        if now is None:
            now = self._clock()

        async with self._lock:
            expired = [
                client_id
                for client_id, session in self._sessions.items()
                if session.is_idle(now, self.idle_timeout)
            ]
            for client_id in expired:
                del self._sessions[client_id]
            active = len(self._sessions)

        if expired:
            self.logger.info("Evicted idle sessions", count=len(expired), active=active)
            if self.metrics:
                self.metrics.increment_counter("sessions_evicted_total", len(expired))
        self._report_active(active)
        return len(expired)

    async def snapshot(self) -> List[dict]:
        """Point-in-time view of all sessions."""
        async with self._lock:
            sessions = list(self._sessions.values())
        return [session.snapshot() for session in sessions]

    def _report_active(self, active: int) -> None:
        if self.metrics:
            self.metrics.set_gauge("active_sessions", active)


class SessionSweeper:
    """Periodic task evicting idle sessions until stopped."""

    def __init__(self, registry: SessionRegistry, interval: float = 60.0):
        self.registry = registry
        self.interval = interval
        self.logger = get_logger("proxy.session_sweeper")
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="session-sweeper")
        self.logger.info("Session sweeper started", interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("Session sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.registry.sweep()
            except Exception as exc:
                self.logger.error("Session sweep failed", error=str(exc), exc_info=True)
