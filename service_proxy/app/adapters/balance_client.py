"""
Balance oracle clients.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Optional
from urllib.parse import quote

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class BalanceOracle(ABC):
    """Source of truth for account balances."""

    @abstractmethod
    async def balance_of(self, address: str) -> int:
        """Return the current spendable balance of ``address``."""

    async def check_health(self) -> str:
        return "ok"

    async def close(self) -> None:
        return None


class StaticBalanceOracle(BalanceOracle):
    """In-memory balances for local runs and tests."""

    def __init__(self, balances: Optional[Dict[str, int]] = None, default: int = 0):
        self.balances: Dict[str, int] = dict(balances or {})
        self.default = default

    async def balance_of(self, address: str) -> int:
        return self.balances.get(address, self.default)

    def set_balance(self, address: str, balance: int) -> None:
        self.balances[address] = balance

    def credit(self, address: str, amount: int) -> int:
        self.balances[address] = self.balances.get(address, self.default) + amount
        return self.balances[address]


class HttpBalanceClient(BalanceOracle):
    """Client for an HTTP balance oracle.

    Expects ``GET {base_url}/balances/{address}`` to answer
    ``{"balance": <int>}``. Failures surface as ExternalServiceError; no
    retries are attempted.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.logger = get_logger("proxy.balance_client")
        self.metrics = metrics
        self.circuit_breaker = CircuitBreaker(
            "balance_oracle",
            failure_threshold=3,
            recovery_timeout=30.0
        )
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def balance_of(self, address: str) -> int:
        try:
            balance = await self.circuit_breaker.call(self._fetch_balance, address)
        except CircuitBreakerOpenException as exc:
            self._record("circuit_open")
            raise ExternalServiceError(
                service="balance_oracle",
                message="Circuit open",
                details={"retry_in": round(exc.retry_in, 2)}
            ) from exc
        except ExternalServiceError:
            self._record("error")
            raise

        self._record("ok")
        return balance

    async def _fetch_balance(self, address: str) -> int:
        try:
            response = await self._client.get(f"/balances/{quote(address, safe='')}")
        except httpx.TimeoutException as exc:
            self.logger.error("Balance oracle timed out", address=address)
            raise ExternalServiceError(
                service="balance_oracle",
                message="Timed out",
                details={"address": address}
            ) from exc
        except httpx.HTTPError as exc:
            self.logger.error("Balance oracle HTTP error", address=address, error=str(exc))
            raise ExternalServiceError(
                service="balance_oracle",
                message="Unavailable",
                details={"address": address, "http_error": str(exc)}
            ) from exc

        if response.status_code != 200:
            self.logger.error(
                "Balance oracle request failed",
                address=address,
                status_code=response.status_code,
                response=response.text
            )
            raise ExternalServiceError(
                service="balance_oracle",
                message=f"Unexpected status {response.status_code}",
                details={"status_code": response.status_code}
            )

        try:
            return int(response.json()["balance"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ExternalServiceError(
                service="balance_oracle",
                message="Malformed balance response",
                details={"body": response.text}
            ) from exc

    def _record(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("balance_lookups_total", status=status)

    async def check_health(self) -> str:
        return "error" if self.circuit_breaker.is_open() else "ok"

    async def close(self) -> None:
        await self._client.aclose()
