"""
Metering proxy service for Tollgate.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from .adapters import BalanceOracle, HttpBalanceClient, StaticBalanceOracle, UpstreamForwarder
from .dispatcher import RequestDispatcher
from .endpoints import DEFAULT_SEEDS, Endpoint, EndpointRegistry, EndpointUpdate, load_seed_file
from .payments import PaymentValidator
from .ratelimit import TokenBucket
from .sessions import SessionRegistry, SessionSweeper
from .storage import KeyValueStore, open_store


PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "TRACE"]


class ProxyService(BaseService):
    """Metering reverse proxy in front of the registered endpoints.

    Collaborators are built when the application starts and released when
    it stops: the store, the balance oracle, the upstream client and the
    session sweeper. ``balance_oracle`` and ``upstream_transport`` may be
    injected (tests use in-memory balances and ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        balance_oracle: Optional[BalanceOracle] = None,
        upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
        oracle_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("proxy", 8080, config)
        self._injected_oracle = balance_oracle
        self._upstream_transport = upstream_transport
        self._oracle_transport = oracle_transport

        self.store: Optional[KeyValueStore] = None
        self.balance_oracle: Optional[BalanceOracle] = None
        self.endpoint_registry: Optional[EndpointRegistry] = None
        self.session_registry: Optional[SessionRegistry] = None
        self.sweeper: Optional[SessionSweeper] = None
        self.forwarder: Optional[UpstreamForwarder] = None
        self.dispatcher: Optional[RequestDispatcher] = None

        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.proxy_service = self

    def _build_balance_oracle(self) -> BalanceOracle:
        if self._injected_oracle is not None:
            return self._injected_oracle
        if self.config.balance_oracle_url:
            return HttpBalanceClient(
                self.config.balance_oracle_url,
                timeout=self.config.balance_timeout,
                transport=self._oracle_transport,
                metrics=self.metrics,
            )
        self.logger.warning("No balance oracle configured, using static balances")
        return StaticBalanceOracle(self.config.static_balances)

    def _new_limiter(self) -> TokenBucket:
        return TokenBucket(self.config.bucket_capacity, self.config.refill_rate)

    async def startup(self) -> None:
        """Open the store, seed endpoints and start the session sweeper."""
        self.store = await open_store(self.config)

        self.endpoint_registry = EndpointRegistry(self.store)
        seeds = load_seed_file(self.config.seed_file) if self.config.seed_file else DEFAULT_SEEDS
        await self.endpoint_registry.seed(seeds)

        self.balance_oracle = self._build_balance_oracle()
        self.session_registry = SessionRegistry(
            self.balance_oracle,
            idle_timeout=self.config.session_idle_timeout,
            limiter_factory=self._new_limiter,
            metrics=self.metrics,
        )
        self.sweeper = SessionSweeper(self.session_registry, interval=self.config.sweep_interval)
        self.forwarder = UpstreamForwarder(
            self.config.upstream_timeout,
            transport=self._upstream_transport,
            metrics=self.metrics,
        )
        self.dispatcher = RequestDispatcher(
            self.endpoint_registry,
            self.session_registry,
            PaymentValidator(self.balance_oracle, price=self.config.tx_price, buffer=self.config.tx_buffer),
            self.forwarder,
            consumer_account=self.config.consumer_account,
            charge_denied_requests=self.config.charge_denied_requests,
            trust_forwarded_for=self.config.trust_forwarded_for,
            metrics=self.metrics,
        )
        self.sweeper.start()

    async def shutdown(self) -> None:
        if self.sweeper is not None:
            await self.sweeper.stop()
        if self.forwarder is not None:
            await self.forwarder.close()
        if self.balance_oracle is not None:
            await self.balance_oracle.close()
        if self.store is not None:
            await self.store.close()

    def _setup_proxy_routes(self):
        """Set up balance, proxy and admin routes."""

        @self.app.get("/balance/{address}")
        async def get_balance(address: str):
            """Current balance of ``address`` according to the oracle."""
            balance = await self.balance_oracle.balance_of(address)
            self.logger.info("Balance", address=address, balance=balance)
            return {"address": address, "balance": balance}

        @self.app.api_route("/endpoint/{endpoint_id}/{path:path}", methods=PROXY_METHODS)
        async def proxy_endpoint(endpoint_id: str, path: str, request: Request):
            """Meter and forward a request to the endpoint's upstream."""
            return await self.dispatcher.dispatch(request, endpoint_id, path)

        @self.app.get("/api/v1/sessions")
        async def list_sessions():
            """Active metering sessions."""
            sessions = await self.session_registry.snapshot()
            return {"count": len(sessions), "sessions": sessions}

        @self.app.get("/api/v1/endpoints")
        async def list_endpoints():
            """Registered upstream endpoints."""
            endpoints = await self.endpoint_registry.list_endpoints()
            return {
                "count": len(endpoints),
                "endpoints": [endpoint.model_dump() for endpoint in endpoints],
            }

        @self.app.put("/api/v1/endpoints/{endpoint_id}")
        async def put_endpoint(endpoint_id: str, update: EndpointUpdate):
            """Register or replace an endpoint."""
            endpoint = await self.endpoint_registry.register(
                Endpoint(id=endpoint_id, url=update.url, address=update.address)
            )
            return endpoint.model_dump()

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check proxy dependencies."""
        dependencies = {}
        dependencies["store"] = "ok" if self.store is not None and await self.store.ping() else "error"
        dependencies["balance_oracle"] = (
            await self.balance_oracle.check_health() if self.balance_oracle is not None else "error"
        )
        return dependencies


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = ProxyService(config)
    return service.app


def main():
    service = ProxyService(get_config("proxy", 8080))
    service.run()


if __name__ == "__main__":
    main()
