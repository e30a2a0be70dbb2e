"""
Per-request metering pipeline.
"""

from typing import TYPE_CHECKING, Optional

from fastapi import Request
from fastapi.responses import StreamingResponse

from shared.errors import EndpointNotFoundError, RateLimitError
from shared.logging import get_logger, set_client_context
from .adapters.upstream_client import raw_forward_path

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from .adapters import UpstreamForwarder
    from .endpoints import EndpointRegistry
    from .payments import PaymentValidator
    from .sessions import SessionRegistry


class RequestDispatcher:
    """Resolve, meter, throttle and forward one proxied request.

    Payment is evaluated before the rate limiter and is charged even if the
    limiter then denies, unless ``charge_denied_requests`` is off, in which
    case a throttled request is rejected before anything is charged.
    """

    def __init__(
        self,
        endpoints: "EndpointRegistry",
        sessions: "SessionRegistry",
        validator: "PaymentValidator",
        forwarder: "UpstreamForwarder",
        *,
        consumer_account: str,
        charge_denied_requests: bool = True,
        trust_forwarded_for: bool = False,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.endpoints = endpoints
        self.sessions = sessions
        self.validator = validator
        self.forwarder = forwarder
        self.consumer_account = consumer_account
        self.charge_denied_requests = charge_denied_requests
        self.trust_forwarded_for = trust_forwarded_for
        self.metrics = metrics
        self.logger = get_logger("proxy.dispatcher")

    def client_id(self, request: Request) -> str:
        """Identify the caller by source address."""
        if self.trust_forwarded_for:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()
            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return real_ip
        if request.client:
            return request.client.host
        return "unknown"

    async def dispatch(self, request: Request, endpoint_id: str, path: str) -> StreamingResponse:
        try:
            endpoint = await self.endpoints.lookup(endpoint_id)
        except EndpointNotFoundError:
            self._record("unknown", "not_found")
            raise

        forward_path = raw_forward_path(request, endpoint_id, path)

        client_id = self.client_id(request)
        set_client_context(client_id)
        session = await self.sessions.get_or_create(client_id, self.consumer_account, endpoint.address)

        async with session.lock:
            if self.charge_denied_requests:
                decision = await self.validator.validate(session)
                allowed = session.limiter.allow()
            else:
                allowed = session.limiter.allow()
                decision = await self.validator.validate(session) if allowed else None

            if not allowed:
                retry_after = session.limiter.retry_after()

        if not allowed:
            self._record(endpoint_id, "rate_limited")
            self.logger.warning("Rate limit exceeded", endpoint_id=endpoint_id, retry_after=round(retry_after, 3))
            raise RateLimitError(
                details={"endpoint_id": endpoint_id, "reason": "rate"},
                retry_after=retry_after,
            )

        if not decision.authorized:
            self._record(endpoint_id, "payment_required")
            raise RateLimitError(
                "Payment behind schedule",
                details={
                    "endpoint_id": endpoint_id,
                    "reason": "payment",
                    "expected_value": decision.expected_value,
                    "paid_value": decision.paid_value,
                    "buffer": decision.buffer,
                },
            )

        self.logger.info("Getting path from endpoint", endpoint_id=endpoint_id, path=forward_path)
        response = await self.forwarder.forward(
            request,
            endpoint.url,
            forward_path,
            endpoint_id=endpoint_id,
            client_ip=client_id,
        )
        self._record(endpoint_id, "forwarded")
        return response

    def _record(self, endpoint_id: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("proxy_requests_total", endpoint=endpoint_id, outcome=outcome)
