"""
Streaming forwarder for proxied upstream requests.
"""

import time
from typing import TYPE_CHECKING, List, Optional, Tuple
from urllib.parse import quote, unquote

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from shared.errors import UpstreamError, UpstreamTimeoutError, ValidationError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


# Connection-scoped headers (RFC 7230 section 6.1) are never forwarded.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})


def raw_forward_path(request: Request, endpoint_id: str, path: str) -> str:
    """Return the part of the request path after ``/endpoint/{id}/``, still
    percent-encoded as the client sent it.

    ``path`` is the decoded route parameter; it is re-quoted when the
    server provides no ``raw_path``. Dot segments are rejected so the result
    always stays below the upstream base URL.
    """
    forward_path = None
    raw_path = request.scope.get("raw_path")
    if raw_path:
        raw = raw_path.decode("latin-1").split("?", 1)[0]
        root_path = request.scope.get("root_path", "")
        if root_path and raw.startswith(root_path):
            raw = raw[len(root_path):]
        # "", "endpoint", id, rest
        parts = raw.split("/", 3)
        if len(parts) == 4 and unquote(parts[2]) == endpoint_id:
            forward_path = parts[3]
    if forward_path is None:
        forward_path = quote(path, safe="/")

    if any(unquote(segment) in (".", "..") for segment in forward_path.split("/")):
        raise ValidationError(
            "Dot segments are not allowed in the forwarded path",
            details={"endpoint_id": endpoint_id, "path": forward_path},
        )
    return forward_path


def join_upstream_url(base_url: str, path: str, query: str = "") -> str:
    """Append ``path`` to ``base_url`` with exactly one slash between them."""
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    if query:
        url = f"{url}?{query}"
    return url


def filter_headers(raw_headers: List[Tuple[bytes, bytes]], *, drop_host: bool = False) -> List[Tuple[str, str]]:
    """Drop hop-by-hop headers (and Host when forwarding a request)."""
    connection_tokens = set()
    for key, value in raw_headers:
        if key.lower() == b"connection":
            connection_tokens.update(token.strip().lower() for token in value.decode("latin-1").split(","))

    headers = []
    for key, value in raw_headers:
        name = key.decode("latin-1").lower()
        if name in HOP_BY_HOP_HEADERS or name in connection_tokens:
            continue
        if drop_host and name == "host":
            continue
        headers.append((key.decode("latin-1"), value.decode("latin-1")))
    return headers


class UpstreamForwarder:
    """Forward an incoming request to an upstream and stream the answer back.

    The Host header is dropped so the upstream sees its own host name. No
    retries are attempted.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.logger = get_logger("proxy.upstream")
        self.metrics = metrics
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=False)

    async def forward(self, request: Request, base_url: str, path: str, *,
                      endpoint_id: str = "", client_ip: Optional[str] = None) -> StreamingResponse:
        """Send ``request`` to ``base_url`` joined with the percent-encoded ``path``."""
        url = join_upstream_url(base_url, path, request.url.query)
        headers = filter_headers(request.headers.raw, drop_host=True)
        if client_ip:
            headers = self._append_forwarded_for(headers, client_ip)

        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers

        self.logger.info("Forwarding request", endpoint_id=endpoint_id, method=request.method, url=url)
        start_time = time.time()
        try:
            upstream_request = self._client.build_request(
                request.method,
                url,
                headers=headers,
                content=request.stream() if has_body else None,
            )
            upstream_response = await self._client.send(upstream_request, stream=True)
        except httpx.TimeoutException as exc:
            self.logger.error("Upstream timed out", endpoint_id=endpoint_id, url=url)
            raise UpstreamTimeoutError(url) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self.logger.error("Upstream request failed", endpoint_id=endpoint_id, url=url, error=str(exc))
            raise UpstreamError(url, details={"error": str(exc)}) from exc

        if self.metrics:
            duration = time.time() - start_time
            metric = self.metrics.get_metric("upstream_duration_seconds")
            if metric is not None:
                metric.labels(endpoint=endpoint_id).observe(duration)

        response = StreamingResponse(
            upstream_response.aiter_raw(),
            status_code=upstream_response.status_code,
            background=BackgroundTask(upstream_response.aclose),
        )
        # Raw list keeps repeated headers such as Set-Cookie intact
        response.raw_headers = [
            (key.encode("latin-1"), value.encode("latin-1"))
            for key, value in filter_headers(upstream_response.headers.raw)
        ]
        return response

    @staticmethod
    def _append_forwarded_for(headers: List[Tuple[str, str]], client_ip: str) -> List[Tuple[str, str]]:
        prior = [value for key, value in headers if key.lower() == "x-forwarded-for"]
        rest = [(key, value) for key, value in headers if key.lower() != "x-forwarded-for"]
        chain = ", ".join(prior + [client_ip])
        return rest + [("X-Forwarded-For", chain)]

    async def close(self) -> None:
        await self._client.aclose()
