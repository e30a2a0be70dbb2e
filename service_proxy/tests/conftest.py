"""
Shared fixtures for proxy service tests.
"""

import json
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from shared.config import DEFAULT_CONSUMER_ACCOUNT, get_config
from service_proxy.app.adapters import StaticBalanceOracle
from service_proxy.app.main import ProxyService


ALPHA_ADDRESS = "FMYHLHBSJJMJZNPVUOKDCUSFOPQAGPBSPOPMFVBGXUUDFPEWPXREZFQKGKSNHZWDMODRDYWIXQT9CLVBXGPANCSYBW"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StreamBody(httpx.AsyncByteStream):
    """Response body delivered as a stream, like a real transport does."""

    def __init__(self, data: bytes):
        self.data = data

    async def __aiter__(self):
        yield self.data


def upstream_response(status_code: int, body: bytes = b"", headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    """Build a mock upstream response whose body is read lazily."""
    return httpx.Response(status_code, headers=headers, stream=StreamBody(body))


class UpstreamRecorder:
    """httpx.MockTransport handler that records forwarded requests."""

    def __init__(self):
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.dumps({"method": request.method, "url": str(request.url)}).encode()
        return upstream_response(
            200,
            body,
            headers={"Content-Type": "application/json", "X-Upstream": "yes"},
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return UpstreamRecorder()


@pytest.fixture
def balances():
    return StaticBalanceOracle({DEFAULT_CONSUMER_ACCOUNT: 100})


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides: Any):
        settings: Dict[str, Any] = {
            "env": "test",
            "store_backend": "sqlite",
            "store_path": str(tmp_path / "store.db"),
            "balance_oracle_url": None,
        }
        settings.update(overrides)
        return get_config("proxy", 8080, **settings)

    return _make


@pytest.fixture
def make_client(make_config, balances, upstream):
    """Build a started ProxyService and yield a TestClient for it."""

    @contextmanager
    def _make(handler=None, balance_oracle=None, **overrides: Any):
        service = ProxyService(
            make_config(**overrides),
            balance_oracle=balance_oracle or balances,
            upstream_transport=httpx.MockTransport(handler or upstream),
        )
        with TestClient(service.app) as client:
            yield service, client

    return _make
