"""
Adapters package for the proxy service.

Contains HTTP client wrappers for external collaborators (balance oracle,
proxied upstreams). These adapters encapsulate:

- Base URLs, timeouts and request shapes
- Circuit breaking for the oracle
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .balance_client import BalanceOracle, HttpBalanceClient, StaticBalanceOracle
from .upstream_client import UpstreamForwarder

__all__ = [
    "BalanceOracle",
    "HttpBalanceClient",
    "StaticBalanceOracle",
    "UpstreamForwarder",
]
