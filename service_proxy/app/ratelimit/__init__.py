"""
Rate limiting package for the proxy.

Each metered session owns one token bucket; there is no global limiter.
"""

from .token_bucket import TokenBucket

__all__ = ["TokenBucket"]
