"""
Unit tests for the per-session token bucket.
"""

import pytest

from service_proxy.app.ratelimit import TokenBucket


class TestTokenBucket:
    """Test cases for TokenBucket."""

    @pytest.fixture
    def bucket(self, clock):
        return TokenBucket(capacity=5, refill_rate=2.0, clock=clock)

    def test_burst_then_deny(self, bucket):
        """First five requests pass, the sixth is denied."""
        results = [bucket.allow() for _ in range(6)]
        assert results == [True, True, True, True, True, False]

    def test_half_second_refills_one_token(self, bucket, clock):
        for _ in range(5):
            assert bucket.allow()
        assert not bucket.allow()

        clock.advance(0.5)

        assert bucket.allow() is True
        assert bucket.allow() is False

    def test_refill_capped_at_capacity(self, bucket, clock):
        bucket.allow()
        clock.advance(3600)
        assert bucket.tokens == 5.0

    def test_denied_request_does_not_consume(self, bucket, clock):
        for _ in range(5):
            bucket.allow()
        for _ in range(10):
            assert not bucket.allow()

        clock.advance(0.5)
        assert bucket.allow()

    def test_retry_after(self, bucket, clock):
        assert bucket.retry_after() == 0.0
        for _ in range(5):
            bucket.allow()
        assert bucket.retry_after() == pytest.approx(0.5)

        clock.advance(0.25)
        assert bucket.retry_after() == pytest.approx(0.25)

    @pytest.mark.parametrize("capacity,refill_rate", [(0, 2.0), (5, 0), (5, -1.0)])
    def test_invalid_parameters(self, capacity, refill_rate):
        with pytest.raises(ValueError):
            TokenBucket(capacity=capacity, refill_rate=refill_rate)
