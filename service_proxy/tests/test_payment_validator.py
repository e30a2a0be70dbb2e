"""
Unit tests for the payment validator.
"""

import pytest
from unittest.mock import AsyncMock

from shared.errors import ExternalServiceError
from service_proxy.app.adapters import StaticBalanceOracle
from service_proxy.app.payments import PaymentValidator, evaluate_payment
from service_proxy.app.ratelimit import TokenBucket
from service_proxy.app.sessions import Session

CONSUMER = "CONSUMER9ACCOUNT"


def make_session(initial_value: int = 100) -> Session:
    return Session(
        id="10.0.0.1",
        limiter=TokenBucket(),
        consumer=CONSUMER,
        producer="PRODUCER9ACCOUNT",
        initial_value=initial_value,
        last_seen=0.0,
        created_at=0.0,
    )


class TestEvaluatePayment:
    """Test cases for evaluate_payment."""

    def test_denies_after_buffer_exceeded(self):
        """With a static balance the (buffer + 1)-th request is denied."""
        session = make_session()
        decisions = [evaluate_payment(session, 100, price=1, buffer=10) for _ in range(11)]

        assert all(d.authorized for d in decisions[:10])
        assert decisions[10].authorized is False
        assert decisions[10].outstanding == 11

    def test_counters_accrue_on_denial(self):
        session = make_session()
        for _ in range(15):
            evaluate_payment(session, 100, price=1, buffer=10)

        assert session.expected_value == 15
        assert session.paid_value == 0

    def test_payment_catches_up(self):
        session = make_session(initial_value=100)
        for _ in range(11):
            decision = evaluate_payment(session, 100, price=1, buffer=10)
        assert not decision.authorized

        decision = evaluate_payment(session, 105, price=1, buffer=10)

        assert decision.authorized
        assert decision.paid_value == 5
        assert decision.expected_value == 12

    def test_price_scales_debt(self):
        session = make_session()
        assert evaluate_payment(session, 100, price=5, buffer=10).authorized
        assert evaluate_payment(session, 100, price=5, buffer=10).authorized
        assert not evaluate_payment(session, 100, price=5, buffer=10).authorized


class TestPaymentValidator:
    """Test cases for PaymentValidator."""

    @pytest.mark.asyncio
    async def test_validate_uses_live_balance(self):
        oracle = StaticBalanceOracle({CONSUMER: 100})
        validator = PaymentValidator(oracle, price=1, buffer=10)
        session = make_session(initial_value=100)

        for _ in range(10):
            assert (await validator.validate(session)).authorized
        assert not (await validator.validate(session)).authorized

        oracle.credit(CONSUMER, 3)
        decision = await validator.validate(session)

        assert decision.authorized
        assert session.paid_value == 3

    @pytest.mark.asyncio
    async def test_oracle_failure_propagates_without_charging(self):
        oracle = AsyncMock()
        oracle.balance_of.side_effect = ExternalServiceError("balance_oracle", "Unavailable")
        validator = PaymentValidator(oracle)
        session = make_session()

        with pytest.raises(ExternalServiceError):
            await validator.validate(session)

        assert session.expected_value == 0
