"""
Payment validator comparing expected usage with observed payments.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.balance_client import BalanceOracle
    from ..sessions import Session


@dataclass(frozen=True)
class PaymentDecision:
    """Outcome of one payment check."""

    authorized: bool
    expected_value: int
    paid_value: int
    buffer: int

    @property
    def outstanding(self) -> int:
        return self.expected_value - self.paid_value


def evaluate_payment(session: "Session", balance: int, price: int, buffer: int) -> PaymentDecision:
    """Charge ``price`` to ``session`` and check it against ``balance``.

    The consumer has paid whatever its balance grew by since the session
    started. The request is authorized while the unpaid amount stays within
    ``buffer``. Counters are mutated even when the result is a denial.
    """
    session.expected_value += price
    session.paid_value = balance - session.initial_value
    return PaymentDecision(
        authorized=session.expected_value - session.paid_value <= buffer,
        expected_value=session.expected_value,
        paid_value=session.paid_value,
        buffer=buffer,
    )


class PaymentValidator:
    """Applies :func:`evaluate_payment` with a live balance lookup."""

    def __init__(self, balance_oracle: "BalanceOracle", price: int = 1, buffer: int = 10):
        self.balance_oracle = balance_oracle
        self.price = price
        self.buffer = buffer
        self.logger = get_logger("proxy.payment_validator")

    async def validate(self, session: "Session") -> PaymentDecision:
        balance = await self.balance_oracle.balance_of(session.consumer)
        decision = evaluate_payment(
            session,
            balance,
            self.price,
            self.buffer,
        )

        if decision.authorized:
            self.logger.debug(
                "Valid TX",
                client_id=session.id,
                expected_value=decision.expected_value,
                paid_value=decision.paid_value,
            )
        else:
            self.logger.warning(
                "Payment behind",
                client_id=session.id,
                producer=session.producer,
                outstanding=decision.outstanding,
                buffer=decision.buffer,
            )
        return decision
