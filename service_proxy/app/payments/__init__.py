"""
Pay-as-you-go consistency checks for metered sessions.
"""

from .validator import PaymentDecision, PaymentValidator, evaluate_payment

__all__ = ["PaymentDecision", "PaymentValidator", "evaluate_payment"]
