"""
Per-client metering sessions.
"""

from .models import Session
from .registry import SessionRegistry, SessionSweeper

__all__ = ["Session", "SessionRegistry", "SessionSweeper"]
