"""
Handlers - agent message validation and routing.
"""

from .router import (
    MessageRouter,
    RouteResult,
    TransitionOutcome,
    TransitionResult,
)
from .validator import MessageValidationResult, MessageValidator

__all__ = [
    "MessageRouter",
    "MessageValidationResult",
    "MessageValidator",
    "RouteResult",
    "TransitionOutcome",
    "TransitionResult",
]
