"""
Orchestration - the dispatch loop that drives task graphs forward.
"""

from .dispatch import InboxDispatcher, build_assignment
from .driver import DispatchFunc, DriverConfig, OrchestrationDriver, RoundResult

__all__ = [
    "DispatchFunc",
    "DriverConfig",
    "InboxDispatcher",
    "OrchestrationDriver",
    "RoundResult",
    "build_assignment",
]
