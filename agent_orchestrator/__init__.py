"""
Agent orchestrator: task graph scheduling and message routing for
autonomous worker agents.
"""

__version__ = "0.1.0"
