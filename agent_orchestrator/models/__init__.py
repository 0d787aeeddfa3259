from .message import (
    ORCHESTRATOR,
    AgentMessage,
    Blocker,
    BlockerRequirement,
    BlockerSeverity,
    ErrorDetails,
    Handoff,
    MessageArtifact,
    MessageMetadata,
    MessagePayload,
    MessageType,
    PayloadStatus,
)
from .records import (
    AgentPerformance,
    BlockerRecord,
    CheckpointRecord,
    PerformanceEntry,
)

__all__ = [
    # Message
    "ORCHESTRATOR",
    "AgentMessage",
    "Blocker",
    "BlockerRequirement",
    "BlockerSeverity",
    "ErrorDetails",
    "Handoff",
    "MessageArtifact",
    "MessageMetadata",
    "MessagePayload",
    "MessageType",
    "PayloadStatus",
    # Records
    "AgentPerformance",
    "BlockerRecord",
    "CheckpointRecord",
    "PerformanceEntry",
]
