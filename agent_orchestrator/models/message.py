from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ORCHESTRATOR = "orchestrator"


class MessageType(str, Enum):
    TASK_COMPLETE = "task_complete"
    TASK_FAILED = "task_failed"
    NEEDS_INPUT = "needs_input"
    NEEDS_DECISION = "needs_decision"
    ERROR = "error"
    CHECKPOINT_READY = "checkpoint_ready"
    HANDOFF = "handoff"
    STATUS_UPDATE = "status_update"


class PayloadStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"
    IN_PROGRESS = "in_progress"
    NEEDS_REVIEW = "needs_review"


class BlockerSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BlockerRequirement(str, Enum):
    CEO_DECISION = "ceo_decision"
    OTHER_AGENT = "other_agent"
    EXTERNAL = "external"
    INVESTIGATION = "investigation"


class WireModel(BaseModel):
    """Immutable model serialized with camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        use_enum_values=False,
    )


class MessageArtifact(WireModel):
    path: str
    type: str
    description: Optional[str] = None


class Blocker(WireModel):
    description: str
    severity: BlockerSeverity
    requires: BlockerRequirement


class MessageMetadata(WireModel):
    sender: str = Field(alias="from")
    to: str
    timestamp: str
    message_type: MessageType
    product: Optional[str] = None
    task_id: Optional[str] = None


class MessagePayload(WireModel):
    status: PayloadStatus
    summary: str
    artifacts: List[MessageArtifact] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    blockers: List[Blocker] = Field(default_factory=list)
    metrics: Dict[str, Any] = Field(default_factory=dict)


class Handoff(WireModel):
    next_agent: str
    required_context: List[str] = Field(default_factory=list)
    suggested_task: Optional[str] = None


class ErrorDetails(WireModel):
    error_type: str
    error_message: str
    attempted_solutions: List[str] = Field(default_factory=list)
    retry_count: int = 0


class AgentMessage(WireModel):
    """A progress report authored by a worker agent."""
    metadata: MessageMetadata
    payload: MessagePayload
    handoff: Optional[Handoff] = None
    error_details: Optional[ErrorDetails] = None

    @property
    def key(self) -> str:
        """Idempotency key: timestamp, sender and message type."""
        meta = self.metadata
        return f"{meta.timestamp}:{meta.sender}:{meta.message_type.value}"

    @property
    def is_for_orchestrator(self) -> bool:
        return self.metadata.to == ORCHESTRATOR

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire format."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
