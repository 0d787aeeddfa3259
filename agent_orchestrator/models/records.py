"""
Coordination records written by the router.

Checkpoints and blockers are surfaced to the operator; performance records
track per-agent task history. Record ids are derived from the originating
message key, so re-delivering a message updates the same record instead of
creating a duplicate.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .message import AgentMessage, Blocker, PayloadStatus


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def derive_record_id(*parts: str) -> str:
    digest = hashlib.sha1(":".join(parts).encode("utf-8")).hexdigest()
    return digest[:16]


@dataclass
class CheckpointRecord:
    """A human-approval gate armed by a ``checkpoint_ready`` message."""
    id: str
    product: str
    agent: str
    summary: str
    message_key: str
    task_id: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    resolved: bool = False
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None

    @classmethod
    def from_message(cls, message: AgentMessage, product: str) -> "CheckpointRecord":
        return cls(
            id=derive_record_id(message.key, "checkpoint"),
            product=product,
            agent=message.metadata.sender,
            summary=message.payload.summary,
            message_key=message.key,
            task_id=message.metadata.task_id,
        )

    def resolve(self, resolved_by: str, resolution: Optional[str] = None) -> None:
        self.resolved = True
        self.resolved_at = _now_iso()
        self.resolved_by = resolved_by
        self.resolution = resolution

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product": self.product,
            "taskId": self.task_id,
            "agent": self.agent,
            "summary": self.summary,
            "messageKey": self.message_key,
            "createdAt": self.created_at,
            "resolved": self.resolved,
            "resolvedAt": self.resolved_at,
            "resolvedBy": self.resolved_by,
            "resolution": self.resolution,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointRecord":
        return cls(
            id=data["id"],
            product=data["product"],
            task_id=data.get("taskId"),
            agent=data.get("agent", ""),
            summary=data.get("summary", ""),
            message_key=data.get("messageKey", ""),
            created_at=data.get("createdAt") or _now_iso(),
            resolved=bool(data.get("resolved", False)),
            resolved_at=data.get("resolvedAt"),
            resolved_by=data.get("resolvedBy"),
            resolution=data.get("resolution"),
        )


@dataclass
class BlockerRecord:
    """An impediment reported by an agent. Does not gate scheduling."""
    id: str
    product: str
    reported_by: str
    description: str
    severity: str
    requires: str
    message_key: str
    task_id: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    resolved: bool = False
    resolved_at: Optional[str] = None
    resolution: Optional[str] = None

    @classmethod
    def from_blocker(
        cls,
        message: AgentMessage,
        blocker: Blocker,
        product: str,
        position: int,
    ) -> "BlockerRecord":
        return cls(
            id=derive_record_id(message.key, "blocker", str(position)),
            product=product,
            reported_by=message.metadata.sender,
            description=blocker.description,
            severity=blocker.severity.value,
            requires=blocker.requires.value,
            message_key=message.key,
            task_id=message.metadata.task_id,
        )

    def resolve(self, resolution: Optional[str] = None) -> None:
        self.resolved = True
        self.resolved_at = _now_iso()
        self.resolution = resolution

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product": self.product,
            "taskId": self.task_id,
            "reportedBy": self.reported_by,
            "description": self.description,
            "severity": self.severity,
            "requires": self.requires,
            "messageKey": self.message_key,
            "createdAt": self.created_at,
            "resolved": self.resolved,
            "resolvedAt": self.resolved_at,
            "resolution": self.resolution,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockerRecord":
        return cls(
            id=data["id"],
            product=data["product"],
            task_id=data.get("taskId"),
            reported_by=data.get("reportedBy", ""),
            description=data.get("description", ""),
            severity=data.get("severity", "medium"),
            requires=data.get("requires", "investigation"),
            message_key=data.get("messageKey", ""),
            created_at=data.get("createdAt") or _now_iso(),
            resolved=bool(data.get("resolved", False)),
            resolved_at=data.get("resolvedAt"),
            resolution=data.get("resolution"),
        )


@dataclass
class PerformanceEntry:
    """One message's contribution to an agent's history."""
    message_key: str
    message_type: str
    status: str
    timestamp: str
    task_id: Optional[str] = None
    product: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: AgentMessage) -> "PerformanceEntry":
        return cls(
            message_key=message.key,
            message_type=message.metadata.message_type.value,
            status=message.payload.status.value,
            timestamp=message.metadata.timestamp,
            task_id=message.metadata.task_id,
            product=message.metadata.product,
            metrics=dict(message.payload.metrics),
        )

    @property
    def is_outcome(self) -> bool:
        return self.status in (PayloadStatus.SUCCESS.value, PayloadStatus.FAILURE.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messageKey": self.message_key,
            "messageType": self.message_type,
            "status": self.status,
            "timestamp": self.timestamp,
            "taskId": self.task_id,
            "product": self.product,
            "metrics": self.metrics,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceEntry":
        return cls(
            message_key=data["messageKey"],
            message_type=data.get("messageType", ""),
            status=data.get("status", ""),
            timestamp=data.get("timestamp", ""),
            task_id=data.get("taskId"),
            product=data.get("product"),
            metrics=dict(data.get("metrics") or {}),
        )


@dataclass
class AgentPerformance:
    """
    Append-only task history for one agent plus derived aggregates.

    ``tasks_completed`` counts entries that carry an outcome (success or
    failure); ``success_rate`` is successes over that count.
    """
    agent: str
    history: List[PerformanceEntry] = field(default_factory=list)

    def merge(self, entry: PerformanceEntry) -> None:
        """Append an entry, replacing one with the same message key."""
        for position, existing in enumerate(self.history):
            if existing.message_key == entry.message_key:
                self.history[position] = entry
                return
        self.history.append(entry)

    @property
    def tasks_completed(self) -> int:
        return sum(1 for entry in self.history if entry.is_outcome)

    @property
    def successes(self) -> int:
        return sum(
            1 for entry in self.history
            if entry.status == PayloadStatus.SUCCESS.value
        )

    @property
    def success_rate(self) -> float:
        total = self.tasks_completed
        return self.successes / total if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent": self.agent,
            "tasksCompleted": self.tasks_completed,
            "successes": self.successes,
            "successRate": round(self.success_rate, 4),
            "history": [entry.to_dict() for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentPerformance":
        return cls(
            agent=data["agent"],
            history=[PerformanceEntry.from_dict(e) for e in data.get("history") or []],
        )
