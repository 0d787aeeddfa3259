"""
Directed Acyclic Graph (DAG) of product tasks.

Represents a product's unit-of-work plan: tasks, their dependencies, the
artifacts they produce and consume, and their lifecycle status. Structural
checks live in the scheduler; this module only holds state and the
transitions the router is allowed to apply.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set

from ..errors import TaskNotFoundError

logger = logging.getLogger(__name__)

# Message keys remembered per task for duplicate detection
MAX_APPLIED_KEYS = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # Python < 3.11 does not accept a trailing "Z"
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class TaskStatus(str, Enum):
    """Lifecycle status of a task. READY is computed, never persisted."""
    PENDING = "pending"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    def to_score(self) -> int:
        return {
            TaskPriority.LOW: 1,
            TaskPriority.MEDIUM: 2,
            TaskPriority.HIGH: 3,
            TaskPriority.URGENT: 4,
        }[self]


@dataclass(frozen=True)
class ArtifactRef:
    """An artifact a task is expected to produce."""
    name: str
    type: Optional[str] = None
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.type:
            data["type"] = self.type
        if self.path:
            data["path"] = self.path
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ArtifactRef":
        if isinstance(data, str):
            return cls(name=data)
        return cls(name=data["name"], type=data.get("type"), path=data.get("path"))


@dataclass(frozen=True)
class ConsumedArtifactRef:
    """An artifact a task needs from another task."""
    artifact: str
    required_from_task: str

    def to_dict(self) -> Dict[str, Any]:
        return {"artifact": self.artifact, "requiredFromTask": self.required_from_task}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsumedArtifactRef":
        return cls(artifact=data["artifact"], required_from_task=data["requiredFromTask"])


@dataclass
class TaskResult:
    """Outcome recorded when a task reaches a terminal status."""
    artifacts: List[Dict[str, Any]] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifacts": self.artifacts,
            "metrics": self.metrics,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskResult":
        return cls(
            artifacts=list(data.get("artifacts") or []),
            metrics=dict(data.get("metrics") or {}),
            error=data.get("error"),
        )


@dataclass
class Task:
    """
    A node in the task graph.

    ``depends_on`` is a set: two tasks with the same dependencies in a
    different authored order are co-schedulable.
    """
    id: str
    name: str
    agent: str
    depends_on: Set[str] = field(default_factory=set)
    produces: List[ArtifactRef] = field(default_factory=list)
    consumes: List[ConsumedArtifactRef] = field(default_factory=list)
    parallel_ok: bool = False
    checkpoint: bool = False
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_duration_minutes: int = 0
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    result: Optional[TaskResult] = None
    last_message_key: Optional[str] = None
    applied_message_keys: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def produces_artifact(self, name: str) -> bool:
        return any(artifact.name == name for artifact in self.produces)

    def has_applied(self, message_key: Optional[str]) -> bool:
        return bool(message_key) and message_key in self.applied_message_keys

    def remember_message(self, message_key: Optional[str]) -> None:
        self.last_message_key = message_key
        if not message_key or message_key in self.applied_message_keys:
            return
        self.applied_message_keys.append(message_key)
        del self.applied_message_keys[:-MAX_APPLIED_KEYS]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted (camelCase) representation."""
        return {
            "id": self.id,
            "name": self.name,
            "agent": self.agent,
            "description": self.description,
            "dependsOn": sorted(self.depends_on),
            "produces": [artifact.to_dict() for artifact in self.produces],
            "consumes": [ref.to_dict() for ref in self.consumes],
            "parallelOk": self.parallel_ok,
            "checkpoint": self.checkpoint,
            "priority": self.priority.value,
            "estimatedDurationMinutes": self.estimated_duration_minutes,
            "status": self.status.value,
            "startedAt": _format_datetime(self.started_at),
            "completedAt": _format_datetime(self.completed_at),
            "retryCount": self.retry_count,
            "result": self.result.to_dict() if self.result else None,
            "lastMessageKey": self.last_message_key,
            "appliedMessageKeys": list(self.applied_message_keys),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        status = TaskStatus(data.get("status", TaskStatus.PENDING.value))
        if status == TaskStatus.READY:
            # ready is derived; a persisted "ready" is just pending
            status = TaskStatus.PENDING

        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            agent=data.get("agent", ""),
            description=data.get("description", ""),
            depends_on=set(data.get("dependsOn") or []),
            produces=[ArtifactRef.from_dict(a) for a in data.get("produces") or []],
            consumes=[ConsumedArtifactRef.from_dict(c) for c in data.get("consumes") or []],
            parallel_ok=bool(data.get("parallelOk", False)),
            checkpoint=bool(data.get("checkpoint", False)),
            priority=TaskPriority(data.get("priority", TaskPriority.MEDIUM.value)),
            estimated_duration_minutes=int(data.get("estimatedDurationMinutes") or 0),
            status=status,
            started_at=_parse_datetime(data.get("startedAt")),
            completed_at=_parse_datetime(data.get("completedAt")),
            retry_count=int(data.get("retryCount") or 0),
            result=TaskResult.from_dict(data["result"]) if data.get("result") else None,
            last_message_key=data.get("lastMessageKey"),
            applied_message_keys=list(data.get("appliedMessageKeys") or []),
        )


class TaskGraph:
    """
    Task graph for a single product.

    The graph is owned by one logical writer (the orchestration process).
    Status changes go through the ``mark_*`` methods; agents only propose
    them through messages handled by the router.

    Example:
        graph = TaskGraph(product="shop")
        graph.add_task(Task(id="design", name="Design", agent="architect"))
        graph.add_task(Task(id="build", name="Build", agent="backend",
                            depends_on={"design"}))
    """

    def __init__(
        self,
        product: str,
        version: str = "1.0.0",
        tasks: Optional[List[Task]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.product = product
        self.version = version
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at
        self._tasks: Dict[str, Task] = {}

        for task in tasks or []:
            self.add_task(task)

    def add_task(self, task: Task) -> Task:
        """
        Add a task to the graph.

        References are not checked here; run ``scheduler.validate`` once the
        graph is fully authored.

        Raises:
            ValueError: If a task with the same id already exists
        """
        if task.id in self._tasks:
            raise ValueError(f"Duplicate task id: {task.id}")
        self._tasks[task.id] = task
        logger.debug(f"Added task {task.id} to graph '{self.product}'")
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id, self.product)
        return task

    @property
    def tasks(self) -> List[Task]:
        """All tasks in graph order."""
        return list(self._tasks.values())

    @property
    def task_ids(self) -> List[str]:
        return list(self._tasks.keys())

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks.values()))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_in_progress(self, task_id: str, at: Optional[datetime] = None) -> bool:
        """Move a pending task to in_progress. Returns False if nothing changed."""
        task = self.require_task(task_id)
        if task.status != TaskStatus.PENDING:
            return False

        task.status = TaskStatus.IN_PROGRESS
        task.started_at = at or utcnow()
        self._touch()
        return True

    def mark_completed(
        self,
        task_id: str,
        artifacts: Optional[List[Dict[str, Any]]] = None,
        metrics: Optional[Dict[str, Any]] = None,
        message_key: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Mark a task completed and record what it produced.

        Completion is monotonic: re-applying it to a completed task is a
        no-op and returns False.
        """
        task = self.require_task(task_id)
        if task.status == TaskStatus.COMPLETED:
            return False

        task.status = TaskStatus.COMPLETED
        task.completed_at = at or utcnow()
        task.result = TaskResult(
            artifacts=list(artifacts or []),
            metrics=dict(metrics or {}),
        )
        task.remember_message(message_key)
        self._touch()
        return True

    def mark_failed(
        self,
        task_id: str,
        error: Optional[Dict[str, Any]] = None,
        message_key: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Mark a task failed and count the attempt.

        Returns False without changes when the task is already completed or
        when the message was already applied (the last
        MAX_APPLIED_KEYS keys are remembered per task).
        """
        task = self.require_task(task_id)
        if task.status == TaskStatus.COMPLETED:
            logger.warning(
                f"Ignoring failure report for completed task {task_id} "
                f"in graph '{self.product}'"
            )
            return False
        if task.has_applied(message_key):
            return False

        task.status = TaskStatus.FAILED
        task.retry_count += 1
        task.completed_at = at or utcnow()
        task.result = TaskResult(error=error)
        task.remember_message(message_key)
        self._touch()
        return True

    def release(self, task_id: str) -> bool:
        """Return an in_progress task to pending after a failed hand-off."""
        task = self.require_task(task_id)
        if task.status != TaskStatus.IN_PROGRESS:
            return False

        task.status = TaskStatus.PENDING
        task.started_at = None
        self._touch()
        return True

    def reset_for_retry(self, task_id: str) -> bool:
        """Return a failed task to pending. retry_count is kept."""
        task = self.require_task(task_id)
        if task.status != TaskStatus.FAILED:
            return False

        task.status = TaskStatus.PENDING
        task.started_at = None
        task.completed_at = None
        self._touch()
        return True

    def _touch(self) -> None:
        self.updated_at = utcnow()

    # ------------------------------------------------------------------
    # Reporting / serialization
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the graph."""
        status_counts = {}
        for status in TaskStatus:
            if status == TaskStatus.READY:
                continue
            status_counts[status.value] = sum(
                1 for task in self._tasks.values()
                if task.status == status
            )

        return {
            "total_tasks": len(self._tasks),
            "status_counts": status_counts,
            "product": self.product,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert graph to its persisted representation."""
        return {
            "product": self.product,
            "version": self.version,
            "createdAt": _format_datetime(self.created_at),
            "updatedAt": _format_datetime(self.updated_at),
            "tasks": [task.to_dict() for task in self._tasks.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskGraph":
        """
        Build a graph from its persisted representation.

        ``tasks`` may be a list of task dicts or a mapping of id to task
        dict; in the mapping form the key supplies a missing ``id``.
        """
        raw_tasks = data.get("tasks") or []
        if isinstance(raw_tasks, dict):
            raw_tasks = [
                {"id": task_id, **task_data}
                for task_id, task_data in raw_tasks.items()
            ]

        return cls(
            product=data["product"],
            version=str(data.get("version", "1.0.0")),
            tasks=[Task.from_dict(task_data) for task_data in raw_tasks],
            created_at=_parse_datetime(data.get("createdAt")),
            updated_at=_parse_datetime(data.get("updatedAt")),
        )
