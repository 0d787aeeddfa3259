"""
Task Graph system for the orchestrator.
Provides the product task DAG and the scheduling functions over it.
"""

from .dag import (
    ArtifactRef,
    ConsumedArtifactRef,
    Task,
    TaskGraph,
    TaskPriority,
    TaskResult,
    TaskStatus,
)
from .loader import dump_graph_file, load_graph_file
from .scheduler import (
    CriticalPath,
    GraphIssue,
    GraphValidationResult,
    IssueKind,
    critical_path,
    ensure_valid,
    has_pending_checkpoint,
    parallel_groups,
    prioritize,
    ready_tasks,
    validate,
)

__all__ = [
    # DAG
    "ArtifactRef",
    "ConsumedArtifactRef",
    "Task",
    "TaskGraph",
    "TaskPriority",
    "TaskResult",
    "TaskStatus",
    # Loader
    "dump_graph_file",
    "load_graph_file",
    # Scheduler
    "CriticalPath",
    "GraphIssue",
    "GraphValidationResult",
    "IssueKind",
    "critical_path",
    "ensure_valid",
    "has_pending_checkpoint",
    "parallel_groups",
    "prioritize",
    "ready_tasks",
    "validate",
]
