"""
Scheduler - pure functions over a task graph snapshot.

Computes which tasks may start, how they can be grouped for parallel
execution, whether the graph is structurally sound, and its critical path.
Nothing here mutates the graph.

Traversals use arena indexing (task id -> position in graph order) and
explicit stacks, so large graphs do not grow the call stack.
"""

import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, List, Optional

from ..errors import CycleDetectedError, DanglingReferenceError
from .dag import Task, TaskGraph, TaskStatus

if TYPE_CHECKING:
    from ..models.records import CheckpointRecord

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


class IssueKind(str, Enum):
    """Kinds of structural problems reported by ``validate``."""
    CYCLE = "cycle"
    DANGLING_DEPENDENCY = "dangling_dependency"
    DANGLING_CONSUMER = "dangling_consumer"
    MISSING_ARTIFACT = "missing_artifact"


@dataclass
class GraphIssue:
    """A single invariant violation."""
    kind: IssueKind
    task_id: str
    message: str
    related: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "taskId": self.task_id,
            "message": self.message,
            "related": self.related,
        }


@dataclass
class GraphValidationResult:
    """Result of ``validate``. ``valid`` is true iff there are no errors."""
    errors: List[GraphIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def has_cycles(self) -> bool:
        return any(issue.kind == IssueKind.CYCLE for issue in self.errors)

    @property
    def messages(self) -> List[str]:
        return [issue.message for issue in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
        }


@dataclass
class CriticalPath:
    """Longest duration-weighted root-to-sink chain."""
    path: List[str] = field(default_factory=list)
    total_minutes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "totalMinutes": self.total_minutes}


# ----------------------------------------------------------------------
# Ready set / grouping
# ----------------------------------------------------------------------

def has_pending_checkpoint(
    product: str,
    checkpoints: Iterable["CheckpointRecord"],
) -> bool:
    """True if an unresolved checkpoint gates ``product``."""
    return any(
        checkpoint.product == product and not checkpoint.resolved
        for checkpoint in checkpoints
    )


def _dependencies_met(graph: TaskGraph, task: Task) -> bool:
    for dep_id in task.depends_on:
        dep = graph.get_task(dep_id)
        if dep is None or dep.status != TaskStatus.COMPLETED:
            return False
    return True


def ready_tasks(
    graph: TaskGraph,
    checkpoints: Iterable["CheckpointRecord"] = (),
) -> List[Task]:
    """
    Get all pending tasks whose dependencies are completed.

    An unresolved checkpoint for the graph's product gates the whole graph,
    in which case nothing is ready. Callers must not rely on the order of
    the returned list.

    Args:
        graph: Validated task graph snapshot
        checkpoints: Checkpoint records known for this product

    Returns:
        List of ready tasks
    """
    if has_pending_checkpoint(graph.product, checkpoints):
        logger.info(f"Graph '{graph.product}' is gated by an unresolved checkpoint")
        return []

    return [
        task for task in graph.tasks
        if task.status == TaskStatus.PENDING and _dependencies_met(graph, task)
    ]


def parallel_groups(ready: Iterable[Task]) -> List[List[Task]]:
    """
    Group ready tasks that may run concurrently.

    Tasks are co-schedulable only when their dependency sets are identical.
    Inside each partition only ``parallel_ok`` tasks are kept. A partition
    with two or more of them forms one group, otherwise each becomes a
    singleton group. Tasks without ``parallel_ok`` never appear here; the
    driver runs them on their own.
    """
    partitions: "OrderedDict[FrozenSet[str], List[Task]]" = OrderedDict()
    for task in ready:
        partitions.setdefault(frozenset(task.depends_on), []).append(task)

    groups: List[List[Task]] = []
    for members in partitions.values():
        eligible = [task for task in members if task.parallel_ok]
        if len(eligible) >= 2:
            groups.append(eligible)
        else:
            groups.extend([task] for task in eligible)

    return groups


def prioritize(tasks: Iterable[Task]) -> List[Task]:
    """Order tasks by priority, highest first. Stable for equal priority."""
    return sorted(tasks, key=lambda task: task.priority.to_score(), reverse=True)


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def validate(graph: TaskGraph) -> GraphValidationResult:
    """
    Check the graph's structural invariants.

    Collects every violation instead of stopping at the first one:
    dependency cycles, dependencies on unknown tasks, consumed artifacts
    from unknown tasks, and consumed artifacts the producer never declares.
    Never raises.
    """
    result = GraphValidationResult()
    tasks = graph.tasks
    index = {task.id: position for position, task in enumerate(tasks)}
    adjacency: List[List[int]] = []

    for task in tasks:
        edges: List[int] = []
        for dep_id in sorted(task.depends_on, key=lambda d: (index.get(d, len(tasks)), d)):
            if dep_id in index:
                edges.append(index[dep_id])
            else:
                result.errors.append(GraphIssue(
                    kind=IssueKind.DANGLING_DEPENDENCY,
                    task_id=task.id,
                    message=f"Task '{task.id}' depends on unknown task '{dep_id}'",
                    related=[dep_id],
                ))
        adjacency.append(edges)

        for ref in task.consumes:
            producer = graph.get_task(ref.required_from_task)
            if producer is None:
                result.errors.append(GraphIssue(
                    kind=IssueKind.DANGLING_CONSUMER,
                    task_id=task.id,
                    message=(
                        f"Task '{task.id}' consumes '{ref.artifact}' from "
                        f"unknown task '{ref.required_from_task}'"
                    ),
                    related=[ref.required_from_task],
                ))
            elif not producer.produces_artifact(ref.artifact):
                result.errors.append(GraphIssue(
                    kind=IssueKind.MISSING_ARTIFACT,
                    task_id=task.id,
                    message=(
                        f"Task '{task.id}' consumes '{ref.artifact}' but task "
                        f"'{producer.id}' does not produce it"
                    ),
                    related=[producer.id],
                ))

    for cycle in _find_cycles(adjacency):
        ids = [tasks[position].id for position in cycle]
        result.errors.append(GraphIssue(
            kind=IssueKind.CYCLE,
            task_id=ids[0],
            message=f"Dependency cycle detected: {' -> '.join(ids)}",
            related=ids,
        ))

    if not result.valid:
        logger.debug(f"Graph '{graph.product}' has {len(result.errors)} issue(s)")
    return result


def _find_cycles(adjacency: List[List[int]]) -> List[List[int]]:
    """
    Iterative DFS with an on-stack (gray) marker.

    A node revisited while still on the stack closes a cycle; the returned
    cycle starts and ends with that node.
    """
    color = [_WHITE] * len(adjacency)
    cycles: List[List[int]] = []
    seen = set()

    for start in range(len(adjacency)):
        if color[start] != _WHITE:
            continue

        color[start] = _GRAY
        stack = [(start, 0)]
        path = [start]

        while stack:
            node, position = stack[-1]
            if position < len(adjacency[node]):
                stack[-1] = (node, position + 1)
                nxt = adjacency[node][position]
                if color[nxt] == _WHITE:
                    color[nxt] = _GRAY
                    stack.append((nxt, 0))
                    path.append(nxt)
                elif color[nxt] == _GRAY:
                    cycle = path[path.index(nxt):] + [nxt]
                    key = frozenset(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(cycle)
            else:
                color[node] = _BLACK
                stack.pop()
                path.pop()

    return cycles


def ensure_valid(graph: TaskGraph) -> GraphValidationResult:
    """
    Validate and raise if the graph cannot be scheduled.

    Raises:
        CycleDetectedError: If any dependency cycle exists
        DanglingReferenceError: If only reference problems exist
    """
    result = validate(graph)
    if result.valid:
        return result

    if result.has_cycles:
        raise CycleDetectedError(result.errors, product=graph.product)
    raise DanglingReferenceError(result.errors, product=graph.product)


# ----------------------------------------------------------------------
# Critical path
# ----------------------------------------------------------------------

def critical_path(graph: TaskGraph) -> CriticalPath:
    """
    Find the longest duration-weighted chain from a root to a sink.

    Roots are tasks without dependencies and sinks are tasks nothing depends
    on. Ties keep the first chain found in graph order. Used for duration
    estimates only, never for scheduling. Assumes a validated graph.
    """
    tasks = graph.tasks
    if not tasks:
        return CriticalPath()

    index = {task.id: position for position, task in enumerate(tasks)}
    predecessors: List[List[int]] = [
        sorted(index[dep] for dep in task.depends_on if dep in index)
        for task in tasks
    ]
    dependents: List[List[int]] = [[] for _ in tasks]
    for position, preds in enumerate(predecessors):
        for pred in preds:
            dependents[pred].append(position)

    remaining = [len(preds) for preds in predecessors]
    queue = deque(position for position, count in enumerate(remaining) if count == 0)
    distance: List[Optional[int]] = [None] * len(tasks)
    previous: List[Optional[int]] = [None] * len(tasks)

    while queue:
        node = queue.popleft()
        best: Optional[int] = None
        for pred in predecessors[node]:
            if distance[pred] is None:
                continue
            if best is None or distance[pred] > distance[best]:
                best = pred
        base = distance[best] if best is not None else 0
        distance[node] = base + tasks[node].estimated_duration_minutes
        previous[node] = best

        for child in dependents[node]:
            remaining[child] -= 1
            if remaining[child] == 0:
                queue.append(child)

    best_sink: Optional[int] = None
    for position in range(len(tasks)):
        if dependents[position] or distance[position] is None:
            continue
        if best_sink is None or distance[position] > distance[best_sink]:
            best_sink = position

    if best_sink is None:
        return CriticalPath()

    path: List[str] = []
    node: Optional[int] = best_sink
    while node is not None:
        path.append(tasks[node].id)
        node = previous[node]
    path.reverse()

    return CriticalPath(path=path, total_minutes=distance[best_sink] or 0)
