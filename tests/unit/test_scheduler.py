"""
Scheduler Unit Tests

Ready set, parallel grouping, validation and critical path.
"""

import random

import pytest

from agent_orchestrator.errors import CycleDetectedError, DanglingReferenceError
from agent_orchestrator.models import CheckpointRecord
from agent_orchestrator.task_graph import (
    ArtifactRef,
    ConsumedArtifactRef,
    IssueKind,
    Task,
    TaskGraph,
    TaskPriority,
    TaskStatus,
    critical_path,
    ensure_valid,
    parallel_groups,
    prioritize,
    ready_tasks,
    validate,
)


def make_checkpoint(product: str = "shop", resolved: bool = False) -> CheckpointRecord:
    return CheckpointRecord(
        id="cp-1",
        product=product,
        agent="architect",
        summary="Review design",
        message_key="2024-01-15T10:30:00Z:architect:checkpoint_ready",
        resolved=resolved,
    )


def random_graph(seed: int, size: int = 8, cyclic: bool = False) -> TaskGraph:
    """Random graph; edges only point backwards unless ``cyclic``"""
    rng = random.Random(seed)
    graph = TaskGraph(product=f"random-{seed}")
    for i in range(size):
        candidates = range(size) if cyclic else range(i)
        deps = {f"t{j}" for j in candidates if j != i and rng.random() < 0.3}
        graph.add_task(Task(
            id=f"t{i}", name=f"T{i}", agent="a",
            depends_on=deps,
            parallel_ok=rng.random() < 0.5,
            estimated_duration_minutes=rng.randint(0, 30),
        ))
    return graph


def reachable_from_itself(graph: TaskGraph) -> bool:
    """Brute-force reachability used as an oracle"""
    for start in graph.task_ids:
        seen, frontier = set(), list(graph.get_task(start).depends_on)
        while frontier:
            node = frontier.pop()
            if node == start:
                return True
            if node in seen or node not in graph:
                continue
            seen.add(node)
            frontier.extend(graph.get_task(node).depends_on)
    return False


def all_root_to_sink_sums(graph: TaskGraph):
    dependents = {task_id: [] for task_id in graph.task_ids}
    for task in graph.tasks:
        for dep in task.depends_on:
            dependents[dep].append(task.id)

    def walk(task_id, total):
        total += graph.get_task(task_id).estimated_duration_minutes
        if not dependents[task_id]:
            yield total
        for child in dependents[task_id]:
            yield from walk(child, total)

    for task in graph.tasks:
        if not task.depends_on:
            yield from walk(task.id, 0)


class TestReadyTasks:
    """ready_tasks"""

    def test_roots_are_ready(self, diamond_graph):
        """Only tasks without dependencies start ready"""
        assert [t.id for t in ready_tasks(diamond_graph)] == ["A"]

    def test_diamond_after_root_completes(self, diamond_graph):
        """Completing A readies B and C"""
        diamond_graph.mark_completed("A")
        assert {t.id for t in ready_tasks(diamond_graph)} == {"B", "C"}

    def test_non_pending_tasks_excluded(self, diamond_graph):
        """In-progress and failed tasks are not ready"""
        diamond_graph.mark_in_progress("A")
        assert ready_tasks(diamond_graph) == []
        diamond_graph.mark_failed("A")
        assert ready_tasks(diamond_graph) == []

    def test_partial_dependencies_not_ready(self, diamond_graph):
        """D waits for both B and C"""
        for task_id in ("A", "B"):
            diamond_graph.mark_completed(task_id)
        assert {t.id for t in ready_tasks(diamond_graph)} == {"C"}

    def test_unresolved_checkpoint_gates_everything(self, diamond_graph):
        """An open checkpoint for the product empties the ready set"""
        diamond_graph.mark_completed("A")
        assert ready_tasks(diamond_graph, [make_checkpoint()]) == []

    def test_resolved_or_foreign_checkpoint_does_not_gate(self, diamond_graph):
        """Resolved checkpoints and other products' checkpoints are ignored"""
        diamond_graph.mark_completed("A")
        checkpoints = [make_checkpoint(resolved=True), make_checkpoint(product="other")]
        assert {t.id for t in ready_tasks(diamond_graph, checkpoints)} == {"B", "C"}

    @pytest.mark.parametrize("seed", range(20))
    def test_ready_iff_pending_with_completed_deps(self, seed):
        """A task is ready exactly when pending with all deps completed"""
        graph = random_graph(seed)
        rng = random.Random(seed + 1000)
        for task in graph.tasks:
            task.status = rng.choice([TaskStatus.PENDING, TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS])

        ready = {t.id for t in ready_tasks(graph)}
        for task in graph.tasks:
            expected = task.status == TaskStatus.PENDING and all(
                graph.get_task(dep).status == TaskStatus.COMPLETED for dep in task.depends_on
            )
            assert (task.id in ready) == expected


class TestParallelGroups:
    """parallel_groups"""

    def test_diamond_groups(self, diamond_graph):
        """B and C share dependencies and are both parallel_ok"""
        diamond_graph.mark_completed("A")
        groups = parallel_groups(ready_tasks(diamond_graph))
        assert [{t.id for t in group} for group in groups] == [{"B", "C"}]

    def test_non_parallel_tasks_excluded(self):
        """parallel_ok == False never appears"""
        tasks = [
            Task(id="x", name="x", agent="a", parallel_ok=False),
            Task(id="y", name="y", agent="a", parallel_ok=True),
        ]
        assert [[t.id for t in g] for g in parallel_groups(tasks)] == [["y"]]

    def test_dependency_order_does_not_matter(self):
        """Same dependency set in a different order groups together"""
        tasks = [
            Task(id="x", name="x", agent="a", depends_on={"p", "q"}, parallel_ok=True),
            Task(id="y", name="y", agent="a", depends_on={"q", "p"}, parallel_ok=True),
        ]
        assert [[t.id for t in g] for g in parallel_groups(tasks)] == [["x", "y"]]

    def test_different_dependencies_split(self):
        """Different dependency sets become singleton groups"""
        tasks = [
            Task(id="x", name="x", agent="a", depends_on={"p"}, parallel_ok=True),
            Task(id="y", name="y", agent="a", depends_on={"q"}, parallel_ok=True),
        ]
        assert [[t.id for t in g] for g in parallel_groups(tasks)] == [["x"], ["y"]]

    @pytest.mark.parametrize("seed", range(20))
    def test_groups_are_homogeneous(self, seed):
        """No group mixes dependency sets or contains a non-parallel task"""
        graph = random_graph(seed, size=10)
        groups = parallel_groups(graph.tasks)
        for group in groups:
            assert all(task.parallel_ok for task in group)
            assert len({frozenset(task.depends_on) for task in group}) == 1

    def test_prioritize(self):
        """Higher priority first, stable otherwise"""
        tasks = [
            Task(id="low", name="l", agent="a", priority=TaskPriority.LOW),
            Task(id="urgent", name="u", agent="a", priority=TaskPriority.URGENT),
            Task(id="m1", name="m", agent="a"),
            Task(id="m2", name="m", agent="a"),
        ]
        assert [t.id for t in prioritize(tasks)] == ["urgent", "m1", "m2", "low"]


class TestValidate:
    """validate / ensure_valid"""

    def test_valid_graph(self, diamond_graph):
        """The diamond graph is valid"""
        result = validate(diamond_graph)
        assert result.valid
        assert result.errors == []
        assert ensure_valid(diamond_graph).valid

    def test_self_cycle(self):
        """A task depending on itself is a cycle"""
        graph = TaskGraph(product="p", tasks=[Task(id="a", name="a", agent="x", depends_on={"a"})])
        result = validate(graph)
        assert result.has_cycles
        assert result.errors[0].related == ["a", "a"]

    def test_cycle_path_reported(self):
        """A -> B -> C -> A is reported with its path"""
        graph = TaskGraph(product="p", tasks=[
            Task(id="A", name="A", agent="x", depends_on={"C"}),
            Task(id="B", name="B", agent="x", depends_on={"A"}),
            Task(id="C", name="C", agent="x", depends_on={"B"}),
        ])
        result = validate(graph)
        cycles = [issue for issue in result.errors if issue.kind == IssueKind.CYCLE]
        assert len(cycles) == 1
        assert set(cycles[0].related) == {"A", "B", "C"}
        assert cycles[0].related[0] == cycles[0].related[-1]
        assert "->" in cycles[0].message

    def test_collects_all_issue_kinds(self):
        """Every violation is reported, not just the first"""
        graph = TaskGraph(product="p", tasks=[
            Task(id="A", name="A", agent="x", depends_on={"ghost"}),
            Task(id="B", name="B", agent="x", consumes=[
                ConsumedArtifactRef(artifact="wireframes", required_from_task="nobody"),
            ]),
            Task(id="C", name="C", agent="x", produces=[ArtifactRef(name="api")]),
            Task(id="D", name="D", agent="x", depends_on={"C"}, consumes=[
                ConsumedArtifactRef(artifact="schema", required_from_task="C"),
            ]),
        ])
        kinds = {issue.kind for issue in validate(graph).errors}
        assert kinds == {
            IssueKind.DANGLING_DEPENDENCY,
            IssueKind.DANGLING_CONSUMER,
            IssueKind.MISSING_ARTIFACT,
        }

    def test_ensure_valid_raises_cycle_first(self):
        """Cycles take precedence over dangling references"""
        graph = TaskGraph(product="p", tasks=[
            Task(id="A", name="A", agent="x", depends_on={"B", "ghost"}),
            Task(id="B", name="B", agent="x", depends_on={"A"}),
        ])
        with pytest.raises(CycleDetectedError) as exc_info:
            ensure_valid(graph)
        assert len(exc_info.value.issues) == 2
        assert exc_info.value.code == "CYCLE_DETECTED"

    def test_ensure_valid_raises_dangling(self):
        """Reference problems alone raise DanglingReferenceError"""
        graph = TaskGraph(product="p", tasks=[Task(id="A", name="A", agent="x", depends_on={"ghost"})])
        with pytest.raises(DanglingReferenceError):
            ensure_valid(graph)

    def test_deep_chain_does_not_recurse(self):
        """Long chains are handled without recursion limits"""
        graph = TaskGraph(product="deep")
        graph.add_task(Task(id="t0", name="t0", agent="x"))
        for i in range(1, 5000):
            graph.add_task(Task(id=f"t{i}", name=f"t{i}", agent="x", depends_on={f"t{i - 1}"}))
        assert validate(graph).valid
        assert len(critical_path(graph).path) == 5000

    @pytest.mark.parametrize("seed", range(30))
    def test_cycle_reported_iff_reachable_from_itself(self, seed):
        """validate reports a cycle exactly when one exists"""
        graph = random_graph(seed, size=7, cyclic=True)
        assert validate(graph).has_cycles == reachable_from_itself(graph)


class TestCriticalPath:
    """critical_path"""

    def test_diamond(self, diamond_graph):
        """A -> B -> D is the longest chain (35 minutes)"""
        result = critical_path(diamond_graph)
        assert result.path == ["A", "B", "D"]
        assert result.total_minutes == 35
        assert result.to_dict() == {"path": ["A", "B", "D"], "totalMinutes": 35}

    def test_empty_graph(self):
        """Empty graph yields an empty path"""
        result = critical_path(TaskGraph(product="empty"))
        assert result.path == []
        assert result.total_minutes == 0

    def test_tie_keeps_first_path(self):
        """Equal chains resolve to graph order"""
        graph = TaskGraph(product="p", tasks=[
            Task(id="r", name="r", agent="x", estimated_duration_minutes=1),
            Task(id="a", name="a", agent="x", depends_on={"r"}, estimated_duration_minutes=5),
            Task(id="b", name="b", agent="x", depends_on={"r"}, estimated_duration_minutes=5),
            Task(id="s", name="s", agent="x", depends_on={"a", "b"}, estimated_duration_minutes=1),
        ])
        assert critical_path(graph).path == ["r", "a", "s"]

    @pytest.mark.parametrize("seed", range(20))
    def test_longest_of_all_paths(self, seed):
        """The reported total is at least every root-to-sink sum"""
        graph = random_graph(seed, size=8)
        result = critical_path(graph)
        sums = list(all_root_to_sink_sums(graph))
        assert result.total_minutes == max(sums)
        assert sum(graph.get_task(t).estimated_duration_minutes for t in result.path) == result.total_minutes
        for earlier, later in zip(result.path, result.path[1:]):
            assert earlier in graph.get_task(later).depends_on
