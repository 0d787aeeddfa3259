"""
Message Router Unit Tests

Status transitions, idempotency, auxiliary records and concurrency.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_orchestrator.errors import InvalidMessageError, LockTimeoutError, StorageError
from agent_orchestrator.handlers import TransitionOutcome
from agent_orchestrator.services import InMemoryBackend
from agent_orchestrator.startup import OrchestratorServices
from agent_orchestrator.task_graph import Task, TaskGraph, TaskStatus, ready_tasks


class SlowBackend(InMemoryBackend):
    """Yields to the event loop on every call so writers interleave"""

    async def get(self, namespace, key):
        await asyncio.sleep(0)
        return await super().get(namespace, key)

    async def put(self, namespace, key, value):
        await asyncio.sleep(0)
        await super().put(namespace, key, value)


async def task_status(services, task_id, product="shop"):
    graph = await services.graphs.snapshot(product)
    return graph.get_task(task_id)


class TestTaskTransitions:
    """Task status transitions"""

    @pytest.mark.asyncio
    async def test_success_completes_task(self, services, diamond_graph, make_message):
        """success -> completed with artifacts and metrics recorded"""
        await services.graphs.put(diamond_graph)
        message = make_message(payload={"metrics": {"tokens": 42}})

        result = await services.router.route(message)

        assert result.success
        assert result.transition.outcome == TransitionOutcome.APPLIED
        assert result.transition.status == "completed"
        task = await task_status(services, "A")
        assert task.status == TaskStatus.COMPLETED
        assert task.result.artifacts == [{"path": "docs/design.md", "type": "doc"}]
        assert task.result.metrics == {"tokens": 42}
        assert task.completed_at is not None

    @pytest.mark.asyncio
    async def test_message_recorded_before_effects(self, services, diamond_graph, make_message):
        """The raw message is stored under its key"""
        await services.graphs.put(diamond_graph)
        result = await services.router.route(make_message())

        assert result.message_key == "2024-01-15T10:30:00Z:architect:task_complete"
        stored = await services.messages.get(result.message_key)
        assert stored.metadata.task_id == "A"

    @pytest.mark.asyncio
    async def test_redelivered_completion_is_idempotent(self, services, diamond_graph, make_message):
        """Re-routing the same task_complete leaves status and retry count unchanged"""
        await services.graphs.put(diamond_graph)
        message = make_message()

        first = await services.router.route(message)
        second = await services.router.route(message)

        assert first.transition.outcome == TransitionOutcome.APPLIED
        assert second.transition.outcome == TransitionOutcome.ALREADY_APPLIED
        task = await task_status(services, "A")
        assert task.status == TaskStatus.COMPLETED
        assert task.retry_count == 0
        assert await services.messages.list_keys() == [first.message_key]

    @pytest.mark.asyncio
    async def test_failure_increments_retry_count_once(self, services, diamond_graph, make_message):
        """failure -> failed and retryCount + 1, even when re-delivered"""
        await services.graphs.put(diamond_graph)
        message = make_message(
            message_type="task_failed", status="failure",
            errorDetails={"errorType": "Timeout", "errorMessage": "took too long", "retryCount": 0},
        )

        first = await services.router.route(message)
        second = await services.router.route(message)

        assert first.transition.outcome == TransitionOutcome.APPLIED
        assert second.transition.outcome == TransitionOutcome.ALREADY_APPLIED
        task = await task_status(services, "A")
        assert task.status == TaskStatus.FAILED
        assert task.retry_count == 1
        assert task.result.error["errorType"] == "Timeout"

    @pytest.mark.asyncio
    async def test_distinct_failures_each_count(self, services, diamond_graph, make_message):
        """Two different failure reports count twice"""
        await services.graphs.put(diamond_graph)
        for timestamp in ("2024-01-15T10:30:00Z", "2024-01-15T11:30:00Z"):
            await services.router.route(make_message(
                message_type="task_failed", status="failure", timestamp=timestamp,
            ))
        assert (await task_status(services, "A")).retry_count == 2

    @pytest.mark.asyncio
    async def test_older_failure_redelivered_after_newer(self, services, diamond_graph, make_message):
        """An earlier failure re-delivered after a later one does not count again"""
        await services.graphs.put(diamond_graph)
        first = make_message(message_type="task_failed", status="failure", timestamp="2024-01-15T10:00:00Z")
        second = make_message(message_type="task_failed", status="failure", timestamp="2024-01-15T11:00:00Z")

        await services.router.route(first)
        await services.router.route(second)
        result = await services.router.route(first)

        assert result.transition.outcome == TransitionOutcome.ALREADY_APPLIED
        task = await task_status(services, "A")
        assert task.status == TaskStatus.FAILED
        assert task.retry_count == 2

    @pytest.mark.asyncio
    async def test_failure_after_completion_ignored(self, services, diamond_graph, make_message):
        """completed is terminal"""
        await services.graphs.put(diamond_graph)
        await services.router.route(make_message())

        result = await services.router.route(make_message(
            message_type="task_failed", status="failure", timestamp="2024-01-15T12:00:00Z",
        ))

        assert result.transition.outcome == TransitionOutcome.IGNORED
        task = await task_status(services, "A")
        assert task.status == TaskStatus.COMPLETED
        assert task.retry_count == 0

    @pytest.mark.asyncio
    async def test_other_status_leaves_task(self, services, diamond_graph, make_message):
        """in_progress status reports do not change the task"""
        await services.graphs.put(diamond_graph)
        result = await services.router.route(make_message(message_type="status_update", status="in_progress"))

        assert result.transition.outcome == TransitionOutcome.IGNORED
        assert (await task_status(services, "A")).status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_task_id_skips_transition(self, services, diamond_graph, make_message):
        """Without taskId there is nothing to transition"""
        await services.graphs.put(diamond_graph)
        result = await services.router.route(make_message(task_id=None))
        assert result.transition.outcome == TransitionOutcome.SKIPPED

    @pytest.mark.asyncio
    async def test_graph_not_found_is_best_effort(self, services, make_message):
        """Unknown products are logged, the message is still recorded"""
        result = await services.router.route(make_message(product="ghost"))

        assert result.success
        assert result.transition.outcome == TransitionOutcome.GRAPH_NOT_FOUND
        assert await services.messages.get(result.message_key) is not None

    @pytest.mark.asyncio
    async def test_task_not_found_is_best_effort(self, services, diamond_graph, make_message):
        """Unknown tasks are logged and leave the graph unchanged"""
        await services.graphs.put(diamond_graph)
        before = (await services.graphs.snapshot("shop")).to_dict()

        result = await services.router.route(make_message(task_id="Z"))

        assert result.transition.outcome == TransitionOutcome.TASK_NOT_FOUND
        assert (await services.graphs.snapshot("shop")).to_dict() == before

    @pytest.mark.asyncio
    async def test_invalid_graph_refused(self, services, make_message):
        """A stored graph with a cycle is never mutated"""
        graph = TaskGraph(product="shop", tasks=[
            Task(id="A", name="A", agent="x", depends_on={"B"}),
            Task(id="B", name="B", agent="x", depends_on={"A"}),
        ])
        await services.repository.save(graph)

        result = await services.router.route(make_message())

        assert result.transition.outcome == TransitionOutcome.INVALID_GRAPH
        assert (await task_status(services, "A")).status == TaskStatus.PENDING


class TestValidationAndDelivery:
    """Rejection and inbox delivery"""

    @pytest.mark.asyncio
    async def test_invalid_message_has_no_side_effects(self, services, diamond_graph, make_message):
        """Malformed messages raise before anything is stored"""
        await services.graphs.put(diamond_graph)
        message = make_message(status="excellent")

        with pytest.raises(InvalidMessageError) as exc_info:
            await services.router.route(message)

        assert "Unknown payload.status: 'excellent'" in exc_info.value.errors
        assert await services.messages.list_keys() == []
        assert (await task_status(services, "A")).status == TaskStatus.PENDING
        assert services.metrics.get_counter("messages_rejected_total") == 1

    @pytest.mark.asyncio
    async def test_message_validated_once(self, services, diamond_graph, make_message):
        """Routing validates a message a single time and returns its warnings"""
        await services.graphs.put(diamond_graph)
        validator = services.router.validator
        validator.validate = MagicMock(wraps=validator.validate)

        result = await services.router.route(make_message(payload={"artifacts": []}))

        assert validator.validate.call_count == 1
        assert result.warnings == ["Success reported without any artifacts"]

    @pytest.mark.asyncio
    async def test_agent_message_goes_to_inbox(self, services, diamond_graph, make_message):
        """Messages for other agents are delivered, not applied"""
        await services.graphs.put(diamond_graph)
        message = make_message(to="backend", message_type="handoff", status="success",
                               handoff={"nextAgent": "backend", "requiredContext": ["design.md"]})

        result = await services.router.route(message)

        assert result.delivered_to == "backend"
        assert result.transition is None
        assert (await task_status(services, "A")).status == TaskStatus.PENDING
        inbox = await services.inboxes.list("backend")
        assert [m.key for m in inbox] == [result.message_key]

        drained = await services.inboxes.drain("backend")
        assert len(drained) == 1
        assert await services.inboxes.list("backend") == []


class TestAuxiliaryRecords:
    """Checkpoints, blockers, performance"""

    @pytest.mark.asyncio
    async def test_checkpoint_gates_scheduling(self, services, diamond_graph, make_message):
        """checkpoint_ready empties the ready set until resolved"""
        diamond_graph.mark_completed("A")
        await services.graphs.put(diamond_graph)

        result = await services.router.route(make_message(
            message_type="checkpoint_ready", status="needs_review", task_id="A",
        ))

        assert result.checkpoint_id is not None
        graph = await services.graphs.snapshot("shop")
        open_checkpoints = await services.checkpoints.list("shop", include_resolved=False)
        assert ready_tasks(graph, open_checkpoints) == []
        assert await services.checkpoints.has_pending("shop")

        await services.checkpoints.resolve("shop", result.checkpoint_id, "ceo", "approved")
        open_checkpoints = await services.checkpoints.list("shop", include_resolved=False)
        assert {t.id for t in ready_tasks(graph, open_checkpoints)} == {"B", "C"}

    @pytest.mark.asyncio
    async def test_redelivered_checkpoint_stays_resolved(self, services, diamond_graph, make_message):
        """Re-delivery does not reopen a resolved checkpoint"""
        await services.graphs.put(diamond_graph)
        message = make_message(message_type="checkpoint_ready", status="needs_review")

        first = await services.router.route(message)
        await services.checkpoints.resolve("shop", first.checkpoint_id, "ceo")
        second = await services.router.route(message)

        assert second.checkpoint_id == first.checkpoint_id
        assert not await services.checkpoints.has_pending("shop")

    @pytest.mark.asyncio
    async def test_blockers_recorded(self, services, diamond_graph, make_message):
        """Each blocker becomes a record for the product"""
        await services.graphs.put(diamond_graph)
        message = make_message(message_type="needs_decision", status="blocked", payload={"blockers": [
            {"description": "Pick a database", "severity": "high", "requires": "ceo_decision"},
            {"description": "Waiting on API key", "severity": "medium", "requires": "external"},
        ]})

        result = await services.router.route(message)

        assert len(result.blocker_ids) == 2
        blockers = await services.blockers.list("shop")
        assert {b.requires for b in blockers} == {"ceo_decision", "external"}
        assert all(b.reported_by == "architect" and b.task_id == "A" for b in blockers)

        # blockers do not gate scheduling
        graph = await services.graphs.snapshot("shop")
        checkpoints = await services.checkpoints.list("shop", include_resolved=False)
        assert [t.id for t in ready_tasks(graph, checkpoints)] == ["A"]

    @pytest.mark.asyncio
    async def test_performance_history(self, services, diamond_graph, make_message):
        """Outcomes are counted per agent and re-delivery merges"""
        await services.graphs.put(diamond_graph)
        success = make_message(payload={"metrics": {"tokens": 10}})
        failure = make_message(message_type="task_failed", status="failure",
                               task_id="B", timestamp="2024-01-15T11:00:00Z")
        progress = make_message(message_type="status_update", status="in_progress",
                                task_id="C", timestamp="2024-01-15T12:00:00Z")

        for message in (success, failure, progress, success):
            await services.router.route(message)

        performance = await services.performance.get("architect")
        assert len(performance.history) == 3
        assert performance.tasks_completed == 2
        assert performance.success_rate == 0.5
        assert performance.history[0].metrics == {"tokens": 10}

    @pytest.mark.asyncio
    async def test_unknown_agent_has_empty_performance(self, services):
        """No history means a zero success rate"""
        performance = await services.performance.get("nobody")
        assert performance.tasks_completed == 0
        assert performance.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_auxiliary_failure_keeps_transition(self, services, diamond_graph, make_message):
        """A failing performance store is reported but does not undo completion"""
        await services.graphs.put(diamond_graph)
        services.router.performance = MagicMock()
        services.router.performance.record = AsyncMock(side_effect=StorageError("disk full", backend="file"))

        result = await services.router.route(make_message())

        assert result.success
        assert result.transition.outcome == TransitionOutcome.APPLIED
        assert result.auxiliary_errors == ["performance: disk full"]
        assert (await task_status(services, "A")).status == TaskStatus.COMPLETED
        assert services.metrics.get_counter("auxiliary_errors_total", {"step": "performance"}) == 1

    @pytest.mark.asyncio
    async def test_listeners_notified(self, services, diamond_graph, make_message):
        """Sync and async listeners receive the product"""
        await services.graphs.put(diamond_graph)
        sync_listener = MagicMock()
        async_listener = AsyncMock()
        services.router.add_listener(sync_listener)
        services.router.add_listener(async_listener)

        await services.router.route(make_message())

        sync_listener.assert_called_once_with("shop")
        async_listener.assert_awaited_once_with("shop")


class TestConcurrency:
    """Locking"""

    @pytest.mark.asyncio
    async def test_concurrent_routes_do_not_lose_updates(self, make_message):
        """Interleaved routes for one product all land"""
        services = OrchestratorServices(backend=SlowBackend(), lock_timeout=5.0)
        graph = TaskGraph(product="shop", tasks=[
            Task(id=f"t{i}", name=f"T{i}", agent="worker") for i in range(10)
        ])
        await services.graphs.put(graph)

        messages = [
            make_message(task_id=f"t{i}", sender=f"worker-{i}")
            for i in range(10)
        ]
        results = await asyncio.gather(*(services.router.route(m) for m in messages))

        assert all(r.transition.outcome == TransitionOutcome.APPLIED for r in results)
        stored = await services.graphs.snapshot("shop")
        assert all(task.status == TaskStatus.COMPLETED for task in stored.tasks)

    @pytest.mark.asyncio
    async def test_lock_timeout_surfaces(self, diamond_graph, make_message):
        """A held product lock turns into LockTimeoutError"""
        services = OrchestratorServices(backend=InMemoryBackend(), lock_timeout=0.05)
        await services.graphs.put(diamond_graph)

        async with services.graphs.locks.acquire("shop"):
            with pytest.raises(LockTimeoutError) as exc_info:
                await services.router.route(make_message())

        assert exc_info.value.code == "LOCK_TIMEOUT"
        # the retried route succeeds once the lock is free
        result = await services.router.route(make_message())
        assert result.transition.outcome == TransitionOutcome.APPLIED
