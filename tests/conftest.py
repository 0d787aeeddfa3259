"""
Pytest Configuration and Fixtures

Shared fixtures for the orchestrator unit tests.
"""

from typing import Any, Callable, Dict, Optional

import pytest

from agent_orchestrator.services import InMemoryBackend
from agent_orchestrator.startup import OrchestratorServices
from agent_orchestrator.task_graph import ArtifactRef, ConsumedArtifactRef, Task, TaskGraph

PRODUCT = "shop"


def build_diamond_graph(product: str = PRODUCT) -> TaskGraph:
    """
    A (10m) -> B (20m, parallel) -> D (5m)
            -> C (15m, parallel) ->
    """
    graph = TaskGraph(product=product)
    graph.add_task(Task(
        id="A", name="Design", agent="architect",
        estimated_duration_minutes=10,
        produces=[ArtifactRef(name="design.md", type="doc")],
    ))
    graph.add_task(Task(
        id="B", name="Backend", agent="backend",
        depends_on={"A"}, parallel_ok=True, estimated_duration_minutes=20,
        consumes=[ConsumedArtifactRef(artifact="design.md", required_from_task="A")],
    ))
    graph.add_task(Task(
        id="C", name="Frontend", agent="frontend",
        depends_on={"A"}, parallel_ok=True, estimated_duration_minutes=15,
    ))
    graph.add_task(Task(
        id="D", name="Release", agent="devops",
        depends_on={"B", "C"}, estimated_duration_minutes=5,
    ))
    return graph


def build_message(
    message_type: str = "task_complete",
    status: str = "success",
    task_id: Optional[str] = "A",
    product: Optional[str] = PRODUCT,
    sender: str = "architect",
    to: str = "orchestrator",
    timestamp: str = "2024-01-15T10:30:00Z",
    **extra: Any,
) -> Dict[str, Any]:
    """Raw wire-format agent message."""
    metadata: Dict[str, Any] = {
        "from": sender,
        "to": to,
        "timestamp": timestamp,
        "messageType": message_type,
    }
    if product is not None:
        metadata["product"] = product
    if task_id is not None:
        metadata["taskId"] = task_id

    payload: Dict[str, Any] = {
        "status": status,
        "summary": f"{message_type} for {task_id}",
        "artifacts": [{"path": "docs/design.md", "type": "doc"}] if status == "success" else [],
    }
    payload.update(extra.pop("payload", {}))

    message = {"metadata": metadata, "payload": payload}
    message.update(extra)
    return message


@pytest.fixture
def diamond_graph() -> TaskGraph:
    """Diamond-shaped graph A -> {B, C} -> D"""
    return build_diamond_graph()


@pytest.fixture
def make_message() -> Callable[..., Dict[str, Any]]:
    """Factory for raw agent messages"""
    return build_message


@pytest.fixture
def services() -> OrchestratorServices:
    """Service container over an in-memory backend"""
    return OrchestratorServices(backend=InMemoryBackend(), lock_timeout=1.0)
