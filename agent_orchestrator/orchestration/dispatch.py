"""
Inbox dispatch: hands a claimed task to its agent by queueing an assignment
message in the agent's inbox. Agents pick assignments up with
``GET /agents/{agent}/inbox?drain=true`` and report back via ``POST /messages``.
"""

import logging
from datetime import datetime, timezone

from ..models.message import (
    ORCHESTRATOR,
    AgentMessage,
    Handoff,
    MessageArtifact,
    MessageMetadata,
    MessagePayload,
    MessageType,
    PayloadStatus,
)
from ..services.stores import InboxStore
from ..task_graph import Task

logger = logging.getLogger(__name__)


def build_assignment(product: str, task: Task) -> AgentMessage:
    """The message an agent receives when a task is dispatched to it."""
    return AgentMessage(
        metadata=MessageMetadata(
            sender=ORCHESTRATOR,
            to=task.agent,
            timestamp=datetime.now(timezone.utc).isoformat(),
            message_type=MessageType.HANDOFF,
            product=product,
            task_id=task.id,
        ),
        payload=MessagePayload(
            status=PayloadStatus.IN_PROGRESS,
            summary=task.description or task.name,
            artifacts=[
                MessageArtifact(path=artifact.path or artifact.name, type=artifact.type or "file")
                for artifact in task.produces
            ],
            context={
                "consumes": [ref.to_dict() for ref in task.consumes],
                "priority": task.priority.value,
                "estimatedDurationMinutes": task.estimated_duration_minutes,
                "retryCount": task.retry_count,
            },
        ),
        handoff=Handoff(
            next_agent=task.agent,
            required_context=sorted(task.depends_on),
            suggested_task=task.id,
        ),
    )


class InboxDispatcher:
    """Dispatch callable for OrchestrationDriver backed by agent inboxes."""

    def __init__(self, inboxes: InboxStore):
        self.inboxes = inboxes

    async def __call__(self, product: str, task: Task) -> None:
        message = build_assignment(product, task)
        await self.inboxes.deliver(task.agent, message)
        logger.debug(f"Queued assignment for '{task.id}' in {task.agent}'s inbox")
