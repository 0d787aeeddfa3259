"""
MessageRouter - agent message routing

Validates an agent message, records it, and then either applies it to the
product's task graph (messages for the orchestrator) or delivers it to the
addressed agent's inbox.
"""

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from ..errors import (
    GraphNotFoundError,
    InvalidGraphError,
    InvalidMessageError,
    OrchestratorError,
    TaskNotFoundError,
)
from ..models.message import AgentMessage, MessageType, PayloadStatus
from ..models.records import BlockerRecord, CheckpointRecord, PerformanceEntry
from ..services.graph_service import TaskGraphService
from ..services.metrics import MetricsCollector
from ..services.stores import (
    BlockerStore,
    CheckpointStore,
    InboxStore,
    MessageStore,
    PerformanceStore,
)
from ..task_graph import TaskStatus, ensure_valid
from .validator import MessageValidator

logger = logging.getLogger(__name__)

GraphListener = Callable[[str], Union[Awaitable[None], None]]


class TransitionOutcome(str, Enum):
    """What happened to the task graph when a message was routed."""
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    IGNORED = "ignored"
    SKIPPED = "skipped"
    GRAPH_NOT_FOUND = "graph_not_found"
    TASK_NOT_FOUND = "task_not_found"
    INVALID_GRAPH = "invalid_graph"


@dataclass
class TransitionResult:
    outcome: TransitionOutcome
    task_id: Optional[str] = None
    product: Optional[str] = None
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "taskId": self.task_id,
            "product": self.product,
            "status": self.status,
        }


@dataclass
class RouteResult:
    """Everything the router did with one message."""
    success: bool
    message_key: str
    transition: Optional[TransitionResult] = None
    delivered_to: Optional[str] = None
    checkpoint_id: Optional[str] = None
    blocker_ids: List[str] = field(default_factory=list)
    auxiliary_errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "messageKey": self.message_key,
            "transition": self.transition.to_dict() if self.transition else None,
            "deliveredTo": self.delivered_to,
            "checkpointId": self.checkpoint_id,
            "blockerIds": self.blocker_ids,
            "auxiliaryErrors": self.auxiliary_errors,
            "warnings": self.warnings,
        }


class MessageRouter:
    """
    Agent message router.

    Only the task status transition touches the graph, and it runs as one
    locked read-modify-write. Performance, checkpoint and blocker updates
    are independent best-effort steps: their failures are logged and
    reported in ``RouteResult.auxiliary_errors`` but never undo the
    transition.

    Routing is idempotent. A caller that gets ``LockTimeoutError`` should
    retry the whole ``route`` call.
    """

    def __init__(
        self,
        graphs: TaskGraphService,
        messages: MessageStore,
        checkpoints: CheckpointStore,
        blockers: BlockerStore,
        performance: PerformanceStore,
        inboxes: InboxStore,
        validator: Optional[MessageValidator] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Args:
            graphs: Locked access to task graphs
            messages: Durable message log
            checkpoints: Checkpoint records
            blockers: Blocker records
            performance: Per-agent history
            inboxes: Agent inboxes for messages not addressed to the orchestrator
            validator: Message validator
            metrics: Metrics collector
        """
        self.graphs = graphs
        self.messages = messages
        self.checkpoints = checkpoints
        self.blockers = blockers
        self.performance = performance
        self.inboxes = inboxes
        self.validator = validator or MessageValidator()
        self.metrics = metrics or MetricsCollector()
        self._listeners: List[GraphListener] = []

    def add_listener(self, listener: GraphListener) -> None:
        """Register a callback invoked with the product after each orchestrator message."""
        self._listeners.append(listener)

    def remove_listener(self, listener: GraphListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def route(self, message: Union[Mapping[str, Any], AgentMessage]) -> RouteResult:
        """
        Route one agent message.

        Raises:
            InvalidMessageError: If the message is malformed (nothing is recorded)
            LockTimeoutError: If the product's graph lock is not obtained in time
        """
        try:
            typed, warnings = self.validator.parse_with_warnings(message)
        except InvalidMessageError as e:
            self.metrics.increment("messages_rejected_total")
            logger.warning(f"Rejected agent message: {'; '.join(e.errors)}")
            raise

        meta = typed.metadata
        message_key = await self.messages.record(typed)
        logger.info(f"Routing {meta.message_type.value} from {meta.sender} to {meta.to} ({message_key})")

        result = RouteResult(success=True, message_key=message_key, warnings=warnings)

        if not typed.is_for_orchestrator:
            await self.inboxes.deliver(meta.to, typed)
            result.delivered_to = meta.to
            self.metrics.record_route(meta.message_type.value, None)
            return result

        with MetricsCollector.timer(self.metrics, "transition_time_ms"):
            result.transition = await self._apply_transition(typed)
        self.metrics.record_route(meta.message_type.value, result.transition.outcome.value)

        await self._record_performance(typed, result)
        if meta.product:
            if meta.message_type == MessageType.CHECKPOINT_READY:
                await self._record_checkpoint(typed, result)
            if typed.payload.blockers:
                await self._record_blockers(typed, result)
            await self._notify(meta.product)

        return result

    # ------------------------------------------------------------------
    # Task status transition
    # ------------------------------------------------------------------

    async def _apply_transition(self, message: AgentMessage) -> TransitionResult:
        meta = message.metadata
        product, task_id = meta.product, meta.task_id
        if not product or not task_id:
            return TransitionResult(TransitionOutcome.SKIPPED, task_id=task_id, product=product)

        status = message.payload.status
        if status not in (PayloadStatus.SUCCESS, PayloadStatus.FAILURE):
            return TransitionResult(TransitionOutcome.IGNORED, task_id=task_id, product=product)

        try:
            async with self.graphs.edit(product) as graph:
                ensure_valid(graph)
                task = graph.require_task(task_id)
                previous = task.status

                if status == PayloadStatus.SUCCESS:
                    changed = graph.mark_completed(
                        task_id,
                        artifacts=[
                            artifact.model_dump(by_alias=True, mode="json", exclude_none=True)
                            for artifact in message.payload.artifacts
                        ],
                        metrics=dict(message.payload.metrics),
                        message_key=message.key,
                    )
                    outcome = TransitionOutcome.APPLIED if changed else TransitionOutcome.ALREADY_APPLIED
                else:
                    changed = graph.mark_failed(
                        task_id,
                        error=self._error_details(message),
                        message_key=message.key,
                    )
                    if changed:
                        outcome = TransitionOutcome.APPLIED
                    elif previous == TaskStatus.COMPLETED:
                        outcome = TransitionOutcome.IGNORED
                    else:
                        outcome = TransitionOutcome.ALREADY_APPLIED

                new_status = task.status.value

        except GraphNotFoundError:
            logger.warning(f"No task graph for product '{product}'; message {message.key} recorded only")
            return TransitionResult(TransitionOutcome.GRAPH_NOT_FOUND, task_id=task_id, product=product)
        except TaskNotFoundError:
            logger.warning(f"Task '{task_id}' not in graph '{product}'; message {message.key} recorded only")
            return TransitionResult(TransitionOutcome.TASK_NOT_FOUND, task_id=task_id, product=product)
        except InvalidGraphError as e:
            logger.error(f"Refusing to update invalid graph '{product}': {e.message}")
            return TransitionResult(TransitionOutcome.INVALID_GRAPH, task_id=task_id, product=product)

        if outcome == TransitionOutcome.APPLIED:
            logger.info(f"Task '{task_id}' in '{product}': {previous.value} -> {new_status}")
        return TransitionResult(outcome, task_id=task_id, product=product, status=new_status)

    @staticmethod
    def _error_details(message: AgentMessage) -> Dict[str, Any]:
        if message.error_details is not None:
            return message.error_details.model_dump(by_alias=True, mode="json")
        return {"errorMessage": message.payload.summary}

    # ------------------------------------------------------------------
    # Auxiliary steps (best effort)
    # ------------------------------------------------------------------

    def _auxiliary_failure(self, step: str, message: AgentMessage, error: Exception, result: RouteResult) -> None:
        logger.exception(f"Auxiliary step '{step}' failed for message {message.key}")
        self.metrics.record_auxiliary_error(step)
        result.auxiliary_errors.append(f"{step}: {error}")

    async def _record_performance(self, message: AgentMessage, result: RouteResult) -> None:
        try:
            await self.performance.record(message.metadata.sender, PerformanceEntry.from_message(message))
        except OrchestratorError as e:
            self._auxiliary_failure("performance", message, e, result)

    async def _record_checkpoint(self, message: AgentMessage, result: RouteResult) -> None:
        try:
            record = await self.checkpoints.add(
                CheckpointRecord.from_message(message, message.metadata.product)
            )
            result.checkpoint_id = record.id
        except OrchestratorError as e:
            self._auxiliary_failure("checkpoint", message, e, result)

    async def _record_blockers(self, message: AgentMessage, result: RouteResult) -> None:
        product = message.metadata.product
        records = [
            BlockerRecord.from_blocker(message, blocker, product, position)
            for position, blocker in enumerate(message.payload.blockers)
        ]
        try:
            result.blocker_ids = await self.blockers.add_many(product, records)
        except OrchestratorError as e:
            self._auxiliary_failure("blockers", message, e, result)

    async def _notify(self, product: str) -> None:
        for listener in list(self._listeners):
            outcome = listener(product)
            if inspect.isawaitable(outcome):
                await outcome

