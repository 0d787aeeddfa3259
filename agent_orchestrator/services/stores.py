"""
Coordination stores written by the router.

- MessageStore: durable log of every routed message, keyed by message key
- CheckpointStore / BlockerStore: per-product records for the operator
- PerformanceStore: per-agent task history
- InboxStore: messages addressed to agents rather than the orchestrator

Each store keeps one document per product or agent and updates it under
its own KeyedLockManager, so stores never block the graph lock or each
other.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from ..errors import RecordNotFoundError
from ..models.message import AgentMessage
from ..models.records import (
    AgentPerformance,
    BlockerRecord,
    CheckpointRecord,
    PerformanceEntry,
)
from .backends import Document, StorageBackend
from .locks import KeyedLockManager

logger = logging.getLogger(__name__)


class MessageStore:
    """Raw agent messages, written before any side effect of routing."""

    namespace = "messages"

    def __init__(self, backend: StorageBackend):
        self._backend = backend

    async def record(self, message: AgentMessage) -> str:
        """Persist a message. Re-delivery overwrites the same key."""
        key = message.key
        await self._backend.put(self.namespace, key, message.to_wire())
        return key

    async def get(self, key: str) -> Optional[AgentMessage]:
        data = await self._backend.get(self.namespace, key)
        return AgentMessage.model_validate(data) if data is not None else None

    async def list_keys(self) -> List[str]:
        return await self._backend.list_keys(self.namespace)


class _DocumentStore:
    """One JSON document per owner key, updated under that key's lock."""

    namespace = "documents"

    def __init__(
        self,
        backend: StorageBackend,
        locks: Optional[KeyedLockManager] = None,
        lock_timeout: Optional[float] = None,
    ):
        self._backend = backend
        self._locks = locks or KeyedLockManager(self.namespace)
        self._lock_timeout = lock_timeout

    async def _load(self, owner: str) -> Document:
        return await self._backend.get(self.namespace, owner) or {}

    @asynccontextmanager
    async def _update(self, owner: str) -> AsyncIterator[Document]:
        async with self._locks.acquire(owner, self._lock_timeout):
            document = await self._load(owner)
            yield document
            await self._backend.put(self.namespace, owner, document)


class CheckpointStore(_DocumentStore):
    """Checkpoints per product. Any unresolved one gates scheduling."""

    namespace = "checkpoints"

    async def add(self, record: CheckpointRecord) -> CheckpointRecord:
        """
        Store a checkpoint.

        A record with the same id (the same message delivered again) is
        kept as is, so a re-delivery cannot reopen a resolved checkpoint.
        """
        async with self._update(record.product) as document:
            records = document.setdefault("records", {})
            if record.id in records:
                return CheckpointRecord.from_dict(records[record.id])
            records[record.id] = record.to_dict()

        logger.info(f"Checkpoint {record.id} opened for '{record.product}' by {record.agent}")
        return record

    async def list(self, product: str, include_resolved: bool = True) -> List[CheckpointRecord]:
        document = await self._load(product)
        records = [CheckpointRecord.from_dict(r) for r in document.get("records", {}).values()]
        if not include_resolved:
            records = [r for r in records if not r.resolved]
        return records

    async def has_pending(self, product: str) -> bool:
        return bool(await self.list(product, include_resolved=False))

    async def resolve(
        self,
        product: str,
        checkpoint_id: str,
        resolved_by: str,
        resolution: Optional[str] = None,
    ) -> CheckpointRecord:
        """
        Approve a checkpoint, releasing the gate once none remain open.

        Raises:
            RecordNotFoundError: If the checkpoint does not exist
        """
        async with self._update(product) as document:
            records = document.setdefault("records", {})
            if checkpoint_id not in records:
                raise RecordNotFoundError("checkpoint", checkpoint_id, product)
            record = CheckpointRecord.from_dict(records[checkpoint_id])
            if not record.resolved:
                record.resolve(resolved_by, resolution)
                records[checkpoint_id] = record.to_dict()

        logger.info(f"Checkpoint {checkpoint_id} for '{product}' resolved by {resolved_by}")
        return record


class BlockerStore(_DocumentStore):
    """Blockers per product. Informational; they do not gate scheduling."""

    namespace = "blockers"

    async def add_many(self, product: str, blockers: List[BlockerRecord]) -> List[str]:
        if not blockers:
            return []

        async with self._update(product) as document:
            records = document.setdefault("records", {})
            for blocker in blockers:
                if blocker.id not in records:
                    records[blocker.id] = blocker.to_dict()

        for blocker in blockers:
            logger.warning(
                f"Blocker {blocker.id} ({blocker.severity}) reported by "
                f"{blocker.reported_by} for '{product}': {blocker.description}"
            )
        return [blocker.id for blocker in blockers]

    async def list(self, product: str, include_resolved: bool = True) -> List[BlockerRecord]:
        document = await self._load(product)
        records = [BlockerRecord.from_dict(r) for r in document.get("records", {}).values()]
        if not include_resolved:
            records = [r for r in records if not r.resolved]
        return records

    async def resolve(
        self,
        product: str,
        blocker_id: str,
        resolution: Optional[str] = None,
    ) -> BlockerRecord:
        """
        Raises:
            RecordNotFoundError: If the blocker does not exist
        """
        async with self._update(product) as document:
            records = document.setdefault("records", {})
            if blocker_id not in records:
                raise RecordNotFoundError("blocker", blocker_id, product)
            record = BlockerRecord.from_dict(records[blocker_id])
            if not record.resolved:
                record.resolve(resolution)
                records[blocker_id] = record.to_dict()
        return record


class PerformanceStore(_DocumentStore):
    """Per-agent task history."""

    namespace = "performance"

    async def record(self, agent: str, entry: PerformanceEntry) -> AgentPerformance:
        async with self._update(agent) as document:
            performance = AgentPerformance.from_dict({"agent": agent, **document})
            performance.merge(entry)
            document.clear()
            document.update(performance.to_dict())
        return performance

    async def get(self, agent: str) -> AgentPerformance:
        document = await self._load(agent)
        return AgentPerformance.from_dict({"agent": agent, **document})

    async def list_agents(self) -> List[str]:
        return await self._backend.list_keys(self.namespace)


def _inbox_key(message: AgentMessage) -> str:
    # assignments for different tasks can share a timestamp
    return f"{message.key}:{message.metadata.task_id or ''}"


class InboxStore(_DocumentStore):
    """Messages waiting for an agent, in arrival order."""

    namespace = "inboxes"

    async def deliver(self, agent: str, message: AgentMessage) -> int:
        """Queue a message. Returns the inbox size."""
        async with self._update(agent) as document:
            messages: Dict[str, Any] = document.setdefault("messages", {})
            messages[_inbox_key(message)] = message.to_wire()
            size = len(messages)

        logger.debug(f"Delivered {message.key} to {agent} (inbox size {size})")
        return size

    async def list(self, agent: str) -> List[AgentMessage]:
        document = await self._load(agent)
        return [
            AgentMessage.model_validate(data)
            for data in document.get("messages", {}).values()
        ]

    async def drain(self, agent: str) -> List[AgentMessage]:
        """Return and remove every queued message."""
        async with self._update(agent) as document:
            pending = list(document.get("messages", {}).values())
            document["messages"] = {}
        return [AgentMessage.model_validate(data) for data in pending]
