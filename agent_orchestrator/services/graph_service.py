"""
TaskGraphService - the single writer of task graphs

Every graph mutation is a read-modify-write under the product's lock, so
two routes for the same product can never interleave and lose an update.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from ..errors import GraphNotFoundError
from ..task_graph import GraphValidationResult, TaskGraph, ensure_valid, validate
from .locks import KeyedLockManager
from .repository import GraphRepository

logger = logging.getLogger(__name__)


class TaskGraphService:
    """Locked access to the graphs held by a GraphRepository."""

    def __init__(
        self,
        repository: GraphRepository,
        locks: Optional[KeyedLockManager] = None,
        lock_timeout: Optional[float] = None,
    ):
        self._repository = repository
        self._locks = locks or KeyedLockManager("graph")
        self._lock_timeout = lock_timeout

    @property
    def locks(self) -> KeyedLockManager:
        return self._locks

    @asynccontextmanager
    async def edit(self, product: str) -> AsyncIterator[TaskGraph]:
        """
        Load, mutate and save a graph while holding its product lock.

        The graph is saved only when the block exits normally.

        Raises:
            LockTimeoutError: If the product lock is not obtained in time
            GraphNotFoundError: If no graph exists for ``product``
        """
        async with self._locks.acquire(product, self._lock_timeout):
            graph = await self._repository.load(product)
            if graph is None:
                raise GraphNotFoundError(product)
            yield graph
            await self._repository.save(graph)

    async def snapshot(self, product: str) -> TaskGraph:
        """
        Read-only copy of the current graph.

        Raises:
            GraphNotFoundError: If no graph exists for ``product``
        """
        graph = await self._repository.load(product)
        if graph is None:
            raise GraphNotFoundError(product)
        return graph

    async def put(self, graph: TaskGraph) -> GraphValidationResult:
        """
        Replace a product's graph after checking it.

        Raises:
            CycleDetectedError / DanglingReferenceError: If the graph is invalid
        """
        result = ensure_valid(graph)
        async with self._locks.acquire(graph.product, self._lock_timeout):
            await self._repository.save(graph)
        logger.info(f"Stored graph '{graph.product}' with {len(graph)} task(s)")
        return result

    async def validation(self, product: str) -> GraphValidationResult:
        return validate(await self.snapshot(product))

    async def list_products(self) -> List[str]:
        return await self._repository.list_products()
