"""
Graph Repository - task graph persistence

Stores one TaskGraph per product on top of a StorageBackend.
"""

import logging
from typing import List, Optional

from ..errors import StorageError
from ..task_graph import TaskGraph
from .backends import StorageBackend

logger = logging.getLogger(__name__)

GRAPHS_NAMESPACE = "graphs"


class GraphRepository:
    """Task graphs keyed by product."""

    def __init__(self, backend: StorageBackend):
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    async def save(self, graph: TaskGraph) -> None:
        await self._backend.put(GRAPHS_NAMESPACE, graph.product, graph.to_dict())
        logger.debug(f"Saved graph '{graph.product}' ({len(graph)} tasks)")

    async def load(self, product: str) -> Optional[TaskGraph]:
        data = await self._backend.get(GRAPHS_NAMESPACE, product)
        if data is None:
            return None

        try:
            return TaskGraph.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(
                f"Stored graph for '{product}' is corrupt: {e}",
                backend=self._backend.name,
                key=product,
            ) from e

    async def delete(self, product: str) -> bool:
        return await self._backend.delete(GRAPHS_NAMESPACE, product)

    async def list_products(self) -> List[str]:
        return await self._backend.list_keys(GRAPHS_NAMESPACE)

    async def exists(self, product: str) -> bool:
        return await self._backend.exists(GRAPHS_NAMESPACE, product)
