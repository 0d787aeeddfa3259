"""
Orchestration driver.

Runs scheduling rounds: for each product it computes the ready set, claims
those tasks (pending -> in_progress) and hands them to a dispatch callable.
Agents report back through the router, whose graph-updated notification
wakes the driver before the next poll.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import GraphNotFoundError, OrchestratorError
from ..services.graph_service import TaskGraphService
from ..services.metrics import MetricsCollector
from ..services.stores import CheckpointStore
from ..task_graph import (
    Task,
    TaskStatus,
    has_pending_checkpoint,
    parallel_groups,
    prioritize,
    ready_tasks,
    validate,
)

logger = logging.getLogger(__name__)


# Hands a claimed task to its agent. Returning means the agent accepted it.
DispatchFunc = Callable[[str, Task], Awaitable[Any]]


@dataclass
class DriverConfig:
    """Configuration for the dispatch loop."""
    poll_interval: float = 5.0
    max_parallel: int = 5
    dispatch_timeout: Optional[float] = 30.0
    retry_failed: bool = False
    max_retries: int = 2


@dataclass
class RoundResult:
    """What one scheduling round did for one product."""
    product: str
    dispatched: List[str] = field(default_factory=list)
    released: List[str] = field(default_factory=list)
    retried: List[str] = field(default_factory=list)
    gated: bool = False
    invalid: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product": self.product,
            "dispatched": self.dispatched,
            "released": self.released,
            "retried": self.retried,
            "gated": self.gated,
            "invalid": self.invalid,
            "error": self.error,
        }


class OrchestrationDriver:
    """
    Dispatch loop over every stored task graph.

    Features:
    - Checkpoint gating and graph validation before each round
    - Parallel groups dispatched together, bounded by ``max_parallel``
    - Dispatch timeout; a task whose hand-off fails goes back to pending
    - Optional retry of failed tasks up to ``max_retries``

    Example:
        driver = OrchestrationDriver(graphs, checkpoints, dispatch=send_to_agent)
        router.add_listener(driver.notify)
        await driver.run()
    """

    def __init__(
        self,
        graphs: TaskGraphService,
        checkpoints: CheckpointStore,
        dispatch: DispatchFunc,
        config: Optional[DriverConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        products: Optional[List[str]] = None,
    ):
        """
        Args:
            graphs: Locked access to task graphs
            checkpoints: Checkpoint records used for gating
            dispatch: Async callable ``dispatch(product, task)``
            config: Driver configuration
            metrics: Metrics collector
            products: Restrict rounds to these products (default: all stored)
        """
        self.graphs = graphs
        self.checkpoints = checkpoints
        self.dispatch = dispatch
        self.config = config or DriverConfig()
        self.metrics = metrics or MetricsCollector()
        self.products = products

        self._semaphore = asyncio.Semaphore(self.config.max_parallel)
        self._wake = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def notify(self, product: Optional[str] = None) -> None:
        """Wake the loop early; used as a router graph-updated listener."""
        self._wake.set()

    def stop(self) -> None:
        self._running = False
        self._wake.set()

    async def run(self) -> None:
        """Run rounds until ``stop`` is called."""
        self._running = True
        logger.info(f"Driver started (poll every {self.config.poll_interval}s)")

        while self._running:
            self._wake.clear()
            try:
                await self.run_round()
            except OrchestratorError as e:
                logger.exception(f"Round skipped: {e.message}")

            if not self._running:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), self.config.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Driver stopped")

    async def run_round(self) -> List[RoundResult]:
        """
        One round over every product.

        A failing product is logged and reported in its RoundResult; the
        remaining products are still scheduled.
        """
        products = self.products if self.products is not None else await self.graphs.list_products()
        results = []
        for product in products:
            try:
                results.append(await self.run_once(product))
            except OrchestratorError as e:
                logger.exception(f"Scheduling round for '{product}' failed: {e.message}")
                results.append(RoundResult(product=product, error=e.message))
        return results

    async def run_once(self, product: str) -> RoundResult:
        """
        One scheduling round for a product.

        Raises:
            LockTimeoutError: If the product's graph lock is not obtained in time
            StorageError: If the stored graph or checkpoints cannot be read
        """
        result = RoundResult(product=product)

        try:
            if self.config.retry_failed:
                result.retried = await self._retry_failed(product)

            graph = await self.graphs.snapshot(product)
        except GraphNotFoundError:
            logger.warning(f"Graph '{product}' disappeared before scheduling")
            return result

        validation = validate(graph)
        if not validation.valid:
            logger.error(
                f"Graph '{product}' is invalid, not scheduling: "
                f"{'; '.join(validation.messages)}"
            )
            result.invalid = True
            return result

        pending_checkpoints = await self.checkpoints.list(product, include_resolved=False)
        if has_pending_checkpoint(product, pending_checkpoints):
            result.gated = True
            return result

        ready = ready_tasks(graph, pending_checkpoints)
        self.metrics.set_gauge("ready_tasks", len(ready), {"product": product})
        if not ready:
            return result

        try:
            claimed = await self._claim(product, [task.id for task in ready])
        except GraphNotFoundError:
            logger.warning(f"Graph '{product}' disappeared before its tasks were claimed")
            return result
        for batch in self._batches([task for task in ready if task.id in claimed]):
            outcomes = await asyncio.gather(*(self._dispatch_one(product, task) for task in batch))
            for task, accepted in zip(batch, outcomes):
                (result.dispatched if accepted else result.released).append(task.id)

        if result.released:
            await self._release(product, result.released)
        return result

    @staticmethod
    def _batches(ready: List[Task]) -> List[List[Task]]:
        """Parallel groups first, then tasks that must run on their own, by priority."""
        batches = parallel_groups(prioritize(ready))
        batches.extend([task] for task in prioritize(ready) if not task.parallel_ok)
        return batches

    async def _claim(self, product: str, task_ids: List[str]) -> List[str]:
        claimed = []
        async with self.graphs.edit(product) as graph:
            for task_id in task_ids:
                if task_id in graph and graph.mark_in_progress(task_id):
                    claimed.append(task_id)
        return claimed

    async def _release(self, product: str, task_ids: List[str]) -> None:
        try:
            async with self.graphs.edit(product) as graph:
                for task_id in task_ids:
                    if task_id in graph:
                        graph.release(task_id)
        except GraphNotFoundError:
            logger.warning(f"Graph '{product}' disappeared; {len(task_ids)} task(s) not released")
            return
        logger.warning(f"Returned {len(task_ids)} task(s) in '{product}' to pending")

    async def _retry_failed(self, product: str) -> List[str]:
        retried = []
        async with self.graphs.edit(product) as graph:
            for task in graph.tasks:
                if task.status != TaskStatus.FAILED:
                    continue
                if task.retry_count <= self.config.max_retries and graph.reset_for_retry(task.id):
                    retried.append(task.id)
        if retried:
            logger.info(f"Retrying failed task(s) in '{product}': {', '.join(retried)}")
        return retried

    async def _dispatch_one(self, product: str, task: Task) -> bool:
        async with self._semaphore:
            start = time.perf_counter()
            try:
                await asyncio.wait_for(self.dispatch(product, task), self.config.dispatch_timeout)
                success = True
            except asyncio.TimeoutError:
                logger.error(f"Dispatch of '{task.id}' to {task.agent} timed out")
                success = False
            except Exception:
                logger.exception(f"Dispatch of '{task.id}' to {task.agent} failed")
                success = False

            elapsed_ms = (time.perf_counter() - start) * 1000
            self.metrics.record_dispatch(task.agent, elapsed_ms, success)
            if success:
                logger.info(f"Dispatched '{task.id}' ({product}) to {task.agent}")
            return success
