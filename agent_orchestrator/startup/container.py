"""
Service container.

Builds every store, the router and the driver over one storage backend and
owns their lifecycle. Nothing here is a module-level singleton; each
container is independent, which is what tests rely on.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from ..config import Settings
from ..handlers import MessageRouter, MessageValidator
from ..orchestration import DispatchFunc, DriverConfig, InboxDispatcher, OrchestrationDriver
from ..services import (
    BlockerStore,
    CheckpointStore,
    GraphRepository,
    InboxStore,
    KeyedLockManager,
    MessageStore,
    MetricsCollector,
    PerformanceStore,
    StorageBackend,
    TaskGraphService,
    create_backend,
)

logger = logging.getLogger(__name__)


class OrchestratorServices:
    """
    Everything one orchestrator instance needs.

    Lifecycle:
        services = build_services(settings)
        await services.start()      # connect backend, optionally start driver
        ...
        await services.shutdown()   # stop driver, close backend
    """

    def __init__(
        self,
        backend: StorageBackend,
        lock_timeout: float = 10.0,
        driver_config: Optional[DriverConfig] = None,
        dispatch: Optional[DispatchFunc] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.backend = backend
        self.metrics = metrics or MetricsCollector()

        self.repository = GraphRepository(backend)
        self.graphs = TaskGraphService(
            self.repository,
            KeyedLockManager("graph", default_timeout=lock_timeout),
        )
        self.messages = MessageStore(backend)
        self.checkpoints = CheckpointStore(backend, KeyedLockManager("checkpoints", lock_timeout))
        self.blockers = BlockerStore(backend, KeyedLockManager("blockers", lock_timeout))
        self.performance = PerformanceStore(backend, KeyedLockManager("performance", lock_timeout))
        self.inboxes = InboxStore(backend, KeyedLockManager("inboxes", lock_timeout))

        self.router = MessageRouter(
            graphs=self.graphs,
            messages=self.messages,
            checkpoints=self.checkpoints,
            blockers=self.blockers,
            performance=self.performance,
            inboxes=self.inboxes,
            validator=MessageValidator(),
            metrics=self.metrics,
        )
        self.driver = OrchestrationDriver(
            graphs=self.graphs,
            checkpoints=self.checkpoints,
            dispatch=dispatch or InboxDispatcher(self.inboxes),
            config=driver_config,
            metrics=self.metrics,
        )
        self.router.add_listener(self.driver.notify)

        self._driver_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, run_driver: bool = False) -> None:
        if self._started:
            return
        await self.backend.connect()
        self._started = True
        logger.info(f"Orchestrator services started ({self.backend.name} backend)")

        if run_driver:
            self._driver_task = asyncio.create_task(self.driver.run())

    async def shutdown(self) -> None:
        if self._driver_task is not None:
            self.driver.stop()
            await self._driver_task
            self._driver_task = None

        if self._started:
            await self.backend.close()
            self._started = False
            logger.info("Orchestrator services stopped")

    async def health(self) -> Dict[str, Any]:
        backend_ok = await self.backend.health_check()
        return {
            "status": "healthy" if backend_ok else "degraded",
            "backend": self.backend.name,
            "backendHealthy": backend_ok,
            "driverRunning": self.driver.running,
        }


def build_services(
    settings: Settings,
    dispatch: Optional[DispatchFunc] = None,
) -> OrchestratorServices:
    """Create a container from settings."""
    backend = create_backend(settings.storage_backend, **settings.backend_options())
    return OrchestratorServices(
        backend=backend,
        lock_timeout=settings.lock_timeout,
        driver_config=settings.driver_config(),
        dispatch=dispatch,
    )
