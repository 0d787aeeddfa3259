"""
Services - storage, locking and coordination stores.
"""

from .backends import (
    FileBackend,
    InMemoryBackend,
    RedisBackend,
    StorageBackend,
    create_backend,
)
from .graph_service import TaskGraphService
from .locks import KeyedLockManager
from .metrics import MetricsCollector
from .repository import GraphRepository
from .stores import (
    BlockerStore,
    CheckpointStore,
    InboxStore,
    MessageStore,
    PerformanceStore,
)

__all__ = [
    # Backends
    "FileBackend",
    "InMemoryBackend",
    "RedisBackend",
    "StorageBackend",
    "create_backend",
    # Graphs
    "GraphRepository",
    "TaskGraphService",
    # Locks
    "KeyedLockManager",
    # Stores
    "BlockerStore",
    "CheckpointStore",
    "InboxStore",
    "MessageStore",
    "PerformanceStore",
    # Metrics
    "MetricsCollector",
]
