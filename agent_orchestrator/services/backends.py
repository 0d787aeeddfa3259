"""
Storage Backends - key/value persistence for orchestration state

Every store (graphs, messages, checkpoints, blockers, performance, inboxes)
saves JSON documents through one of these backends. Documents are grouped
by namespace and addressed by key.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

import redis.asyncio as redis

from ..errors import StorageError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class StorageBackend(ABC):
    """
    Storage backend interface.

    ``put`` overwrites, so writing the same key twice is idempotent.
    """

    name = "abstract"

    async def connect(self) -> None:
        """Open connections. No-op for local backends."""

    async def close(self) -> None:
        """Release connections. No-op for local backends."""

    async def health_check(self) -> bool:
        return True

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[Document]:
        """Load a document, or None if absent."""

    @abstractmethod
    async def put(self, namespace: str, key: str, value: Document) -> None:
        """Store a document."""

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> bool:
        """Delete a document. Returns False if it did not exist."""

    @abstractmethod
    async def list_keys(self, namespace: str) -> List[str]:
        """All keys in a namespace."""

    async def exists(self, namespace: str, key: str) -> bool:
        return await self.get(namespace, key) is not None


class InMemoryBackend(StorageBackend):
    """
    Memory backend.

    Used for tests and single-process development. Documents are stored as
    JSON text so callers never share mutable state with the store.
    """

    name = "memory"

    def __init__(self):
        self._storage: Dict[str, Dict[str, str]] = {}

    async def get(self, namespace: str, key: str) -> Optional[Document]:
        raw = self._storage.get(namespace, {}).get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, namespace: str, key: str, value: Document) -> None:
        self._storage.setdefault(namespace, {})[key] = json.dumps(value, ensure_ascii=False)

    async def delete(self, namespace: str, key: str) -> bool:
        bucket = self._storage.get(namespace, {})
        if key in bucket:
            del bucket[key]
            return True
        return False

    async def list_keys(self, namespace: str) -> List[str]:
        return list(self._storage.get(namespace, {}).keys())


class FileBackend(StorageBackend):
    """
    File backend.

    One JSON file per document under ``<storage_dir>/<namespace>/``. Writes go
    to a temporary file first and are moved into place, so a crash never
    leaves a half-written document behind.
    """

    name = "file"

    def __init__(self, storage_dir: str = "./orchestrator_storage"):
        self._storage_dir = storage_dir
        os.makedirs(storage_dir, exist_ok=True)

    @property
    def storage_dir(self) -> str:
        return self._storage_dir

    def _namespace_dir(self, namespace: str) -> str:
        return os.path.join(self._storage_dir, quote(namespace, safe=""))

    def _get_file_path(self, namespace: str, key: str) -> str:
        # keys contain ':' and '/', so percent-encode them into a safe filename
        return os.path.join(self._namespace_dir(namespace), f"{quote(key, safe='')}.json")

    async def get(self, namespace: str, key: str) -> Optional[Document]:
        file_path = self._get_file_path(namespace, key)
        if not os.path.exists(file_path):
            return None

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {file_path}: {e}", backend=self.name, key=key) from e

    async def put(self, namespace: str, key: str, value: Document) -> None:
        file_path = self._get_file_path(namespace, key)
        tmp_path = f"{file_path}.tmp"
        try:
            os.makedirs(self._namespace_dir(namespace), exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, file_path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {file_path}: {e}", backend=self.name, key=key) from e

    async def delete(self, namespace: str, key: str) -> bool:
        file_path = self._get_file_path(namespace, key)
        if not os.path.exists(file_path):
            return False
        try:
            os.remove(file_path)
        except OSError as e:
            raise StorageError(f"Failed to delete {file_path}: {e}", backend=self.name, key=key) from e
        return True

    async def list_keys(self, namespace: str) -> List[str]:
        directory = self._namespace_dir(namespace)
        if not os.path.isdir(directory):
            return []
        return sorted(
            unquote(f[:-5])  # strip .json
            for f in os.listdir(directory)
            if f.endswith(".json")
        )


class RedisBackend(StorageBackend):
    """
    Redis backend.

    For multi-process deployments. Each namespace is one Redis hash
    (``<prefix><namespace>``) whose fields are document keys.
    """

    name = "redis"

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "orchestrator:",
        max_connections: int = 50,
        client: Optional[redis.Redis] = None,
    ):
        self.url = url
        self._key_prefix = key_prefix
        self._max_connections = max_connections
        self.client: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Initialize the Redis connection pool and ping it."""
        if self.client is None:
            self.client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=self._max_connections,
            )
        try:
            await self.client.ping()
        except redis.RedisError as e:
            raise StorageError(f"Redis connection failed: {e}", backend=self.name) from e
        logger.info(f"Connected to Redis at {self.url}")

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("Disconnected from Redis")

    async def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            await self.client.ping()
            return True
        except redis.RedisError:
            logger.warning("Redis health check failed", exc_info=True)
            return False

    def _hash_key(self, namespace: str) -> str:
        return f"{self._key_prefix}{namespace}"

    def _require_client(self) -> redis.Redis:
        if self.client is None:
            raise StorageError("Redis backend is not connected", backend=self.name)
        return self.client

    async def get(self, namespace: str, key: str) -> Optional[Document]:
        client = self._require_client()
        try:
            raw = await client.hget(self._hash_key(namespace), key)
        except redis.RedisError as e:
            raise StorageError(f"Redis HGET failed: {e}", backend=self.name, key=key) from e
        return json.loads(raw) if raw else None

    async def put(self, namespace: str, key: str, value: Document) -> None:
        client = self._require_client()
        try:
            await client.hset(self._hash_key(namespace), key, json.dumps(value, ensure_ascii=False))
        except redis.RedisError as e:
            raise StorageError(f"Redis HSET failed: {e}", backend=self.name, key=key) from e

    async def delete(self, namespace: str, key: str) -> bool:
        client = self._require_client()
        try:
            return await client.hdel(self._hash_key(namespace), key) > 0
        except redis.RedisError as e:
            raise StorageError(f"Redis HDEL failed: {e}", backend=self.name, key=key) from e

    async def list_keys(self, namespace: str) -> List[str]:
        client = self._require_client()
        try:
            return list(await client.hkeys(self._hash_key(namespace)))
        except redis.RedisError as e:
            raise StorageError(f"Redis HKEYS failed: {e}", backend=self.name) from e


def create_backend(backend: str = "memory", **kwargs) -> StorageBackend:
    """
    Backend factory.

    Args:
        backend: Backend type ("memory", "file", "redis")
        **kwargs: Backend specific settings

    Returns:
        StorageBackend implementation
    """
    if backend == "memory":
        return InMemoryBackend()
    elif backend == "file":
        return FileBackend(
            storage_dir=kwargs.get("storage_dir", "./orchestrator_storage")
        )
    elif backend == "redis":
        return RedisBackend(
            url=kwargs.get("url", "redis://localhost:6379/0"),
            key_prefix=kwargs.get("key_prefix", "orchestrator:"),
            max_connections=kwargs.get("max_connections", 50),
        )
    else:
        raise ValueError(f"Unknown storage backend: {backend}")
