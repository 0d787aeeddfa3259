"""
Runtime settings loaded from the environment (and a ``.env`` file).
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from .orchestration.driver import DriverConfig

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _get_list(env: Mapping[str, str], key: str, default: List[str]) -> List[str]:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean, got {raw!r}")


@dataclass
class Settings:
    """Orchestrator configuration."""
    storage_backend: str = "memory"
    storage_dir: str = "./orchestrator_storage"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "orchestrator:"
    redis_max_connections: int = 50
    lock_timeout: float = 10.0
    poll_interval: float = 5.0
    max_parallel: int = 5
    dispatch_timeout: float = 30.0
    retry_failed: bool = False
    max_retries: int = 2
    log_level: str = "INFO"
    http_host: str = "0.0.0.0"
    http_port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read instead of ``os.environ``
            dotenv: Load a ``.env`` file into ``os.environ`` first

        Raises:
            ValueError: If a value cannot be parsed
        """
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        backend = env.get("ORCHESTRATOR_STORAGE_BACKEND", "memory").strip().lower()
        if backend not in ("memory", "file", "redis"):
            raise ValueError(f"ORCHESTRATOR_STORAGE_BACKEND must be memory, file or redis, got {backend!r}")

        settings = cls(
            storage_backend=backend,
            storage_dir=env.get("ORCHESTRATOR_STORAGE_DIR", "./orchestrator_storage"),
            redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
            redis_key_prefix=env.get("REDIS_KEY_PREFIX", "orchestrator:"),
            redis_max_connections=_get_int(env, "REDIS_MAX_CONNECTIONS", 50),
            lock_timeout=_get_float(env, "ORCHESTRATOR_LOCK_TIMEOUT", 10.0),
            poll_interval=_get_float(env, "ORCHESTRATOR_POLL_INTERVAL", 5.0),
            max_parallel=_get_int(env, "ORCHESTRATOR_MAX_PARALLEL", 5),
            dispatch_timeout=_get_float(env, "ORCHESTRATOR_DISPATCH_TIMEOUT", 30.0),
            retry_failed=_get_bool(env, "ORCHESTRATOR_RETRY_FAILED", False),
            max_retries=_get_int(env, "ORCHESTRATOR_MAX_RETRIES", 2),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            http_host=env.get("HTTP_HOST", "0.0.0.0"),
            http_port=_get_int(env, "HTTP_PORT", 8000),
            cors_origins=_get_list(env, "CORS_ORIGINS", ["*"]),
        )

        if settings.lock_timeout <= 0:
            raise ValueError("ORCHESTRATOR_LOCK_TIMEOUT must be positive")
        if settings.max_parallel < 1:
            raise ValueError("ORCHESTRATOR_MAX_PARALLEL must be at least 1")
        return settings

    def backend_options(self) -> dict:
        """Keyword arguments for ``create_backend``."""
        if self.storage_backend == "file":
            return {"storage_dir": self.storage_dir}
        if self.storage_backend == "redis":
            return {
                "url": self.redis_url,
                "key_prefix": self.redis_key_prefix,
                "max_connections": self.redis_max_connections,
            }
        return {}

    def driver_config(self) -> DriverConfig:
        return DriverConfig(
            poll_interval=self.poll_interval,
            max_parallel=self.max_parallel,
            dispatch_timeout=self.dispatch_timeout,
            retry_failed=self.retry_failed,
            max_retries=self.max_retries,
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a single stderr handler on the root logger."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level.upper())
