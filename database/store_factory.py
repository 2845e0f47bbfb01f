"""
Store Factory — pick the runtime store backend from configuration.

settings.yaml:
    database:
      url: "sqlite:///./flow_runtime.db"   # used by the "sql" backend
      store_backend: "memory"              # "sql" | "file" | "memory"
      store_file_dir: "./data"             # used by the "file" backend

One store instance is shared per process so every FlowEngine sees the same
sessions:

    store = create_configured_store()      # from settings, at startup
    engine = FlowEngine.from_store(get_store())
"""
from __future__ import annotations

import structlog
from dataclasses import asdict
from typing import Any, Callable, Mapping, Optional, Union

from config.settings import DatabaseConfig
from database.store_base import BaseRuntimeStore

logger = structlog.get_logger()

_instance: Optional[BaseRuntimeStore] = None


def _sql(config: Mapping[str, Any]) -> BaseRuntimeStore:
    from database.store import SqlRuntimeStore
    return SqlRuntimeStore()


def _file(config: Mapping[str, Any]) -> BaseRuntimeStore:
    from database.store_file import FileRuntimeStore
    return FileRuntimeStore(
        data_dir=config.get("store_file_dir", "./data"),
        flush_interval_s=config.get("flush_interval_s", 0),
    )


def _memory(config: Mapping[str, Any]) -> BaseRuntimeStore:
    from database.store_memory import InMemoryRuntimeStore
    return InMemoryRuntimeStore()


BACKENDS: dict[str, Callable[[Mapping[str, Any]], BaseRuntimeStore]] = {
    "sql": _sql,
    "file": _file,
    "memory": _memory,
}


def create_store(config: Union[DatabaseConfig, Mapping[str, Any], None] = None) -> BaseRuntimeStore:
    """
    Return the process store, building it on first call.

    Args:
        config: DatabaseConfig or dict with keys
            store_backend: "sql" | "file" | "memory"  (default: "memory")
            store_file_dir: directory for the file backend
            flush_interval_s: batch file writes (file backend, default 0)
    """
    global _instance
    if _instance is not None:
        return _instance

    if isinstance(config, DatabaseConfig):
        config = asdict(config)
    config = dict(config or {})

    backend = config.get("store_backend", "memory")
    builder = BACKENDS.get(backend)
    if builder is None:
        logger.warning("unknown_store_backend", backend=backend, using="memory")
        backend, builder = "memory", _memory

    _instance = builder(config)
    logger.info("store_created", backend=backend, store=type(_instance).__name__)
    return _instance


def create_configured_store() -> BaseRuntimeStore:
    """Create the store selected by the `database` section of settings."""
    from config.settings import get_settings
    return create_store(get_settings().database)


def get_store() -> BaseRuntimeStore:
    """Return the process store, creating an in-memory one if none exists."""
    return _instance if _instance is not None else create_store()


def reset_store() -> None:
    """Forget the process store (for testing)."""
    global _instance
    _instance = None
