"""Persistence layer for flowrun definitions, executions and tasks."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from ..config import FlowrunConfig, load_config
from .inmemory import InMemoryDefinitionStore, InMemoryExecutionStore, InMemoryTaskStore
from .models import DefinitionFilter, ExecutionFilter, TaskFilter
from .repository import DefinitionStore, ExecutionStore, TaskStore
from .sqlite import SQLiteDefinitionStore, SQLiteExecutionStore, SQLiteTaskStore

try:  # pragma: no cover - optional dependency
    from .postgres import (
        PostgresDefinitionStore,
        PostgresExecutionStore,
        PostgresTaskStore,
    )
except ImportError:  # pragma: no cover - optional dependency
    PostgresDefinitionStore = PostgresExecutionStore = PostgresTaskStore = None  # type: ignore


@dataclass
class StoreBundle:
    """The three stores of one backend."""

    definitions: DefinitionStore
    executions: ExecutionStore
    tasks: TaskStore

    @classmethod
    def in_memory(cls) -> "StoreBundle":
        return cls(
            definitions=InMemoryDefinitionStore(),
            executions=InMemoryExecutionStore(),
            tasks=InMemoryTaskStore(),
        )


_stores_instance: StoreBundle | None = None


def get_stores(
    database_url: Optional[str] = None, config: Optional[FlowrunConfig] = None
) -> StoreBundle:
    """Factory function to obtain the configured stores.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``FLOWRUN_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, in-memory stores are returned.
    """

    global _stores_instance
    if _stores_instance is not None and database_url is None and config is None:
        return _stores_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("FLOWRUN_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _stores_instance = StoreBundle.in_memory()
        return _stores_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _stores_instance = StoreBundle(
            definitions=SQLiteDefinitionStore(path),
            executions=SQLiteExecutionStore(path),
            tasks=SQLiteTaskStore(path),
        )
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresDefinitionStore is None:
            raise RuntimeError("Postgres support not available; install flowrun[postgres]")
        _stores_instance = StoreBundle(
            definitions=PostgresDefinitionStore(database_url),
            executions=PostgresExecutionStore(database_url),
            tasks=PostgresTaskStore(database_url),
        )
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _stores_instance


__all__ = [
    "DefinitionFilter",
    "DefinitionStore",
    "ExecutionFilter",
    "ExecutionStore",
    "InMemoryDefinitionStore",
    "InMemoryExecutionStore",
    "InMemoryTaskStore",
    "PostgresDefinitionStore",
    "PostgresExecutionStore",
    "PostgresTaskStore",
    "SQLiteDefinitionStore",
    "SQLiteExecutionStore",
    "SQLiteTaskStore",
    "StoreBundle",
    "TaskFilter",
    "TaskStore",
    "get_stores",
]
