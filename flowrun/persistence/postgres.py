"""PostgreSQL implementation of the flowrun stores."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import asyncpg

from ..contracts import Definition, Execution, Task
from .models import (
    DefinitionFilter,
    ExecutionFilter,
    TaskFilter,
    merge_definition,
)
from .repository import DefinitionStore, ExecutionStore, TaskStore

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS flowrun_definitions (
        seq BIGSERIAL,
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        category TEXT NOT NULL,
        enabled BOOLEAN NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        body JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS flowrun_executions (
        seq BIGSERIAL,
        id TEXT PRIMARY KEY,
        definition_id TEXT,
        status TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        body JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS flowrun_tasks (
        seq BIGSERIAL,
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        status TEXT NOT NULL,
        priority INTEGER NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        body JSONB NOT NULL
    )
    """,
)


class _PostgresStore:
    """Connection helper shared by the PostgreSQL stores."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        for statement in _SCHEMA:
            await conn.execute(statement)

    async def _execute(self, query: str, *params: Any) -> str:
        conn = await self._connect()
        try:
            return await conn.execute(query, *params)
        finally:
            await conn.close()

    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()


def _deleted(status: str) -> bool:
    # asyncpg returns the command tag, e.g. "DELETE 1".
    return status.split()[-1] != "0"


class PostgresDefinitionStore(_PostgresStore, DefinitionStore):
    """Persist definitions using PostgreSQL."""

    async def _write(self, definition: Definition) -> None:
        await self._execute(
            """
            INSERT INTO flowrun_definitions (id, name, category, enabled, created_at, updated_at, body)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                category = EXCLUDED.category,
                enabled = EXCLUDED.enabled,
                updated_at = EXCLUDED.updated_at,
                body = EXCLUDED.body
            """,
            definition.id,
            definition.name,
            definition.category,
            definition.enabled,
            definition.created_at,
            definition.updated_at,
            definition.model_dump_json(),
        )

    async def create(self, definition: Definition) -> str:
        await self._write(definition)
        return definition.id

    async def get(self, definition_id: str) -> Optional[Definition]:
        row = await self._fetchrow(
            "SELECT body FROM flowrun_definitions WHERE id = $1", definition_id
        )
        return Definition.model_validate_json(row["body"]) if row else None

    async def update(
        self, definition_id: str, partial: Dict[str, Any]
    ) -> Optional[Definition]:
        current = await self.get(definition_id)
        if current is None:
            return None
        merged = merge_definition(current, partial)
        await self._write(merged)
        return merged

    async def delete(self, definition_id: str) -> bool:
        status = await self._execute(
            "DELETE FROM flowrun_definitions WHERE id = $1", definition_id
        )
        return _deleted(status)

    async def list(self, filters: Optional[DefinitionFilter] = None) -> List[Definition]:
        filters = filters or DefinitionFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if filters.category and filters.category != "all":
            params.append(filters.category)
            clauses.append(f"category = ${len(params)}")
        if filters.enabled_only:
            clauses.append("enabled")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetch(
            f"SELECT body FROM flowrun_definitions {where} ORDER BY updated_at DESC, seq DESC",
            *params,
        )
        definitions = [Definition.model_validate_json(r["body"]) for r in rows]
        return [d for d in definitions if filters.matches(d)]

    async def count(self) -> int:
        row = await self._fetchrow("SELECT COUNT(*) AS n FROM flowrun_definitions")
        return int(row["n"])


class PostgresExecutionStore(_PostgresStore, ExecutionStore):
    """Persist executions using PostgreSQL."""

    async def record(self, execution: Execution) -> None:
        await self._execute(
            """
            INSERT INTO flowrun_executions (id, definition_id, status, created_at, body)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                body = EXCLUDED.body
            """,
            execution.id,
            execution.definition_id,
            execution.status.value,
            execution.created_at,
            execution.model_dump_json(),
        )

    async def get(self, execution_id: str) -> Optional[Execution]:
        row = await self._fetchrow(
            "SELECT body FROM flowrun_executions WHERE id = $1", execution_id
        )
        return Execution.model_validate_json(row["body"]) if row else None

    async def list(self, filters: Optional[ExecutionFilter] = None) -> List[Execution]:
        filters = filters or ExecutionFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if filters.definition_id:
            params.append(filters.definition_id)
            clauses.append(f"definition_id = ${len(params)}")
        if filters.status is not None:
            params.append(filters.status.value)
            clauses.append(f"status = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(filters.limit)
        rows = await self._fetch(
            f"SELECT body FROM flowrun_executions {where} "
            f"ORDER BY created_at DESC, seq DESC LIMIT ${len(params)}",
            *params,
        )
        return [Execution.model_validate_json(r["body"]) for r in rows]

    async def count(self) -> int:
        row = await self._fetchrow("SELECT COUNT(*) AS n FROM flowrun_executions")
        return int(row["n"])


class PostgresTaskStore(_PostgresStore, TaskStore):
    """Persist tasks using PostgreSQL."""

    async def save(self, task: Task) -> None:
        await self._execute(
            """
            INSERT INTO flowrun_tasks (id, user_id, status, priority, created_at, body)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (id) DO UPDATE SET
                user_id = EXCLUDED.user_id,
                status = EXCLUDED.status,
                priority = EXCLUDED.priority,
                body = EXCLUDED.body
            """,
            task.id,
            task.user_id,
            task.status.value,
            int(task.priority),
            task.created_at,
            task.model_dump_json(),
        )

    async def get(self, task_id: str) -> Optional[Task]:
        row = await self._fetchrow("SELECT body FROM flowrun_tasks WHERE id = $1", task_id)
        return Task.model_validate_json(row["body"]) if row else None

    async def delete(self, task_id: str) -> bool:
        status = await self._execute("DELETE FROM flowrun_tasks WHERE id = $1", task_id)
        return _deleted(status)

    async def list(self, filters: Optional[TaskFilter] = None) -> List[Task]:
        filters = filters or TaskFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if filters.status:
            params.append([s.value for s in filters.status])
            clauses.append(f"status = ANY(${len(params)})")
        if filters.user_id:
            params.append(filters.user_id)
            clauses.append(f"user_id = ${len(params)}")
        if filters.priority is not None:
            params.append(int(filters.priority))
            clauses.append(f"priority = ${len(params)}")
        if filters.created_from is not None:
            params.append(filters.created_from)
            clauses.append(f"created_at >= ${len(params)}")
        if filters.created_to is not None:
            params.append(filters.created_to)
            clauses.append(f"created_at <= ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = (
            f"SELECT body FROM flowrun_tasks {where} "
            "ORDER BY priority ASC, created_at DESC, seq DESC"
        )
        if filters.limit:
            params.append(filters.limit)
            query += f" LIMIT ${len(params)}"
        rows = await self._fetch(query, *params)
        return [Task.model_validate_json(r["body"]) for r in rows]
