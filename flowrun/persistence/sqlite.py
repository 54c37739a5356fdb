"""SQLite implementation of the flowrun stores."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

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
    CREATE TABLE IF NOT EXISTS definitions (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        category TEXT NOT NULL,
        enabled INTEGER NOT NULL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL,
        body TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS executions (
        id TEXT PRIMARY KEY,
        definition_id TEXT,
        status TEXT NOT NULL,
        created_at REAL NOT NULL,
        body TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        status TEXT NOT NULL,
        priority INTEGER NOT NULL,
        created_at REAL NOT NULL,
        body TEXT NOT NULL
    )
    """,
)


class _SQLiteStore:
    """Connection and query helpers shared by the SQLite stores."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        for statement in _SCHEMA:
            cur.execute(statement)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()


class SQLiteDefinitionStore(_SQLiteStore, DefinitionStore):
    """Persist definitions using SQLite."""

    async def _write(self, definition: Definition) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO definitions (id, name, category, enabled, created_at, updated_at, body)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                category = excluded.category,
                enabled = excluded.enabled,
                updated_at = excluded.updated_at,
                body = excluded.body
            """,
            definition.id,
            definition.name,
            definition.category,
            int(definition.enabled),
            definition.created_at.timestamp(),
            definition.updated_at.timestamp(),
            definition.model_dump_json(),
        )

    async def create(self, definition: Definition) -> str:
        await self._write(definition)
        return definition.id

    async def get(self, definition_id: str) -> Optional[Definition]:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM definitions WHERE id = ?", definition_id
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
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM definitions WHERE id = ?", definition_id
        )
        return deleted > 0

    async def list(self, filters: Optional[DefinitionFilter] = None) -> List[Definition]:
        filters = filters or DefinitionFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if filters.category and filters.category != "all":
            clauses.append("category = ?")
            params.append(filters.category)
        if filters.enabled_only:
            clauses.append("enabled = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT body FROM definitions {where} ORDER BY updated_at DESC, rowid DESC",
            *params,
        )
        definitions = [Definition.model_validate_json(r["body"]) for r in rows]
        # Substring search runs on the decoded models.
        return [d for d in definitions if filters.matches(d)]

    async def count(self) -> int:
        row = await asyncio.to_thread(self._fetchone, "SELECT COUNT(*) AS n FROM definitions")
        return int(row["n"])


class SQLiteExecutionStore(_SQLiteStore, ExecutionStore):
    """Persist executions using SQLite."""

    async def record(self, execution: Execution) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO executions (id, definition_id, status, created_at, body)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                body = excluded.body
            """,
            execution.id,
            execution.definition_id,
            execution.status.value,
            execution.created_at.timestamp(),
            execution.model_dump_json(),
        )

    async def get(self, execution_id: str) -> Optional[Execution]:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM executions WHERE id = ?", execution_id
        )
        return Execution.model_validate_json(row["body"]) if row else None

    async def list(self, filters: Optional[ExecutionFilter] = None) -> List[Execution]:
        filters = filters or ExecutionFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if filters.definition_id:
            clauses.append("definition_id = ?")
            params.append(filters.definition_id)
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(filters.status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT body FROM executions {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
            *params,
            filters.limit,
        )
        return [Execution.model_validate_json(r["body"]) for r in rows]

    async def count(self) -> int:
        row = await asyncio.to_thread(self._fetchone, "SELECT COUNT(*) AS n FROM executions")
        return int(row["n"])


class SQLiteTaskStore(_SQLiteStore, TaskStore):
    """Persist tasks using SQLite."""

    async def save(self, task: Task) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO tasks (id, user_id, status, priority, created_at, body)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                user_id = excluded.user_id,
                status = excluded.status,
                priority = excluded.priority,
                body = excluded.body
            """,
            task.id,
            task.user_id,
            task.status.value,
            int(task.priority),
            task.created_at.timestamp(),
            task.model_dump_json(),
        )

    async def get(self, task_id: str) -> Optional[Task]:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM tasks WHERE id = ?", task_id
        )
        return Task.model_validate_json(row["body"]) if row else None

    async def delete(self, task_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM tasks WHERE id = ?", task_id
        )
        return deleted > 0

    async def list(self, filters: Optional[TaskFilter] = None) -> List[Task]:
        filters = filters or TaskFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if filters.status:
            clauses.append(f"status IN ({', '.join('?' for _ in filters.status)})")
            params.extend(s.value for s in filters.status)
        if filters.user_id:
            clauses.append("user_id = ?")
            params.append(filters.user_id)
        if filters.priority is not None:
            clauses.append("priority = ?")
            params.append(int(filters.priority))
        if filters.created_from is not None:
            clauses.append("created_at >= ?")
            params.append(filters.created_from.timestamp())
        if filters.created_to is not None:
            clauses.append("created_at <= ?")
            params.append(filters.created_to.timestamp())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"SELECT body FROM tasks {where} ORDER BY priority ASC, created_at DESC, rowid DESC"
        if filters.limit:
            query += " LIMIT ?"
            params.append(filters.limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [Task.model_validate_json(r["body"]) for r in rows]
