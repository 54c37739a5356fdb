"""In-memory implementation of the flowrun stores."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..contracts import Definition, Execution, Task
from .models import (
    DefinitionFilter,
    ExecutionFilter,
    TaskFilter,
    merge_definition,
    sort_definitions,
    sort_executions,
    sort_tasks,
)
from .repository import DefinitionStore, ExecutionStore, TaskStore


class InMemoryDefinitionStore(DefinitionStore):
    """Store definitions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Copies are stored and returned so
    callers cannot mutate stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, Definition] = {}

    async def create(self, definition: Definition) -> str:
        self._definitions[definition.id] = definition.model_copy(deep=True)
        return definition.id

    async def get(self, definition_id: str) -> Optional[Definition]:
        definition = self._definitions.get(definition_id)
        return definition.model_copy(deep=True) if definition else None

    async def update(
        self, definition_id: str, partial: Dict[str, Any]
    ) -> Optional[Definition]:
        current = self._definitions.get(definition_id)
        if current is None:
            return None
        merged = merge_definition(current, partial)
        self._definitions[definition_id] = merged
        return merged.model_copy(deep=True)

    async def delete(self, definition_id: str) -> bool:
        return self._definitions.pop(definition_id, None) is not None

    async def list(self, filters: Optional[DefinitionFilter] = None) -> List[Definition]:
        filters = filters or DefinitionFilter()
        matched = [d for d in self._definitions.values() if filters.matches(d)]
        return [d.model_copy(deep=True) for d in sort_definitions(matched)]

    async def count(self) -> int:
        return len(self._definitions)


class InMemoryExecutionStore(ExecutionStore):
    """Store execution snapshots in local memory."""

    def __init__(self) -> None:
        self._executions: Dict[str, Execution] = {}

    async def record(self, execution: Execution) -> None:
        self._executions[execution.id] = execution.model_copy(deep=True)

    async def get(self, execution_id: str) -> Optional[Execution]:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list(self, filters: Optional[ExecutionFilter] = None) -> List[Execution]:
        filters = filters or ExecutionFilter()
        matched = [e for e in self._executions.values() if filters.matches(e)]
        return [e.model_copy(deep=True) for e in sort_executions(matched)[: filters.limit]]

    async def count(self) -> int:
        return len(self._executions)


class InMemoryTaskStore(TaskStore):
    """Store tasks in local memory."""

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}

    async def save(self, task: Task) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def get(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def delete(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    async def list(self, filters: Optional[TaskFilter] = None) -> List[Task]:
        filters = filters or TaskFilter()
        matched = sort_tasks([t for t in self._tasks.values() if filters.matches(t)])
        if filters.limit:
            matched = matched[: filters.limit]
        return [t.model_copy(deep=True) for t in matched]
