"""Store abstractions for definitions, executions and tasks."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from ..contracts import Definition, Execution, Task
from .models import DefinitionFilter, ExecutionFilter, TaskFilter


class DefinitionStore(Protocol):
    """Protocol for definition persistence backends."""

    async def create(self, definition: Definition) -> str:
        """Persist a new definition and return its id."""

    async def get(self, definition_id: str) -> Optional[Definition]:
        """Retrieve a definition by id."""

    async def update(
        self, definition_id: str, partial: Dict[str, Any]
    ) -> Optional[Definition]:
        """Merge ``partial`` into the stored definition."""

    async def delete(self, definition_id: str) -> bool:
        """Remove a definition; ``False`` when it did not exist."""

    async def list(self, filters: Optional[DefinitionFilter] = None) -> List[Definition]:
        """Return definitions ordered by ``updated_at`` descending."""

    async def count(self) -> int:
        """Number of stored definitions."""


class ExecutionStore(Protocol):
    """Protocol for execution persistence backends."""

    async def record(self, execution: Execution) -> None:
        """Insert or replace an execution by id."""

    async def get(self, execution_id: str) -> Optional[Execution]:
        """Retrieve an execution by id."""

    async def list(self, filters: Optional[ExecutionFilter] = None) -> List[Execution]:
        """Return executions ordered by ``created_at`` descending, truncated."""

    async def count(self) -> int:
        """Number of stored executions."""


class TaskStore(Protocol):
    """Protocol for task persistence backends."""

    async def save(self, task: Task) -> None:
        """Insert or replace a task by id."""

    async def get(self, task_id: str) -> Optional[Task]:
        """Retrieve a task by id."""

    async def delete(self, task_id: str) -> bool:
        """Remove a task; ``False`` when it did not exist."""

    async def list(self, filters: Optional[TaskFilter] = None) -> List[Task]:
        """Return tasks ordered by priority, then newest first."""
