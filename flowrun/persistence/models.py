"""Query filters and merge helpers shared by every store backend."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field, field_validator

from ..constants import DEFAULT_LIST_LIMIT
from ..contracts import Definition, Execution, Priority, RunStatus, Task, utcnow

IMMUTABLE_DEFINITION_FIELDS = frozenset({"id", "created_at", "created_by"})


class DefinitionFilter(BaseModel):
    """Filters for listing definitions. ``category="all"`` disables the filter."""

    category: Optional[str] = None
    enabled_only: bool = False
    search_text: Optional[str] = None

    def matches(self, definition: Definition) -> bool:
        if self.category and self.category != "all":
            if definition.category != self.category:
                return False
        if self.enabled_only and not definition.enabled:
            return False
        if self.search_text:
            needle = self.search_text.lower()
            if (
                needle not in definition.name.lower()
                and needle not in definition.description.lower()
            ):
                return False
        return True


class ExecutionFilter(BaseModel):
    definition_id: Optional[str] = None
    status: Optional[RunStatus] = None
    limit: int = Field(default=DEFAULT_LIST_LIMIT, ge=1)

    def matches(self, execution: Execution) -> bool:
        if self.definition_id and execution.definition_id != self.definition_id:
            return False
        if self.status is not None and execution.status is not self.status:
            return False
        return True


class TaskFilter(BaseModel):
    """Filters for listing tasks; ``status`` accepts one status or several."""

    status: List[RunStatus] = Field(default_factory=list)
    user_id: Optional[str] = None
    priority: Optional[Priority] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)

    @field_validator("status", mode="before")
    @classmethod
    def _status_as_list(cls, v: Union[None, str, RunStatus, Sequence[Any]]) -> Any:
        if v is None:
            return []
        if isinstance(v, (str, RunStatus)):
            return [v]
        return list(v)

    def matches(self, task: Task) -> bool:
        if self.status and task.status not in self.status:
            return False
        if self.user_id and task.user_id != self.user_id:
            return False
        if self.priority is not None and task.priority != self.priority:
            return False
        if self.created_from and task.created_at < self.created_from:
            return False
        if self.created_to and task.created_at > self.created_to:
            return False
        return True


def merge_definition(current: Definition, partial: Dict[str, Any]) -> Definition:
    """Apply ``partial`` to ``current`` and re-validate the result.

    Identity fields are kept; ``updated_at`` is bumped.

    Raises:
        pydantic.ValidationError: the merged definition is invalid.
    """
    updates = {
        key: value
        for key, value in partial.items()
        if key not in IMMUTABLE_DEFINITION_FIELDS
    }
    merged = {**current.model_dump(), **updates, "updated_at": utcnow()}
    return Definition.model_validate(merged)


def sort_definitions(definitions: List[Definition]) -> List[Definition]:
    """Newest ``updated_at`` first; ties keep the most recently stored first."""
    return sorted(reversed(definitions), key=lambda d: d.updated_at, reverse=True)


def sort_executions(executions: List[Execution]) -> List[Execution]:
    return sorted(reversed(executions), key=lambda e: e.created_at, reverse=True)


def sort_tasks(tasks: List[Task]) -> List[Task]:
    """Priority ascending, then ``created_at`` descending."""
    by_created = sorted(reversed(tasks), key=lambda t: t.created_at, reverse=True)
    return sorted(by_created, key=lambda t: int(t.priority))
