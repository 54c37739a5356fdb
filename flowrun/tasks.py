"""Task manager: the dependency-gated, pausable variant of the run engine."""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Literal, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .contracts import (
    Definition,
    Goal,
    Priority,
    RunContext,
    RunStatus,
    Step,
    StepResult,
    StepState,
    Task,
    TaskStatistics,
    percent,
    utcnow,
)
from .engine import TASK_POLICY, RunEngine
from .exceptions import InvalidStateError, NotFoundError, ValidationError
from .executors import StepCallable, StepExecutor
from .persistence import get_stores
from .persistence.models import TaskFilter
from .persistence.repository import TaskStore

logger = logging.getLogger(__name__)

Decision = Literal["continue", "abort"]

# Fields owned by the lifecycle methods rather than ``update_task``.
_PROTECTED_FIELDS = frozenset(
    {
        "id",
        "status",
        "plan",
        "steps",
        "completed_steps",
        "total_steps",
        "progress",
        "created_at",
        "started_at",
        "completed_at",
        "output",
        "logs",
        "context",
        "user_decision",
        "error",
        "failed_step_id",
        "cancelled_at",
        "cancel_reason",
    }
)


class _TaskCallableExecutor:
    """Adapt ``fn(task, step)`` to the step executor protocol."""

    def __init__(self, task: Task, fn: StepCallable) -> None:
        self._task = task
        self._fn = fn

    async def execute(
        self, definition: Definition, step: Step, context: RunContext
    ) -> StepResult | dict:
        result = self._fn(self._task, step)
        if inspect.isawaitable(result):
            result = await result
        return result


class TaskManager:
    """Create, run and manage tasks.

    Errors are raised as :mod:`flowrun.exceptions` types. Step failures
    pause the task until the caller decides with :meth:`resolve_task`.
    """

    def __init__(
        self,
        store: TaskStore | None = None,
        engine: RunEngine | None = None,
        executor: StepExecutor | StepCallable | None = None,
    ) -> None:
        self.store = store or get_stores().tasks
        self.engine = engine or RunEngine()
        self._executor = executor
        self._active: Dict[str, Task] = {}

    # ------------------------------------------------------------------
    async def create_task(
        self,
        goal: Union[Goal, Dict[str, Any], str],
        plan: Optional[Iterable[Union[Step, Dict[str, Any]]]] = None,
        *,
        priority: Union[Priority, int] = Priority.MEDIUM,
        deadline: Optional[datetime] = None,
        dependencies: Optional[list[str]] = None,
        parent_task_id: Optional[str] = None,
        user_id: str = "default",
        channel: str = "web",
        session_id: Optional[str] = None,
        tags: Optional[list[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        constraints: Optional[Dict[str, Any]] = None,
        estimated_duration: Optional[str] = None,
    ) -> Task:
        try:
            if isinstance(goal, str):
                goal = Goal(text=goal)
            elif not isinstance(goal, Goal):
                goal = Goal.model_validate(goal)
            steps = [s if isinstance(s, Step) else Step.model_validate(s) for s in plan or []]
            task = Task(
                goal=goal,
                plan=steps,
                steps=[StepState(step_id=s.id) for s in steps],
                total_steps=len(steps),
                current_step_id=steps[0].id if steps else None,
                priority=Priority(priority),
                deadline=deadline,
                estimated_duration=estimated_duration,
                dependencies=dependencies or [],
                parent_task_id=parent_task_id,
                channel=channel,
                session_id=session_id,
                tags=tags or [],
                metadata=metadata or {},
                constraints=constraints or {},
                context=RunContext(user_id=user_id),
            )
        except (PydanticValidationError, ValueError) as exc:
            raise ValidationError(f"Invalid task: {exc}") from exc

        await self.store.save(task)
        logger.info(f"Created task {task.id} with {task.total_steps} step(s)")
        return task

    async def get_task(self, task_id: Optional[str]) -> Task:
        if not task_id:
            raise ValidationError("task_id is required")
        task = self._active.get(task_id) or await self.store.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def list_tasks(
        self, filters: Union[TaskFilter, Dict[str, Any], None] = None
    ) -> list[Task]:
        if not isinstance(filters, TaskFilter):
            filters = TaskFilter.model_validate(filters or {})
        return await self.store.list(filters)

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> Task:
        protected = _PROTECTED_FIELDS.intersection(updates)
        if protected:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(protected))}")
        if task_id in self._active:
            raise InvalidStateError(f"Task is executing: {task_id}")
        task = await self.get_task(task_id)
        try:
            updated = Task.model_validate({**task.model_dump(), **updates, "updated_at": utcnow()})
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid task update: {exc}") from exc
        await self.store.save(updated)
        return updated

    async def delete_task(self, task_id: str) -> None:
        if task_id in self._active:
            raise InvalidStateError(f"Task is executing: {task_id}")
        if not await self.store.delete(task_id):
            raise NotFoundError("Task", task_id)
        logger.info(f"Deleted task {task_id}")

    # ------------------------------------------------------------------
    # Lifecycle
    async def start_task(self, task_id: str) -> Task:
        task = await self.get_task(task_id)
        if task.status is not RunStatus.PENDING:
            raise InvalidStateError(
                f"Task cannot be started from {task.status.value}: {task_id}"
            )
        task.transition(RunStatus.RUNNING)
        task.log("info", "Task started")
        task.touch()
        await self.store.save(task)
        return task

    async def execute_task(
        self, task_id: str, executor: StepExecutor | StepCallable | None = None
    ) -> Task:
        """Run the task's plan once, honouring step dependencies.

        Steps whose dependencies are not completed are left waiting; calling
        this again on a waiting task re-scans the plan.
        """
        task = await self.get_task(task_id)
        if task.status not in (RunStatus.PENDING, RunStatus.RUNNING, RunStatus.WAITING):
            raise InvalidStateError(
                f"Task cannot be executed from {task.status.value}: {task_id}"
            )
        return await self._run(task, executor)

    async def resolve_task(
        self,
        task_id: str,
        decision: Decision,
        executor: StepExecutor | StepCallable | None = None,
    ) -> Task:
        """Answer the decision a paused task is waiting for.

        ``continue`` re-executes the failed step and carries on; ``abort``
        fails the task.
        """
        task = await self.get_task(task_id)
        if task.status is not RunStatus.PAUSED:
            raise InvalidStateError(f"Task is not awaiting a decision: {task_id}")
        if decision == "abort":
            task.user_decision = decision
            task.log("info", "Aborted after failed step")
            task.transition(RunStatus.FAILED)
            task.touch()
            await self.store.save(task)
            return task
        if decision != "continue":
            raise ValidationError(f"Unknown decision: {decision}")

        if task.failed_step_id:
            task.step_state(task.failed_step_id).reset()
        task.error = None
        task.failed_step_id = None
        task.log("info", "Continuing after failed step")
        return await self._run(task, executor)

    async def cancel_task(self, task_id: str, reason: str = "") -> Task:
        """Cancel a task that has not completed.

        An in-flight step is not interrupted; no further step starts.
        """
        task = await self.get_task(task_id)
        task.cancel(reason)
        await self.store.save(task)
        logger.info(f"Cancelled task {task_id}")
        return task

    async def retry_task(self, task_id: str) -> Task:
        task = await self.get_task(task_id)
        task.reset_for_retry()
        await self.store.save(task)
        logger.info(f"Task {task_id} reset for retry")
        return task

    # ------------------------------------------------------------------
    async def get_statistics(self, user_id: Optional[str] = None) -> TaskStatistics:
        tasks = await self.store.list(TaskFilter(user_id=user_id))
        stats = TaskStatistics(total=len(tasks))
        stats.by_status = {
            status.value: sum(1 for t in tasks if t.status is status) for status in RunStatus
        }
        stats.by_priority = {
            int(priority): sum(1 for t in tasks if t.priority == priority)
            for priority in Priority
        }

        midnight = datetime.now().astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
        completed = [t for t in tasks if t.status is RunStatus.COMPLETED]
        stats.completed_today = sum(
            1 for t in completed if t.completed_at is not None and t.completed_at >= midnight
        )

        durations = [
            (t.completed_at - t.started_at).total_seconds()
            for t in completed
            if t.started_at is not None and t.completed_at is not None
        ]
        if durations:
            stats.average_duration = int(sum(durations) / len(durations) + 0.5)

        failed = stats.by_status[RunStatus.FAILED.value]
        stats.success_rate = percent(len(completed), len(completed) + failed)
        return stats

    # ------------------------------------------------------------------
    async def _run(
        self, task: Task, executor: StepExecutor | StepCallable | None
    ) -> Task:
        if task.id in self._active:
            raise InvalidStateError(f"Task is already executing: {task.id}")
        step_executor = executor or self._executor
        if step_executor is not None and not hasattr(step_executor, "execute"):
            step_executor = _TaskCallableExecutor(task, step_executor)

        self._active[task.id] = task
        try:
            await self.engine.drive(
                task.as_definition(),
                task,
                TASK_POLICY,
                executor=step_executor,
                on_update=self._save,
            )
        finally:
            self._active.pop(task.id, None)
        await self._save(task)
        return task

    async def _save(self, task: Task) -> None:
        task.touch()
        await self.store.save(task)
