"""Upward interface: definition CRUD, runs and catalogs wrapped in envelopes."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from .config import FlowrunConfig
from .contracts import (
    ALLOWED_TRANSITIONS,
    Definition,
    Envelope,
    Execution,
    RunStatus,
    new_id,
)
from .engine import WORKFLOW_POLICY, RunEngine
from .exceptions import (
    DisabledError,
    FlowrunError,
    NotFoundError,
    ValidationError,
)
from .executors import StepCallable, StepExecutor
from .persistence import StoreBundle, get_stores
from .persistence.models import DefinitionFilter, ExecutionFilter
from .templates import BUILTIN_TEMPLATES, get_template

logger = logging.getLogger(__name__)

_SERVER_ASSIGNED_FIELDS = ("id", "created_at", "updated_at")


def enveloped(
    func: Callable[..., Awaitable[Any]]
) -> Callable[..., Awaitable[Envelope]]:
    """Convert a coroutine's return value or request error into an Envelope."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Envelope:
        try:
            return Envelope.ok(await func(*args, **kwargs))
        except FlowrunError as exc:
            logger.info(f"{func.__name__} rejected: {exc.message}")
            return Envelope.fail(exc.message, exc.code)
        except PydanticValidationError as exc:
            message = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}"
                for err in exc.errors()
            )
            logger.info(f"{func.__name__} rejected: {message}")
            return Envelope.fail(message, ValidationError.code)

    return wrapper


def _require_id(value: Optional[str], name: str) -> str:
    if not value:
        raise ValidationError(f"{name} is required")
    return value


class WorkflowService:
    """Service exposing the run engine to a hosting API layer.

    Every public coroutine returns an :class:`Envelope`. Step failures are
    data on the returned execution, never call-level errors.
    """

    def __init__(
        self,
        stores: StoreBundle | None = None,
        engine: RunEngine | None = None,
        config: FlowrunConfig | None = None,
    ) -> None:
        self.config = config or FlowrunConfig()
        self.stores = stores or get_stores()
        self.engine = engine or RunEngine(config=self.config.engine)
        self._active: Dict[str, Execution] = {}
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Definitions
    @enveloped
    async def create_definition(
        self, data: Union[Definition, Dict[str, Any]], user_id: Optional[str] = None
    ) -> Definition:
        payload = data.model_dump() if isinstance(data, Definition) else dict(data or {})
        for key in _SERVER_ASSIGNED_FIELDS:
            payload.pop(key, None)
        if payload.get("enabled") is None:
            payload.pop("enabled", None)
        if user_id and not payload.get("created_by"):
            payload["created_by"] = user_id
        definition = Definition.model_validate({**payload, "id": new_id("wf")})
        await self.stores.definitions.create(definition)
        logger.info(f"Created definition {definition.id} ({definition.name})")
        return definition

    @enveloped
    async def get_definition(self, definition_id: Optional[str]) -> Definition:
        return await self._load_definition(definition_id)

    @enveloped
    async def update_definition(
        self, definition_id: Optional[str], updates: Dict[str, Any]
    ) -> Definition:
        definition_id = _require_id(definition_id, "definition_id")
        definition = await self.stores.definitions.update(definition_id, dict(updates))
        if definition is None:
            raise NotFoundError("Definition", definition_id)
        logger.info(f"Updated definition {definition_id}")
        return definition

    @enveloped
    async def delete_definition(self, definition_id: Optional[str]) -> Dict[str, str]:
        definition_id = _require_id(definition_id, "definition_id")
        if not await self.stores.definitions.delete(definition_id):
            raise NotFoundError("Definition", definition_id)
        logger.info(f"Deleted definition {definition_id}")
        return {"definition_id": definition_id}

    @enveloped
    async def list_definitions(
        self, filters: Union[DefinitionFilter, Dict[str, Any], None] = None
    ) -> list[Definition]:
        if not isinstance(filters, DefinitionFilter):
            filters = DefinitionFilter.model_validate(filters or {})
        return await self.stores.definitions.list(filters)

    # ------------------------------------------------------------------
    # Runs
    @enveloped
    async def start_run(
        self,
        definition_id: Optional[str],
        input: Optional[Dict[str, Any]] = None,
        user_id: str = "system",
        *,
        wait: bool = True,
        executor: StepExecutor | StepCallable | None = None,
    ) -> Execution:
        """Start a run of ``definition_id``.

        With ``wait`` the call returns once the run stops; otherwise the run
        is scheduled on the event loop and returned in ``running`` state.
        """
        definition = await self._load_definition(definition_id)
        if not definition.enabled:
            raise DisabledError(definition.id)
        if not definition.steps:
            raise ValidationError(f"Definition has no steps: {definition.id}")

        execution = Execution.for_definition(definition, input, user_id)
        execution.transition(RunStatus.RUNNING)
        await self.stores.executions.record(execution)
        self._active[execution.id] = execution

        if wait:
            await self._drive(definition, execution, executor)
        else:
            task = asyncio.create_task(self._drive(definition, execution, executor))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return execution.model_copy(deep=True)

    @enveloped
    async def get_run(self, run_id: Optional[str]) -> Execution:
        run_id = _require_id(run_id, "run_id")
        execution = await self.stores.executions.get(run_id)
        if execution is None:
            raise NotFoundError("Execution", run_id)
        return execution

    @enveloped
    async def list_runs(
        self, filters: Union[ExecutionFilter, Dict[str, Any], None] = None
    ) -> list[Execution]:
        if not isinstance(filters, ExecutionFilter):
            filters = dict(filters or {})
            filters.setdefault("limit", self.config.engine.list_limit)
            filters = ExecutionFilter.model_validate(filters)
        return await self.stores.executions.list(filters)

    @enveloped
    async def cancel_run(self, run_id: Optional[str], reason: str = "") -> Execution:
        """Cancel a run that has not completed.

        An in-flight step finishes; no further step starts.
        """
        run_id = _require_id(run_id, "run_id")
        execution = self._active.get(run_id) or await self.stores.executions.get(run_id)
        if execution is None:
            raise NotFoundError("Execution", run_id)
        execution.cancel(reason)
        await self.stores.executions.record(execution)
        logger.info(f"Cancelled run {run_id}")
        return execution.model_copy(deep=True)

    async def join(self) -> None:
        """Wait for every background run started with ``wait=False``."""
        if self._background:
            await asyncio.gather(*list(self._background))

    # ------------------------------------------------------------------
    # Catalogs
    @enveloped
    async def get_step_type_catalog(self) -> list[Dict[str, Any]]:
        return [descriptor.model_dump() for descriptor in self.engine.registry.catalog()]

    @enveloped
    async def list_templates(self) -> list[Dict[str, Any]]:
        return [template.model_dump() for template in BUILTIN_TEMPLATES]

    @enveloped
    async def create_from_template(
        self,
        template_id: Optional[str],
        overrides: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Definition:
        template_id = _require_id(template_id, "template_id")
        template = get_template(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)
        overrides = dict(overrides or {})
        if user_id:
            overrides.setdefault("created_by", user_id)
        definition = template.instantiate(overrides)
        await self.stores.definitions.create(definition)
        logger.info(f"Created definition {definition.id} from template {template_id}")
        return definition

    @enveloped
    async def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "definitions": await self.stores.definitions.count(),
            "executions": await self.stores.executions.count(),
        }

    # ------------------------------------------------------------------
    async def _load_definition(self, definition_id: Optional[str]) -> Definition:
        definition_id = _require_id(definition_id, "definition_id")
        definition = await self.stores.definitions.get(definition_id)
        if definition is None:
            raise NotFoundError("Definition", definition_id)
        return definition

    async def _drive(
        self,
        definition: Definition,
        execution: Execution,
        executor: StepExecutor | StepCallable | None,
    ) -> None:
        try:
            await self.engine.drive(
                definition,
                execution,
                WORKFLOW_POLICY,
                executor=executor,
                on_update=self.stores.executions.record,
            )
        except Exception as exc:
            logger.error(f"Run {execution.id} aborted by engine error: {exc!r}")
            if RunStatus.FAILED in ALLOWED_TRANSITIONS[execution.status]:
                execution.error = str(exc) or exc.__class__.__name__
                execution.log("error", f"Run failed: {execution.error}")
                execution.transition(RunStatus.FAILED)
        finally:
            self._active.pop(execution.id, None)
        await self.stores.executions.record(execution)
