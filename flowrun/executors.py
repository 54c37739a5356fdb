"""Step executor capability consumed by the run engine."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union, runtime_checkable

from .contracts import Definition, RunContext, Step, StepResult, StepType, utcnow
from .registry import StepRegistry, default_registry
from .registry.models import DelayConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class StepExecutor(Protocol):
    """Performs a step's actual work.

    Implementations return a :class:`StepResult` (or a dict of the same
    shape). Raised exceptions are converted into failed results by the
    engine. The engine never retries on its own.
    """

    async def execute(
        self, definition: Definition, step: Step, context: RunContext
    ) -> StepResult | dict:
        ...


StepCallable = Callable[..., Union[Awaitable[Any], Any]]


class CallableStepExecutor:
    """Adapt a plain function ``fn(definition, step, context)`` to the protocol."""

    def __init__(self, fn: StepCallable) -> None:
        self._fn = fn

    async def execute(
        self, definition: Definition, step: Step, context: RunContext
    ) -> StepResult | dict:
        result = self._fn(definition, step, context)
        if inspect.isawaitable(result):
            result = await result
        return result


class DefaultStepExecutor:
    """Simulated executor for the built-in step types.

    Produces a descriptive output for every step and honours ``delay``
    steps by sleeping for the configured number of seconds.
    """

    def __init__(self, registry: StepRegistry | None = None) -> None:
        self._registry = registry or default_registry()

    async def execute(
        self, definition: Definition, step: Step, context: RunContext
    ) -> StepResult:
        config = self._registry.parse_config(step)
        if step.type == StepType.DELAY.value and isinstance(config, DelayConfig):
            await asyncio.sleep(config.seconds)
        logger.debug(f"Simulated step {step.id} of {definition.id}")
        return StepResult.ok(
            {
                "success": True,
                "step_id": step.id,
                "step_name": step.name,
                "step_type": step.type,
                "result": f'Step "{step.label}" completed',
                "timestamp": utcnow().isoformat(),
            }
        )


def coerce_result(raw: Any) -> StepResult:
    """Normalise whatever an executor returned into a :class:`StepResult`."""
    if isinstance(raw, StepResult):
        return raw
    if isinstance(raw, dict) and "success" in raw:
        return StepResult.model_validate(raw)
    return StepResult.ok(raw)


def as_executor(executor: StepExecutor | StepCallable | None) -> StepExecutor:
    if executor is None:
        return DefaultStepExecutor()
    if isinstance(executor, StepExecutor):
        return executor
    if callable(executor):
        return CallableStepExecutor(executor)
    raise TypeError(f"Not a step executor: {executor!r}")
