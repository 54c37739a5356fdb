"""Run engine: drives a definition's steps through the run state machine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from .conditions import select_branch
from .config import EngineConfig
from .constants import USER_DECISION_REQUIRED
from .contracts import (
    Definition,
    Execution,
    RunStatus,
    RunSummary,
    Step,
    StepResult,
    StepState,
    StepStatus,
    StepType,
    percent,
    utcnow,
)
from .exceptions import UnknownStepTypeError
from .executors import StepCallable, StepExecutor, as_executor, coerce_result
from .registry import StepRegistry, default_registry
from .registry.models import ConditionConfig, StepConfig

logger = logging.getLogger(__name__)

UpdateHook = Callable[[Execution], Awaitable[None]]


@dataclass(frozen=True)
class RunPolicy:
    """Switches that distinguish the workflow and task variants."""

    enforce_dependencies: bool = False
    pause_on_failure: bool = False
    skip_completed: bool = False


WORKFLOW_POLICY = RunPolicy()
TASK_POLICY = RunPolicy(
    enforce_dependencies=True, pause_on_failure=True, skip_completed=True
)


class RunEngine:
    """Sequential, cooperative step driver.

    Each step executor call is awaited before the next step is considered.
    Branching is expressed as an explicit next-step pointer read by the
    driver loop. Step failures are recorded on the run and never raised.
    """

    def __init__(
        self,
        registry: StepRegistry | None = None,
        executor: StepExecutor | StepCallable | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.registry = registry or default_registry()
        self.executor = as_executor(executor)
        self.config = config or EngineConfig()

    async def drive(
        self,
        definition: Definition,
        run: Execution,
        policy: RunPolicy = WORKFLOW_POLICY,
        *,
        executor: StepExecutor | StepCallable | None = None,
        on_update: UpdateHook | None = None,
    ) -> Execution:
        """Run ``definition`` against ``run`` until it stops.

        Returns the same ``run`` object, left completed, failed, paused,
        waiting or cancelled.
        """
        step_executor = as_executor(executor) if executor is not None else self.executor
        # Treated as read-only for the whole run.
        definition = definition.model_copy(deep=True)
        steps = definition.steps

        if run.status is RunStatus.CANCELLED:
            logger.info(f"Run {run.id} was cancelled before it started")
            return run
        if run.status is not RunStatus.RUNNING:
            run.transition(RunStatus.RUNNING)
        run.total_steps = len(steps)
        run.user_decision = None
        run.log("info", f"Run started: {definition.name}")
        logger.info(f"Run {run.id} started for definition {definition.id}")
        await self._notify(on_update, run)

        pointer: Optional[int] = 0
        # Step ids run in this pass; only repeat executions count against max_steps.
        executed: set[str] = set()
        revisits = 0
        while pointer is not None and pointer < len(steps):
            if run.status is RunStatus.CANCELLED:
                logger.info(f"Run {run.id} cancelled; no further steps start")
                return run

            step = steps[pointer]
            state = run.step_state(step.id)
            next_pointer: Optional[int] = pointer + 1

            if policy.skip_completed and state.status is StepStatus.COMPLETED:
                pointer = next_pointer
                continue

            revisit = step.id in executed
            if revisit and revisits >= self.config.max_steps:
                self._fail_run(
                    run,
                    f"step limit exceeded ({self.config.max_steps})",
                    step.id,
                    policy,
                )
                await self._notify(on_update, run)
                return run

            if policy.enforce_dependencies and not self._dependencies_met(step, run):
                state.status = StepStatus.WAITING
                run.log("step-waiting", f"Step waiting on dependencies: {step.label}", step.id)
                pointer = next_pointer
                continue

            executed.add(step.id)
            if revisit:
                revisits += 1
            run.current_step_index = pointer
            run.current_step_id = step.id
            state.status = StepStatus.RUNNING
            state.started_at = utcnow()
            state.error = None
            run.log("step-start", f"Step started: {step.label}", step.id)

            result, config = await self._execute_step(step_executor, definition, step, run)

            if run.status is RunStatus.CANCELLED:
                logger.info(f"Run {run.id} cancelled while {step.id} was in flight")
                return run

            if not result.success:
                error = result.error or "step failed"
                state.status = StepStatus.FAILED
                state.completed_at = utcnow()
                state.error = error
                logger.error(f"Step {step.id} of run {run.id} failed: {error}")
                self._fail_run(run, error, step.id, policy)
                await self._notify(on_update, run)
                return run

            output = result.output
            branch = None
            if step.type == StepType.CONDITION.value and isinstance(config, ConditionConfig):
                branch = select_branch(config.conditions, run.context)
                if branch is not None and isinstance(output, dict):
                    output = {
                        **output,
                        "condition": branch.model_dump(),
                        "next_step": branch.next_step,
                    }

            self._complete_step(run, step, state, output)

            if branch is not None:
                if branch.ends_run:
                    run.log("info", f"Branch to end from {step.label}", step.id)
                    self._complete_run(run)
                    await self._notify(on_update, run)
                    return run
                target = definition.step_index(branch.next_step)
                if target is not None:
                    next_pointer = target
                elif self.config.dangling_branch == "fail":
                    self._fail_run(
                        run, f"unknown branch target: {branch.next_step}", step.id, policy
                    )
                    await self._notify(on_update, run)
                    return run
                else:
                    logger.warning(
                        f"Run {run.id}: branch target {branch.next_step!r} not in "
                        f"definition {definition.id}; continuing sequentially"
                    )

            await self._notify(on_update, run)
            pointer = next_pointer

        if run.status is RunStatus.CANCELLED:
            return run

        waiting = [s.step_id for s in run.steps if s.status is StepStatus.WAITING]
        if waiting:
            run.transition(RunStatus.WAITING)
            run.log("info", f"Run waiting on {len(waiting)} step(s): {', '.join(waiting)}")
            logger.info(f"Run {run.id} left waiting on {waiting}")
        else:
            self._complete_run(run)
        await self._notify(on_update, run)
        return run

    # ------------------------------------------------------------------
    async def _execute_step(
        self,
        executor: StepExecutor,
        definition: Definition,
        step: Step,
        run: Execution,
    ) -> tuple[StepResult, StepConfig | None]:
        try:
            config = self.registry.parse_config(step)
        except UnknownStepTypeError as exc:
            return StepResult.failed(exc.message), None
        except PydanticValidationError as exc:
            return (
                StepResult.failed(
                    f"invalid config for step {step.id}: {exc.error_count()} error(s)"
                ),
                None,
            )

        try:
            raw = await executor.execute(definition, step, run.context)
            return coerce_result(raw), config
        except Exception as exc:
            logger.error(f"Executor raised on step {step.id} of run {run.id}: {exc!r}")
            return StepResult.failed(str(exc) or exc.__class__.__name__), config

    @staticmethod
    def _dependencies_met(step: Step, run: Execution) -> bool:
        statuses = {state.step_id: state.status for state in run.steps}
        return all(statuses.get(dep) is StepStatus.COMPLETED for dep in step.depends_on)

    @staticmethod
    def _complete_step(run: Execution, step: Step, state: StepState, output: Any) -> None:
        state.status = StepStatus.COMPLETED
        state.completed_at = utcnow()
        state.result = output
        run.context.variables = {**run.context.variables, step.id: output}
        run.output[step.id] = output
        # Counted from states so that steps revisited by a branch count once.
        run.completed_steps = sum(1 for s in run.steps if s.status is StepStatus.COMPLETED)
        run.update_progress()
        run.log("step-complete", f"Step completed: {step.label}", step.id)
        logger.info(f"Step {step.id} of run {run.id} completed")

    @staticmethod
    def _fail_run(run: Execution, error: str, step_id: str, policy: RunPolicy) -> None:
        run.error = error
        run.failed_step_id = step_id
        run.log("error", f"Run failed: {error}", step_id)
        if policy.pause_on_failure:
            run.transition(RunStatus.PAUSED)
            run.user_decision = USER_DECISION_REQUIRED
        else:
            run.transition(RunStatus.FAILED)

    @staticmethod
    def _complete_run(run: Execution) -> None:
        run.transition(RunStatus.COMPLETED)
        run.progress = 100
        run.summary = build_summary(run)
        run.log("complete", "Run completed")
        logger.info(f"Run {run.id} completed")

    @staticmethod
    async def _notify(hook: UpdateHook | None, run: Execution) -> None:
        if hook is not None:
            await hook(run)


def build_summary(run: Execution) -> RunSummary:
    """Aggregate completed step outputs into a :class:`RunSummary`."""
    results = [
        state.result for state in run.steps if state.status is StepStatus.COMPLETED
    ]
    files: list[Any] = []
    for result in results:
        if isinstance(result, dict) and isinstance(result.get("files"), list):
            files.extend(result["files"])

    duration = None
    if run.started_at is not None:
        end = run.completed_at or utcnow()
        duration = int(round((end - run.started_at).total_seconds()))

    return RunSummary(
        completed_steps=run.completed_steps,
        total_steps=run.total_steps,
        files=files,
        duration=duration,
        text=f"Run finished: {run.completed_steps} of {run.total_steps} step(s) completed",
        metrics={
            "progress_percent": run.progress,
            "success_rate": percent(run.completed_steps, run.total_steps),
        },
    )
