"""Core data contracts for flowrun definitions and runs."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_CATEGORY, DEFAULT_ICON, DEFAULT_TRIGGERS
from .exceptions import InvalidStateError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def percent(part: int, whole: int) -> int:
    """Integer percentage rounded half up; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    return int(part * 100 / whole + 0.5)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}
)

# failed/cancelled -> pending is only reachable through a task retry.
ALLOWED_TRANSITIONS: Dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.CANCELLED}),
    RunStatus.RUNNING: frozenset(
        {
            RunStatus.WAITING,
            RunStatus.PAUSED,
            RunStatus.COMPLETED,
            RunStatus.FAILED,
            RunStatus.CANCELLED,
        }
    ),
    RunStatus.WAITING: frozenset({RunStatus.RUNNING, RunStatus.CANCELLED}),
    RunStatus.PAUSED: frozenset(
        {RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED}
    ),
    RunStatus.FAILED: frozenset({RunStatus.PENDING, RunStatus.CANCELLED}),
    RunStatus.CANCELLED: frozenset({RunStatus.PENDING, RunStatus.CANCELLED}),
    RunStatus.COMPLETED: frozenset(),
}


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepType(str, Enum):
    """Built-in step type tags."""

    AI_INVOKE = "ai-invoke"
    ANALYSIS = "analysis"
    APPROVAL = "approval"
    CONDITION = "condition"
    NOTIFY = "notify"
    WEBHOOK = "webhook"
    DATA_FETCH = "data-fetch"
    DELAY = "delay"
    END = "end"


class Step(BaseModel):
    """One typed unit of work within a definition."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = ""
    # Free tag so that unknown types surface as step failures, not as
    # definition validation errors.
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")
    parallelizable: bool = False
    estimate: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.id


def ensure_unique_step_ids(steps: List[Step]) -> List[Step]:
    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            raise ValueError(f"duplicate step id: {step.id}")
        seen.add(step.id)
    return steps


class Definition(BaseModel):
    """Reusable, ordered template of steps."""

    id: str = Field(default_factory=lambda: new_id("wf"))
    name: str = Field(min_length=1)
    description: str = ""
    category: str = DEFAULT_CATEGORY
    icon: str = DEFAULT_ICON
    steps: List[Step] = Field(default_factory=list)
    triggers: List[str] = Field(default_factory=lambda: list(DEFAULT_TRIGGERS))
    variables: List[str] = Field(default_factory=list)
    enabled: bool = True
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("steps")
    @classmethod
    def _unique_step_ids(cls, steps: List[Step]) -> List[Step]:
        return ensure_unique_step_ids(steps)

    def step_index(self, step_id: str) -> Optional[int]:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return None


class StepState(BaseModel):
    """Per-run status of a single step."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Any = None
    error: Optional[str] = None

    def reset(self) -> None:
        self.status = StepStatus.PENDING
        self.started_at = None
        self.completed_at = None
        self.result = None
        self.error = None


LogType = Literal[
    "info", "step-start", "step-complete", "step-waiting", "error", "complete"
]


class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    type: LogType
    message: str
    step_id: Optional[str] = None


class RunContext(BaseModel):
    """Data visible to steps and condition evaluation during a run."""

    variables: Dict[str, Any] = Field(default_factory=dict)
    input: Dict[str, Any] = Field(default_factory=dict)
    user_id: str = "system"
    start_time: datetime = Field(default_factory=utcnow)


class StepResult(BaseModel):
    """Outcome reported by a step executor."""

    success: bool
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: Any = None) -> "StepResult":
        return cls(success=True, output=output)

    @classmethod
    def failed(cls, error: str) -> "StepResult":
        return cls(success=False, error=error)


class RunSummary(BaseModel):
    completed_steps: int
    total_steps: int
    files: List[Any] = Field(default_factory=list)
    duration: Optional[int] = None
    text: str = ""
    metrics: Dict[str, Any] = Field(default_factory=dict)


class Execution(BaseModel):
    """Mutable record of one run of a definition."""

    id: str = Field(default_factory=lambda: new_id("exec"))
    definition_id: Optional[str] = None
    definition_name: str = ""
    status: RunStatus = RunStatus.PENDING
    current_step_index: int = 0
    current_step_id: Optional[str] = None
    steps: List[StepState] = Field(default_factory=list)
    completed_steps: int = 0
    total_steps: int = 0
    progress: int = 0
    input: Dict[str, Any] = Field(default_factory=dict)
    context: RunContext = Field(default_factory=RunContext)
    output: Dict[str, Any] = Field(default_factory=dict)
    logs: List[LogEntry] = Field(default_factory=list)
    summary: Optional[RunSummary] = None
    error: Optional[str] = None
    failed_step_id: Optional[str] = None
    user_decision: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def for_definition(
        cls,
        definition: Definition,
        input: Optional[Dict[str, Any]] = None,
        user_id: str = "system",
    ) -> "Execution":
        input = dict(input or {})
        return cls(
            definition_id=definition.id,
            definition_name=definition.name,
            current_step_id=definition.steps[0].id if definition.steps else None,
            steps=[StepState(step_id=step.id) for step in definition.steps],
            total_steps=len(definition.steps),
            input=input,
            context=RunContext(input=input, user_id=user_id),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: RunStatus) -> None:
        """Move to ``status`` following the run state machine."""
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Cannot move {self.id} from {self.status.value} to {status.value}"
            )
        logger.debug(f"{self.id}: {self.status.value} -> {status.value}")
        self.status = status
        now = utcnow()
        if status is RunStatus.RUNNING and self.started_at is None:
            self.started_at = now
        if status in TERMINAL_STATUSES and self.completed_at is None:
            self.completed_at = now

    def log(self, type: LogType, message: str, step_id: Optional[str] = None) -> None:
        self.logs.append(LogEntry(type=type, message=message, step_id=step_id))

    def step_state(self, step_id: str) -> StepState:
        for state in self.steps:
            if state.step_id == step_id:
                return state
        state = StepState(step_id=step_id)
        self.steps.append(state)
        return state

    def update_progress(self) -> None:
        self.progress = percent(self.completed_steps, self.total_steps)

    def cancel(self, reason: str = "") -> None:
        """Cancel the run and every step that has not completed.

        Raises:
            InvalidStateError: the run already completed.
        """
        if self.status is RunStatus.COMPLETED:
            raise InvalidStateError(f"Completed run cannot be cancelled: {self.id}")
        self.transition(RunStatus.CANCELLED)
        for state in self.steps:
            if state.status is not StepStatus.COMPLETED:
                state.status = StepStatus.CANCELLED
        self.log("info", f"Cancelled: {reason}" if reason else "Cancelled")


class Priority(IntEnum):
    """Task urgency; lower numbers are more urgent."""

    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


class Goal(BaseModel):
    text: str = ""
    type: Optional[str] = None
    summary: Optional[str] = None


class Task(Execution):
    """Execution variant with its own plan, priority and dependency gating."""

    id: str = Field(default_factory=lambda: new_id("task"))
    goal: Goal = Field(default_factory=Goal)
    plan: List[Step] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    deadline: Optional[datetime] = None
    estimated_duration: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    parent_task_id: Optional[str] = None
    channel: str = "web"
    session_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    constraints: Dict[str, Any] = Field(default_factory=dict)
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("plan")
    @classmethod
    def _unique_plan_ids(cls, plan: List[Step]) -> List[Step]:
        return ensure_unique_step_ids(plan)

    @property
    def user_id(self) -> str:
        return self.context.user_id

    def as_definition(self) -> Definition:
        """Wrap the plan in a transient definition for the run engine."""
        return Definition(
            id=self.id,
            name=self.goal.summary or self.goal.text or self.id,
            steps=self.plan,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def touch(self) -> None:
        self.updated_at = utcnow()

    def cancel(self, reason: str = "") -> None:
        super().cancel(reason)
        self.cancelled_at = utcnow()
        self.cancel_reason = reason
        self.touch()

    def reset_for_retry(self) -> None:
        """Return a failed or cancelled task to a pristine pending state."""
        if self.status not in (RunStatus.FAILED, RunStatus.CANCELLED):
            raise InvalidStateError(
                f"Only failed or cancelled tasks can be retried: {self.id} is {self.status.value}"
            )
        self.transition(RunStatus.PENDING)
        self.started_at = None
        self.completed_at = None
        self.cancelled_at = None
        self.cancel_reason = None
        self.error = None
        self.failed_step_id = None
        self.user_decision = None
        for state in self.steps:
            state.reset()
        self.completed_steps = 0
        self.progress = 0
        self.current_step_index = 0
        self.current_step_id = self.plan[0].id if self.plan else None
        self.output = {}
        self.context.variables = {}
        self.summary = None
        self.log("info", "Reset for retry")
        self.touch()


class TaskStatistics(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[int, int] = Field(default_factory=dict)
    completed_today: int = 0
    average_duration: int = 0
    success_rate: int = 0


class Envelope(BaseModel):
    """Uniform response of the upward interface."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "Envelope":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str = "error") -> "Envelope":
        return cls(success=False, error=error, error_code=code)
