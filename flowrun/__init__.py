"""Flowrun: definition-driven workflow and task run engine."""

from .config import EngineConfig, FlowrunConfig, load_config
from .contracts import (
    Definition,
    Envelope,
    Execution,
    Priority,
    RunContext,
    RunStatus,
    Step,
    StepResult,
    StepStatus,
    Task,
)
from .engine import RunEngine
from .executors import DefaultStepExecutor, StepExecutor
from .persistence import StoreBundle, get_stores
from .registry import StepRegistry, default_registry
from .service import WorkflowService
from .tasks import TaskManager

__version__ = "0.1.0"
__all__ = [
    "DefaultStepExecutor",
    "Definition",
    "EngineConfig",
    "Envelope",
    "Execution",
    "FlowrunConfig",
    "Priority",
    "RunContext",
    "RunEngine",
    "RunStatus",
    "Step",
    "StepExecutor",
    "StepRegistry",
    "StepResult",
    "StepStatus",
    "StoreBundle",
    "Task",
    "TaskManager",
    "WorkflowService",
    "default_registry",
    "get_stores",
    "load_config",
]
