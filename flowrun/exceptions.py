"""Error taxonomy shared by the engine, stores and service layer."""

from __future__ import annotations


class FlowrunError(Exception):
    """Base class for request-level errors."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FlowrunError):
    """Missing or invalid request fields."""

    code = "validation"


class NotFoundError(FlowrunError):
    """Unknown definition, run, task or step id."""

    code = "not_found"

    def __init__(self, kind: str, identifier: str | None) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class DisabledError(FlowrunError):
    """The definition exists but cannot start new runs."""

    code = "disabled"

    def __init__(self, definition_id: str) -> None:
        super().__init__(f"Definition is disabled: {definition_id}")
        self.definition_id = definition_id


class InvalidStateError(FlowrunError):
    """Requested lifecycle change is not allowed from the current status."""

    code = "invalid_state"


class StepExecutionError(FlowrunError):
    """A step failed. Recorded on the run, never raised past the run loop."""

    code = "step_failed"

    def __init__(self, step_id: str, message: str) -> None:
        super().__init__(message)
        self.step_id = step_id


class UnknownStepTypeError(StepExecutionError):
    """The step's type tag has no registry entry."""

    def __init__(self, step_id: str, step_type: str) -> None:
        super().__init__(step_id, f"unknown step type: {step_type}")
        self.step_type = step_type
