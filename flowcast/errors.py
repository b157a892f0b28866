"""Exception hierarchy for flowcast."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .validation import ValidationError


class FlowcastError(Exception):
    """Base class for all flowcast errors."""


class WorkflowValidationError(FlowcastError):
    """Raised when a step graph fails validation and cannot be stored."""

    def __init__(self, errors: Iterable["ValidationError"]) -> None:
        self.errors = list(errors)
        summary = "; ".join(e.message for e in self.errors) or "invalid workflow"
        super().__init__(f"Workflow validation failed: {summary}")


class WorkflowNotFoundError(FlowcastError, KeyError):
    """Raised for operations on an unknown or deleted workflow id."""

    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class WorkflowStateError(FlowcastError):
    """Raised when a workflow is not in a state that allows the operation."""

    def __init__(self, workflow_id: str, status: str, message: str) -> None:
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(message)


class WorkflowAlreadyRunningError(WorkflowStateError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            workflow_id, "running", f"Workflow {workflow_id} is already running"
        )


class WorkflowAlreadyFinishedError(WorkflowStateError):
    def __init__(self, workflow_id: str, status: str) -> None:
        super().__init__(
            workflow_id,
            status,
            f"Workflow {workflow_id} already finished with status {status}",
        )


class HandlerError(FlowcastError):
    """A step handler could not run or did not finish successfully."""


class UnknownStepKindError(HandlerError):
    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"No handler registered for step kind '{kind}'")


class StepParamsError(HandlerError):
    """Step params do not match the parameter model registered for the kind."""


class StepTimeoutError(HandlerError):
    def __init__(self, step_id: str, timeout: float) -> None:
        self.step_id = step_id
        self.timeout = timeout
        super().__init__(f"Step {step_id} timed out after {timeout}s")


class TransportConnectionError(FlowcastError):
    """Raised by transports when the live channel cannot be opened."""
