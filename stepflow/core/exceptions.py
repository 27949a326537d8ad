"""Custom exception types for the workflow engine and API layers."""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base app exception."""


class WorkflowError(AppError):
    """Base class for workflow definition and execution failures."""


class EmptyWorkflow(WorkflowError):
    """No steps to run. Rejected before execution starts."""

    def __init__(self, message: str = "Workflow has no steps") -> None:
        super().__init__(message)


class UnknownStepType(WorkflowError):
    """Step type the engine has no behavior for. Logged and skipped."""

    def __init__(self, step_type: str) -> None:
        super().__init__(f"Unsupported step type: {step_type}")
        self.step_type = step_type


class MissingRequiredParam(WorkflowError):
    """Step lacks a field its type needs. Logged and treated as a no-op."""

    def __init__(self, step_type: str, param: str) -> None:
        super().__init__(f"Step '{step_type}' is missing required param '{param}'")
        self.step_type = step_type
        self.param = param


class CodeExecutionError(WorkflowError):
    """User code fragment failed to compile or raised."""


class HttpRequestFailed(WorkflowError):
    """Transport error or non-2xx response from an http_request step."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ProviderError(WorkflowError):
    """The text-completion or image backend reported an error."""


class WorkflowNotFound(WorkflowError):
    def __init__(self, workflow_id: Any) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class StepExecutionFailed(WorkflowError):
    """A step raised during a run. Carries the 1-based index and the step type."""

    def __init__(self, step_index: int, step_type: str, cause: Exception) -> None:
        super().__init__(f"Step {step_index} ({step_type}) failed: {cause}")
        self.step_index = step_index
        self.step_type = step_type
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self.cause),
            "type": type(self.cause).__name__,
            "step_index": self.step_index,
            "step_type": self.step_type,
        }
