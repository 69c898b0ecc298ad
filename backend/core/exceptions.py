"""Custom exceptions for the workflow engine."""

from typing import Optional


class EngineError(Exception):
    """Base exception for the workflow engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(EngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(EngineError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(EngineError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class RunInProgressError(ConflictError):
    """A run was started on a runner that already has an active run."""

    def __init__(self, message: str = "A workflow run is already in progress"):
        super().__init__(message)


class InvalidTransitionError(EngineError):
    """A task state change violates the task lifecycle."""

    def __init__(self, task_id: str, from_status: str, to_status: str):
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Task {task_id}: illegal transition {from_status} -> {to_status}"
        )


class TaskExecutionError(EngineError):
    """A task handler could not produce a result."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        self.task_id = task_id
        super().__init__(message)


class RemoteExecutionError(EngineError):
    """The remote executor answered with an error."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message, status_code)


class SubmissionError(RemoteExecutionError):
    """An async workflow submission was rejected or could not be sent."""


class ModelProviderError(EngineError):
    """The model provider is missing or failed to answer."""

    def __init__(self, message: str = "No model provider configured"):
        super().__init__(message, 503)
