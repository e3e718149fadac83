# quickrank/core/exceptions.py
"""
Exceptions raised while driving a quick-rank pipeline run.

Every error carries a structured code and a human-readable message; the
orchestrator records both on the failed run (failure_code, failure_reason).
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Structured error codes for pipeline failures."""

    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    TASK_FAILED = "TASK_FAILED"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PIPELINE_BUSY = "PIPELINE_BUSY"
    CANCELLED = "CANCELLED"


class PipelineError(Exception):
    """Base exception for pipeline errors with structured error information."""

    code: ErrorCode = ErrorCode.TASK_FAILED

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class PreconditionError(PipelineError):
    """Missing credential or input, detected before any network call."""

    code = ErrorCode.PRECONDITION_FAILED


class SubmissionError(PipelineError):
    """
    A submission call failed (transport error, non-2xx, success=false or malformed body).

    Attributes:
        step: Name of the submission that failed (e.g. "CV upload")
        status_code: HTTP status code when a response was received
    """

    code = ErrorCode.SUBMISSION_FAILED

    def __init__(
        self,
        step: str,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        self.step = step
        self.status_code = status_code
        super().__init__(message, original_error=original_error)


class TaskFailedError(PipelineError):
    """The remote system reported a terminal failure for a task."""

    code = ErrorCode.TASK_FAILED

    def __init__(self, task_id: str, message: str):
        self.task_id = task_id
        super().__init__(message)


class InvalidTransitionError(PipelineError):
    """A phase transition that would revisit or skip a phase."""

    code = ErrorCode.INVALID_TRANSITION


class PipelineBusyError(PipelineError):
    """start() was called while a run is still in progress."""

    code = ErrorCode.PIPELINE_BUSY


class PipelineCancelled(PipelineError):
    """Raised inside a run once its cancellation token has been flipped. Not a failure."""

    code = ErrorCode.CANCELLED

    def __init__(self, message: str = "Pipeline run cancelled"):
        super().__init__(message)
