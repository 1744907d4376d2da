"""Failure taxonomy of an evaluation.

The HTTP layer maps each class to a status code; the frame collapses all of
them into a single error card.
"""

from __future__ import annotations

from typing import Any, Optional


class EvaluationError(Exception):
    """Base class for every failure raised while evaluating."""

    status_code = 500


class ValidationError(EvaluationError):
    """The caller omitted level or type. Raised before any network call."""

    status_code = 400


class RemoteServiceError(EvaluationError):
    """Submission or status fetch failed at the transport or API level."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.details = details if details is not None else message


class ExecutionFailedError(RemoteServiceError):
    """The remote execution reached a terminal failure state."""


class PollTimeoutError(EvaluationError, TimeoutError):
    """The poll budget ran out before the execution completed."""

    status_code = 408

    def __init__(self, execution_id: str, attempts: int):
        super().__init__(f"Execution {execution_id} did not complete after {attempts} attempts")
        self.execution_id = execution_id
        self.attempts = attempts
