"""Assessment error taxonomy.

Every error carries a stable ``code`` for clients and a ``kind`` that tells
the HTTP layer how to surface it.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    STATE = "state"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    EXPIRED = "expired"
    RESOURCE = "resource"


class AssessmentError(Exception):
    """Base class for errors raised by the assessment lifecycle."""

    code = "assessment_error"
    kind = ErrorKind.STATE


class StaleQuestionSetError(AssessmentError):
    """Raised when answers reference questions not assigned to the step."""

    code = "stale_question_set"
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, unknown_ids: list[str]):
        super().__init__(message)
        self.unknown_ids = unknown_ids


class InvalidStepError(AssessmentError):
    code = "invalid_step"
    kind = ErrorKind.VALIDATION


class AssessmentNotFoundError(AssessmentError):
    code = "assessment_not_found"
    kind = ErrorKind.NOT_FOUND


class AssessmentAlreadyActiveError(AssessmentError):
    code = "assessment_already_active"


class UserBlockedError(AssessmentError):
    """Raised when a user failed step one below the low threshold."""

    code = "user_blocked"
    kind = ErrorKind.FORBIDDEN


class StepNotCurrentError(AssessmentError):
    code = "step_not_current"


class StepNotOpenedError(AssessmentError):
    code = "step_not_opened"


class StepAlreadySubmittedError(AssessmentError):
    code = "step_already_submitted"


class StepLeaseExpiredError(AssessmentError):
    """Raised when a submission arrives after the step lease ran out."""

    code = "step_lease_expired"
    kind = ErrorKind.EXPIRED


class InsufficientQuestionPoolError(AssessmentError):
    """Raised when a level has too few active questions for a step."""

    code = "insufficient_question_pool"
    kind = ErrorKind.RESOURCE

    def __init__(self, message: str, *, level: str, available: int, required: int):
        super().__init__(message)
        self.level = level
        self.available = available
        self.required = required


class StepNotCompletedError(RuntimeError):
    """Programming error: a step result was read before the step completed."""


__all__ = [
    "AssessmentAlreadyActiveError",
    "AssessmentError",
    "AssessmentNotFoundError",
    "ErrorKind",
    "InsufficientQuestionPoolError",
    "InvalidStepError",
    "StaleQuestionSetError",
    "StepAlreadySubmittedError",
    "StepLeaseExpiredError",
    "StepNotCompletedError",
    "StepNotCurrentError",
    "StepNotOpenedError",
    "UserBlockedError",
]
