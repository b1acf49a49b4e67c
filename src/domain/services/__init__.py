"""Domain services."""

from src.domain.services.assessments import AssessmentService, StepSubmissionResult
from src.domain.services.certificates import (
    CertificateIssuanceTrigger,
    CertificateService,
    IssuanceOutcome,
)
from src.domain.services.selection import QuestionSelector

__all__ = [
    "AssessmentService",
    "CertificateIssuanceTrigger",
    "CertificateService",
    "IssuanceOutcome",
    "QuestionSelector",
    "StepSubmissionResult",
]
