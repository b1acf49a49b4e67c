from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from src.api.deps import get_assessment_service, require_roles
from src.api.schemas.assessments import (
    AssessmentHistoryResponse,
    AssessmentStatusResponse,
    AssessmentSummary,
    StepQuestionsResponse,
    StepSubmitRequest,
    StepSubmitResponse,
)
from src.domain import User
from src.domain.errors import (
    AssessmentError,
    ErrorKind,
    InsufficientQuestionPoolError,
    StaleQuestionSetError,
)
from src.domain.scoring import SubmittedAnswer
from src.domain.services import AssessmentService

router = APIRouter(prefix="/assessment", tags=["Assessment"])

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STATE: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
    ErrorKind.RESOURCE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(exc: AssessmentError) -> HTTPException:
    """Translate a domain error into an HTTP error with a stable code."""
    detail: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, StaleQuestionSetError):
        detail["unknown_question_ids"] = exc.unknown_ids
    elif isinstance(exc, InsufficientQuestionPoolError):
        detail["level"] = exc.level
    return HTTPException(status_code=_STATUS_BY_KIND[exc.kind], detail=detail)


@router.post("/start", response_model=AssessmentSummary, status_code=status.HTTP_201_CREATED)
async def start_assessment(
    user: User = Depends(require_roles(["student"])),
    service: AssessmentService = Depends(get_assessment_service),
) -> AssessmentSummary:
    try:
        result = await service.start_assessment(user=user)
    except AssessmentError as exc:
        raise to_http_exception(exc) from exc
    return AssessmentSummary(**result)


@router.get("/status", response_model=AssessmentStatusResponse)
async def get_status(
    user: User = Depends(require_roles(["student"])),
    service: AssessmentService = Depends(get_assessment_service),
) -> AssessmentStatusResponse:
    """Latest assessment of the caller and their highest certificate."""
    result = await service.get_status(user=user)
    return AssessmentStatusResponse(**result)


@router.get("/step/{step}/questions", response_model=StepQuestionsResponse)
async def get_step_questions(
    step: int,
    user: User = Depends(require_roles(["student"])),
    service: AssessmentService = Depends(get_assessment_service),
) -> StepQuestionsResponse:
    """
    Serve the questions of the current step.

    Calling again while the step lease is live returns the same set. After the
    lease expired a fresh set is drawn, excluding questions already served.
    """
    try:
        result = await service.get_step_questions(user=user, step=step)
    except AssessmentError as exc:
        raise to_http_exception(exc) from exc
    return StepQuestionsResponse(**result)


@router.post("/step/{step}/submit", response_model=StepSubmitResponse)
async def submit_step(
    step: int,
    payload: StepSubmitRequest,
    user: User = Depends(require_roles(["student"])),
    service: AssessmentService = Depends(get_assessment_service),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
) -> StepSubmitResponse:
    """
    Submit the answers of a step.

    - Scores the step and applies the progression decision atomically
    - Triggers certificate issuance when a level is awarded
    - Replays the recorded result for a repeated Idempotency-Key
    """
    answers = [
        SubmittedAnswer(
            question_id=item.question_id,
            answer=item.answer or "",
            time_spent=item.time_spent,
        )
        for item in payload.answers
    ]
    try:
        result = await service.submit_step(
            user=user,
            step=step,
            answers=answers,
            idempotency_key=idempotency_key,
        )
    except AssessmentError as exc:
        raise to_http_exception(exc) from exc
    return StepSubmitResponse(**result.to_dict())


@router.get("/history", response_model=AssessmentHistoryResponse)
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(require_roles(["student"])),
    service: AssessmentService = Depends(get_assessment_service),
) -> AssessmentHistoryResponse:
    result = await service.get_history(user=user, page=page, limit=limit)
    return AssessmentHistoryResponse(**result)
