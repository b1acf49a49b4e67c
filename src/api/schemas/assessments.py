from __future__ import annotations

from pydantic import BaseModel, Field
from src.api.schemas.certificates import CertificateItem


class AnswerItem(BaseModel):
    question_id: str
    answer: str | None = Field(
        "", description="Selected option a-d; empty or anything else counts as unanswered"
    )
    time_spent: float = Field(0.0, ge=0, description="Seconds spent on the question")


class StepSubmitRequest(BaseModel):
    answers: list[AnswerItem] = Field(default_factory=list)


class StepSubmitResponse(BaseModel):
    assessment_id: str
    step: int
    score: int
    total_questions: int
    percentage: float
    final_level: str | None = None
    proceed_to_next: bool
    is_completed: bool
    is_blocked: bool = False
    next_step: int | None = None
    certificate_pending: bool = False
    certificate_id: str | None = None


class QuestionOptions(BaseModel):
    a: str
    b: str
    c: str
    d: str


class StepQuestion(BaseModel):
    id: str
    competency: str
    level: str
    text: str
    options: QuestionOptions


class StepQuestionsResponse(BaseModel):
    assessment_id: str
    step: int
    questions: list[StepQuestion]
    started_at: str | None = None
    expires_at: str | None = Field(None, description="ISO timestamp after which submit is refused")
    time_per_question: int


class StepSummary(BaseModel):
    step: int
    question_count: int = 0
    score: int | None = None
    total_questions: int | None = None
    percentage: float | None = None
    started_at: str | None = None
    completed_at: str | None = None


class AssessmentSummary(BaseModel):
    id: str
    user_id: str
    state: str
    current_step: int
    final_level: str | None = None
    is_completed: bool
    is_blocked: bool
    total_time_spent: float = 0.0
    certificate_id: str | None = None
    created_at: str | None = None
    completed_at: str | None = None
    steps: list[StepSummary] = Field(default_factory=list)


class AssessmentStatusResponse(BaseModel):
    has_assessment: bool
    assessment: AssessmentSummary | None = None
    certificate: CertificateItem | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class AssessmentHistoryResponse(BaseModel):
    assessments: list[AssessmentSummary]
    pagination: Pagination
