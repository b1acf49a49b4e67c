from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

import httpx
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.deps import issue_smoke_token
from src.core.auth import Role
from src.domain.levels import LEVELS, CompetencyLevel
from src.domain.scoring import SubmittedAnswer
from src.infrastructure.db.models import Question
from src.libs.certificate_client import CertificateServiceAPIError, IssuedCertificate


def auth_headers(user_id: str = "student-1", role: Role = Role.STUDENT) -> dict[str, str]:
    token = issue_smoke_token(user_id, role=role, email="student@example.com")
    return {"Authorization": f"Bearer {token}"}


async def seed_questions(
    session: AsyncSession,
    per_level: int,
    levels: Iterable[CompetencyLevel] = LEVELS,
) -> dict[str, Question]:
    """Insert ``per_level`` active questions for every level; returns them by id."""
    created: dict[str, Question] = {}
    for level in levels:
        for index in range(per_level):
            question = Question(
                competency="Online Safety" if index % 2 else "Spreadsheets",
                level=level,
                text=f"{level.value} question number {index}",
                options={key: f"{level.value}-{index}-{key}" for key in "abcd"},
                correct_option="abcd"[index % 4],
            )
            session.add(question)
            await session.flush()
            created[question.id] = question
    await session.commit()
    return created


def wrong_option(correct: str) -> str:
    return "b" if correct == "a" else "a"


def build_answers(
    question_ids: Sequence[str],
    answer_key: dict[str, str],
    correct: int,
    time_spent: float = 10.0,
) -> list[SubmittedAnswer]:
    """Answer the first ``correct`` questions correctly and the rest wrongly."""
    answers = []
    for index, question_id in enumerate(question_ids):
        key = answer_key[question_id]
        answers.append(
            SubmittedAnswer(
                question_id=question_id,
                answer=key if index < correct else wrong_option(key),
                time_spent=time_spent,
            )
        )
    return answers


def build_answers_payload(
    question_ids: Sequence[str],
    answer_key: dict[str, str],
    correct: int,
) -> dict[str, list[dict[str, Any]]]:
    """Construct a JSON payload for POST /assessment/step/{step}/submit."""
    return {
        "answers": [
            {"question_id": a.question_id, "answer": a.answer, "time_spent": a.time_spent}
            for a in build_answers(question_ids, answer_key, correct)
        ]
    }


class FakeCertificateClient:
    """Certificate client double that records calls and can fail on demand."""

    def __init__(self, fail_times: int = 0) -> None:
        self.fail_times = fail_times
        self.calls: list[dict[str, str]] = []

    async def issue_certificate(
        self, *, user_id: str, assessment_id: str, level: str
    ) -> IssuedCertificate:
        self.calls.append({"user_id": user_id, "assessment_id": assessment_id, "level": level})
        if len(self.calls) <= self.fail_times:
            raise CertificateServiceAPIError("Server error: 503", status_code=503)
        number = len(self.calls)
        return IssuedCertificate(
            certificate_id=f"ext-{number}",
            certificate_number=f"CERT-{level}-{number:04d}",
            verification_code=f"VERIFY{number:04d}",
            latency_ms=3,
        )


class FakeRetryScheduler:
    def __init__(self) -> None:
        self.scheduled: list[tuple[str, datetime]] = []

    def schedule(self, job_id: str, run_at: datetime) -> None:
        self.scheduled.append((job_id, run_at))


async def answer_key(session: AsyncSession, question_ids: Sequence[str]) -> dict[str, str]:
    rows = await session.execute(
        select(Question.id, Question.correct_option).where(Question.id.in_(list(question_ids)))
    )
    return dict(rows.all())


async def take_step(
    client: AsyncClient,
    session: AsyncSession,
    step: int,
    correct: int,
    headers: dict[str, str],
    idempotency_key: str | None = None,
) -> httpx.Response:
    """Fetch the questions of ``step`` over HTTP and submit ``correct`` right answers."""
    response = await client.get(f"/assessment/step/{step}/questions", headers=headers)
    assert response.status_code == 200, response.text
    question_ids = [question["id"] for question in response.json()["questions"]]
    payload = build_answers_payload(question_ids, await answer_key(session, question_ids), correct)

    submit_headers = dict(headers)
    if idempotency_key:
        submit_headers["Idempotency-Key"] = idempotency_key
    return await client.post(
        f"/assessment/step/{step}/submit", json=payload, headers=submit_headers
    )
