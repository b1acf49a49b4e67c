"""Step scorer: counts correct answers for one step."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

VALID_OPTIONS = frozenset({"a", "b", "c", "d"})


@dataclass(frozen=True, slots=True)
class SubmittedAnswer:
    question_id: str
    answer: str = ""
    time_spent: float = 0.0

    @property
    def selected_option(self) -> str | None:
        """Normalised option letter, or ``None`` when unanswered or invalid."""
        value = (self.answer or "").strip().lower()
        return value if value in VALID_OPTIONS else None

    def to_dict(self) -> dict[str, object]:
        return {
            "question_id": self.question_id,
            "answer": self.selected_option or "",
            "time_spent": self.time_spent,
        }


@dataclass(frozen=True, slots=True)
class StepScore:
    score: int
    total_questions: int
    percentage: float


def percentage_of(score: int, total_questions: int) -> float:
    """Single source for percentages; never rounded here."""
    if total_questions <= 0:
        return 0.0
    return 100 * score / total_questions


def score_step(
    answers: Iterable[SubmittedAnswer],
    answer_key: Mapping[str, str],
) -> StepScore:
    """Score ``answers`` against ``answer_key`` (question id -> correct option).

    The total is the size of the key, so unanswered questions count as wrong.
    When a question is answered twice the later answer wins.
    """
    selected: dict[str, str | None] = {}
    for answer in answers:
        selected[answer.question_id] = answer.selected_option

    score = 0
    for question_id, correct in answer_key.items():
        choice = selected.get(question_id)
        if choice is not None and choice == correct.strip().lower():
            score += 1

    total = len(answer_key)
    return StepScore(score=score, total_questions=total, percentage=percentage_of(score, total))
