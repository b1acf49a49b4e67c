from __future__ import annotations

import pytest
from src.domain.scoring import SubmittedAnswer, percentage_of, score_step


def _key(size: int) -> dict[str, str]:
    return {f"q{i}": "abcd"[i % 4] for i in range(size)}


def _answers(key: dict[str, str], correct: int) -> list[SubmittedAnswer]:
    answers = []
    for index, (question_id, option) in enumerate(key.items()):
        chosen = option if index < correct else ("b" if option == "a" else "a")
        answers.append(SubmittedAnswer(question_id=question_id, answer=chosen))
    return answers


class TestScoreStep:
    @pytest.mark.parametrize(
        ("correct", "percentage"),
        [(35, 100 * 35 / 44), (24, 100 * 24 / 44), (10, 100 * 10 / 44), (9, 100 * 9 / 44)],
    )
    def test_scores_forty_four_question_step(self, correct: int, percentage: float) -> None:
        key = _key(44)

        result = score_step(_answers(key, correct), key)

        assert result.score == correct
        assert result.total_questions == 44
        assert result.percentage == percentage

    def test_unanswered_questions_count_as_incorrect(self) -> None:
        key = _key(4)
        answers = [SubmittedAnswer(question_id="q0", answer="a")]

        result = score_step(answers, key)

        assert result.score == 1
        assert result.total_questions == 4
        assert result.percentage == 25.0

    @pytest.mark.parametrize("value", ["", "e", "ab", "  ", "1"])
    def test_invalid_options_are_incorrect_not_errors(self, value: str) -> None:
        key = {"q0": "a"}

        assert score_step([SubmittedAnswer(question_id="q0", answer=value)], key).score == 0

    def test_options_are_case_insensitive(self) -> None:
        key = {"q0": "c"}

        assert score_step([SubmittedAnswer(question_id="q0", answer=" C ")], key).score == 1

    def test_last_answer_for_a_question_wins(self) -> None:
        key = {"q0": "a"}
        answers = [
            SubmittedAnswer(question_id="q0", answer="a"),
            SubmittedAnswer(question_id="q0", answer="d"),
        ]

        assert score_step(answers, key).score == 0

    def test_empty_key_yields_zero(self) -> None:
        result = score_step([], {})

        assert result.score == 0
        assert result.total_questions == 0
        assert result.percentage == 0.0


class TestPercentage:
    def test_percentage_is_not_rounded(self) -> None:
        assert percentage_of(1, 3) == 100 / 3

    def test_percentage_rederives_exactly(self) -> None:
        key = _key(44)
        result = score_step(_answers(key, 29), key)

        assert percentage_of(result.score, result.total_questions) == result.percentage

    def test_zero_total(self) -> None:
        assert percentage_of(0, 0) == 0.0


def test_submitted_answer_normalises_for_storage() -> None:
    answer = SubmittedAnswer(question_id="q1", answer="B", time_spent=12.5)

    assert answer.selected_option == "b"
    assert answer.to_dict() == {"question_id": "q1", "answer": "b", "time_spent": 12.5}
    assert SubmittedAnswer(question_id="q2", answer="x").to_dict()["answer"] == ""
