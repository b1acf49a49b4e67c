from __future__ import annotations

import random
from collections.abc import Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from src.domain.errors import InsufficientQuestionPoolError
from src.domain.levels import step_levels
from src.infrastructure.db.models import Question
from src.infrastructure.repositories.unit_of_work import QuestionRepository

logger = structlog.get_logger()


class QuestionSelector:
    """Draws a step's question set evenly from its two competency levels."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        questions_per_step: int = 44,
        rng: random.Random | None = None,
    ) -> None:
        self.questions = QuestionRepository(session)
        self.questions_per_step = questions_per_step
        self.rng = rng or random.SystemRandom()

    async def select_questions(
        self,
        step: int,
        exclude_question_ids: Sequence[str] = (),
    ) -> list[Question]:
        """Return ``questions_per_step`` distinct active questions in random order.

        Raises InsufficientQuestionPoolError when either level cannot supply
        its half of the set after exclusions.
        """
        per_level = self.questions_per_step // 2
        excluded = set(exclude_question_ids)

        pools: list[list[Question]] = []
        for level in step_levels(step):
            pool = await self.questions.active_for_level(level, list(excluded))
            if len(pool) < per_level:
                await logger.awarning(
                    "question_pool_insufficient",
                    step=step,
                    level=level.value,
                    available=len(pool),
                    required=per_level,
                )
                raise InsufficientQuestionPoolError(
                    f"Level {level.value} has {len(pool)} active questions, {per_level} required",
                    level=level.value,
                    available=len(pool),
                    required=per_level,
                )
            pools.append(pool)

        selected: list[Question] = []
        for pool in pools:
            selected.extend(self.rng.sample(pool, per_level))
        self.rng.shuffle(selected)

        await logger.ainfo(
            "questions_selected",
            step=step,
            count=len(selected),
            excluded=len(excluded),
        )
        return selected
