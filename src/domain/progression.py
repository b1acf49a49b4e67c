"""
Progression engine.

Maps the percentage of a just-completed step to the next state of the
assessment. The decision table is total over ``(percentage, step)``; it has
no error branch.

    p >= advance        advance (or award Hi on the last step)
    mid <= p < advance  award Hi, complete
    low <= p < mid      award Lo (never below the prior confirmed level)
    p < low             step 1: block permanently; later steps: keep prior level

Bands are inclusive on their lower bound.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import structlog
from src.domain.errors import StepNotCompletedError
from src.domain.levels import MAX_STEP_COUNT, CompetencyLevel, step_levels

logger = structlog.get_logger(__name__)


class ProgressionOutcome(str, enum.Enum):
    ADVANCE = "advance"
    AWARD_HIGH = "award_high"
    AWARD_LOW = "award_low"
    RETAIN_PRIOR = "retain_prior"
    BLOCKED = "blocked"


@dataclass(frozen=True, slots=True)
class ProgressionThresholds:
    advance: float = 75.0
    mid: float = 50.0
    low: float = 25.0


DEFAULT_THRESHOLDS = ProgressionThresholds()


@dataclass(frozen=True, slots=True)
class ProgressionDecision:
    step: int
    percentage: float
    outcome: ProgressionOutcome
    final_level: CompetencyLevel | None
    proceed_to_next: bool
    is_completed: bool
    is_blocked: bool
    confirmed_level: CompetencyLevel | None

    @property
    def awards_level(self) -> bool:
        return self.is_completed and self.final_level is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "percentage": self.percentage,
            "outcome": self.outcome.value,
            "final_level": self.final_level.value if self.final_level else None,
            "proceed_to_next": self.proceed_to_next,
            "is_completed": self.is_completed,
            "is_blocked": self.is_blocked,
            "confirmed_level": self.confirmed_level.value if self.confirmed_level else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressionDecision:
        final_level = data.get("final_level")
        confirmed_level = data.get("confirmed_level")
        return cls(
            step=int(data["step"]),
            percentage=float(data["percentage"]),
            outcome=ProgressionOutcome(data["outcome"]),
            final_level=CompetencyLevel(final_level) if final_level else None,
            proceed_to_next=bool(data["proceed_to_next"]),
            is_completed=bool(data["is_completed"]),
            is_blocked=bool(data["is_blocked"]),
            confirmed_level=CompetencyLevel(confirmed_level) if confirmed_level else None,
        )


def decide(
    percentage: float,
    step: int,
    prior_level: CompetencyLevel | None = None,
    thresholds: ProgressionThresholds = DEFAULT_THRESHOLDS,
    step_count: int = MAX_STEP_COUNT,
) -> ProgressionDecision:
    """Apply the decision table to one scored step.

    ``prior_level`` is the level confirmed by the previous advancing step
    (``None`` on step one). The result depends on nothing else.
    """
    low, high = step_levels(step)
    is_last = step >= step_count

    if percentage >= thresholds.advance:
        if is_last:
            return _complete(step, percentage, ProgressionOutcome.AWARD_HIGH, high, prior_level)
        return ProgressionDecision(
            step=step,
            percentage=percentage,
            outcome=ProgressionOutcome.ADVANCE,
            final_level=None,
            proceed_to_next=True,
            is_completed=False,
            is_blocked=False,
            confirmed_level=high,
        )

    if percentage >= thresholds.mid:
        return _complete(step, percentage, ProgressionOutcome.AWARD_HIGH, high, prior_level)

    if percentage >= thresholds.low:
        awarded = low if prior_level is None else max(low, prior_level)
        return _complete(step, percentage, ProgressionOutcome.AWARD_LOW, awarded, prior_level)

    if step == 1:
        return ProgressionDecision(
            step=step,
            percentage=percentage,
            outcome=ProgressionOutcome.BLOCKED,
            final_level=None,
            proceed_to_next=False,
            is_completed=True,
            is_blocked=True,
            confirmed_level=None,
        )

    return _complete(step, percentage, ProgressionOutcome.RETAIN_PRIOR, prior_level, prior_level)


def _complete(
    step: int,
    percentage: float,
    outcome: ProgressionOutcome,
    level: CompetencyLevel | None,
    prior_level: CompetencyLevel | None,
) -> ProgressionDecision:
    return ProgressionDecision(
        step=step,
        percentage=percentage,
        outcome=outcome,
        final_level=level,
        proceed_to_next=False,
        is_completed=True,
        is_blocked=False,
        confirmed_level=prior_level,
    )


class ScoredStep(Protocol):
    step: int
    completed_at: datetime | None
    decision: dict[str, Any] | None

    @property
    def percentage(self) -> float: ...


class ProgressionEngine:
    """Evaluates completed steps and records the decision on the step."""

    def __init__(
        self,
        thresholds: ProgressionThresholds = DEFAULT_THRESHOLDS,
        step_count: int = MAX_STEP_COUNT,
    ) -> None:
        self.thresholds = thresholds
        self.step_count = step_count

    def evaluate(
        self,
        record: ScoredStep,
        prior_level: CompetencyLevel | None = None,
    ) -> ProgressionDecision:
        """Decide the outcome of ``record``.

        A record that already carries a decision returns it unchanged, so a
        retried evaluation never produces a second outcome.
        """
        if record.completed_at is None:
            raise StepNotCompletedError(f"Step {record.step} has not been completed")

        if record.decision is not None:
            return ProgressionDecision.from_dict(record.decision)

        decision = decide(
            record.percentage,
            record.step,
            prior_level,
            thresholds=self.thresholds,
            step_count=self.step_count,
        )
        record.decision = decision.to_dict()
        logger.info(
            "progression_decided",
            step=record.step,
            percentage=decision.percentage,
            outcome=decision.outcome.value,
            final_level=decision.final_level.value if decision.final_level else None,
        )
        return decision
