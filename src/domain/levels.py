"""Competency levels and the step-to-level mapping."""

from __future__ import annotations

import enum
from collections.abc import Iterable


class CompetencyLevel(str, enum.Enum):
    """Proficiency tiers, declared from lowest to highest."""

    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, CompetencyLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, CompetencyLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, CompetencyLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, CompetencyLevel):
            return NotImplemented
        return self.rank >= other.rank


LEVELS: tuple[CompetencyLevel, ...] = tuple(CompetencyLevel)
_RANKS = {level: index for index, level in enumerate(LEVELS)}

MAX_STEP_COUNT = len(LEVELS) // 2


def step_levels(step: int) -> tuple[CompetencyLevel, CompetencyLevel]:
    """Return the ``(low, high)`` level pair examined by ``step``.

    Step 1 covers A1/A2, step 2 B1/B2 and step 3 C1/C2.
    """
    if not 1 <= step <= MAX_STEP_COUNT:
        raise ValueError(f"Step must be between 1 and {MAX_STEP_COUNT}, got {step}")
    index = (step - 1) * 2
    return LEVELS[index], LEVELS[index + 1]


def highest(levels: Iterable[CompetencyLevel | None]) -> CompetencyLevel | None:
    """Highest non-null level in ``levels`` or ``None``."""
    present = [level for level in levels if level is not None]
    if not present:
        return None
    return max(present)
