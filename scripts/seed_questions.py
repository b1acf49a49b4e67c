#!/usr/bin/env python3
"""
Seed the question bank with a placeholder pool.

Every level gets ``--per-level`` active questions spread across the digital
competency areas, enough for a step to draw its half from each level.

Run with:
    python scripts/seed_questions.py --per-level 30
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import func, select, update

from src.core.config import get_settings
from src.domain.levels import LEVELS, CompetencyLevel
from src.infrastructure.db.models import Question
from src.infrastructure.db.session import dispose_engine, get_session_factory

COMPETENCIES = [
    "Computer Basics",
    "Internet Basics",
    "Email Communication",
    "Word Processing",
    "Spreadsheets",
    "Presentation Software",
    "Database Management",
    "Web Browsing",
    "Online Safety",
    "Digital Communication",
    "Cloud Computing",
    "Social Media",
    "Digital Marketing",
    "E-commerce",
    "Programming Basics",
    "Data Analysis",
    "Cybersecurity",
    "Digital Ethics",
    "Mobile Technology",
    "Digital Collaboration",
    "Content Creation",
    "Emerging Technologies",
]


def build_question(level: CompetencyLevel, index: int) -> Question:
    competency = COMPETENCIES[index % len(COMPETENCIES)]
    correct = "abcd"[index % 4]
    return Question(
        competency=competency,
        level=level,
        text=f"[{level.value}] {competency}: placeholder question #{index + 1}",
        options={key: f"Option {key.upper()} for #{index + 1}" for key in "abcd"},
        correct_option=correct,
    )


async def seed(per_level: int, reset: bool) -> None:
    settings = get_settings()
    required = settings.questions_per_step // 2
    if per_level < required:
        print(f"⚠️  {per_level} per level is below the {required} a step needs")

    session_factory = get_session_factory()
    async with session_factory() as session:
        if reset:
            await session.execute(
                update(Question).where(Question.is_active.is_(True)).values(is_active=False)
            )
            print("🧹 Deactivated existing questions")

        for level in LEVELS:
            active = await session.scalar(
                select(func.count())
                .select_from(Question)
                .where(Question.level == level, Question.is_active.is_(True))
            )
            missing = max(per_level - int(active or 0), 0)
            session.add_all(build_question(level, int(active or 0) + i) for i in range(missing))
            print(f"   {level.value}: {active} active, adding {missing}")

        await session.commit()
    await dispose_engine()
    print("✅ Question bank seeded")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--per-level", type=int, default=30)
    parser.add_argument("--reset", action="store_true", help="deactivate existing questions first")
    args = parser.parse_args()
    asyncio.run(seed(args.per_level, args.reset))


if __name__ == "__main__":
    main()
