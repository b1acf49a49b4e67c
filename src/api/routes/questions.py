"""
Question Bank CRUD Endpoints
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.deps import get_db_session, require_roles
from src.api.schemas.questions import QuestionCreate, QuestionDetail, QuestionItem, QuestionUpdate
from src.domain import User
from src.domain.levels import CompetencyLevel
from src.infrastructure.db.models import Question

logger = structlog.get_logger()
router = APIRouter(prefix="/questions", tags=["questions"])


async def _get_active_question(db: AsyncSession, question_id: str) -> Question:
    result = await db.execute(
        select(Question).where(Question.id == question_id, Question.is_active.is_(True))
    )
    question = result.scalar_one_or_none()
    if not question:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
    return question


@router.get("", response_model=list[QuestionItem])
async def list_questions(
    level: CompetencyLevel | None = None,
    competency: str | None = None,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db_session),
    _current_user: User = Depends(require_roles(["admin"])),
) -> Any:
    """
    List questions in the bank, optionally filtered by level or competency (admin only).
    """
    query = select(Question)
    if not include_inactive:
        query = query.where(Question.is_active.is_(True))
    if level is not None:
        query = query.where(Question.level == level)
    if competency:
        query = query.where(Question.competency == competency)
    query = query.order_by(Question.level, Question.competency, Question.created_at)

    result = await db.execute(query)
    questions = result.scalars().all()

    await logger.ainfo(
        "list_questions",
        level=level.value if level else None,
        competency=competency,
        include_inactive=include_inactive,
        count=len(questions),
    )
    return questions


@router.get("/{question_id}", response_model=QuestionDetail)
async def get_question(
    question_id: str,
    db: AsyncSession = Depends(get_db_session),
    _current_user: User = Depends(require_roles(["admin"])),
) -> Any:
    """
    Get a specific question by ID (including inactive versions).
    """
    question = await db.get(Question, question_id)
    if not question:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")

    await logger.ainfo("get_question", question_id=question_id, level=question.level.value)
    return question


@router.post("", response_model=QuestionDetail, status_code=status.HTTP_201_CREATED)
async def create_question(
    question_data: QuestionCreate,
    db: AsyncSession = Depends(get_db_session),
    _current_user: User = Depends(require_roles(["admin"])),
) -> Any:
    """
    Create a new question (admin only).
    """
    new_question = Question(
        competency=question_data.competency,
        level=question_data.level,
        text=question_data.text,
        options=question_data.options,
        correct_option=question_data.correct_option,
        version=1,
        is_active=True,
    )
    db.add(new_question)
    await db.commit()

    await logger.ainfo(
        "create_question",
        question_id=new_question.id,
        level=new_question.level.value,
        competency=new_question.competency,
        admin_user=_current_user.user_id,
    )
    return new_question


@router.put("/{question_id}", response_model=QuestionDetail)
async def update_question(
    question_id: str,
    question_data: QuestionUpdate,
    db: AsyncSession = Depends(get_db_session),
    _current_user: User = Depends(require_roles(["admin"])),
) -> Any:
    """
    Update a question with versioning (admin only).

    Served questions are referenced by step records, so the old row is never
    edited: a new version is created and the old one is marked inactive.
    """
    old_question = await _get_active_question(db, question_id)
    changes = question_data.model_dump(exclude_none=True)

    old_question.is_active = False
    new_question = Question(
        competency=changes.get("competency", old_question.competency),
        level=changes.get("level", old_question.level),
        text=changes.get("text", old_question.text),
        options=changes.get("options", dict(old_question.options)),
        correct_option=changes.get("correct_option", old_question.correct_option),
        version=old_question.version + 1,
        previous_version_id=old_question.id,
        is_active=True,
    )
    db.add(new_question)
    await db.commit()

    await logger.ainfo(
        "update_question",
        old_id=question_id,
        new_id=new_question.id,
        version=new_question.version,
        admin_user=_current_user.user_id,
    )
    return new_question


@router.delete("/{question_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
async def delete_question(
    question_id: str,
    db: AsyncSession = Depends(get_db_session),
    _current_user: User = Depends(require_roles(["admin"])),
) -> None:
    """
    Soft delete a question (admin only).
    """
    question = await _get_active_question(db, question_id)
    question.is_active = False
    await db.commit()

    await logger.ainfo(
        "delete_question",
        question_id=question_id,
        level=question.level.value,
        admin_user=_current_user.user_id,
    )
