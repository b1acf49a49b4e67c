"""
Question Bank Schemas for CRUD and Versioning
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from src.domain.levels import CompetencyLevel

_OPTION_KEYS = ("a", "b", "c", "d")


def _normalize_options(options: dict[str, str]) -> dict[str, str]:
    normalized = {key.strip().lower(): value for key, value in options.items()}
    if set(normalized) != set(_OPTION_KEYS):
        raise ValueError("options must contain exactly the keys a, b, c and d")
    if any(not value.strip() for value in normalized.values()):
        raise ValueError("options must not be empty")
    return {key: normalized[key] for key in _OPTION_KEYS}


def _normalize_correct_option(value: str) -> str:
    value = value.strip().lower()
    if value not in _OPTION_KEYS:
        raise ValueError("correct_option must be one of a, b, c, d")
    return value


class QuestionBase(BaseModel):
    """Base schema for question fields"""

    competency: str = Field(..., min_length=2, description="Competency tag, e.g. 'safety'")
    level: CompetencyLevel = Field(..., description="Competency level the question belongs to")
    text: str = Field(..., min_length=10, description="Question text")
    options: dict[str, str] = Field(..., description="Four labelled options a-d")
    correct_option: str = Field(..., description="Key of the correct option")

    @field_validator("options")
    @classmethod
    def check_options(cls, v: dict[str, str]) -> dict[str, str]:
        return _normalize_options(v)

    @field_validator("correct_option")
    @classmethod
    def check_correct_option(cls, v: str) -> str:
        return _normalize_correct_option(v)


class QuestionCreate(QuestionBase):
    """Schema for creating a new question"""


class QuestionUpdate(BaseModel):
    """Schema for updating an existing question (all fields optional)"""

    competency: str | None = Field(None, min_length=2)
    level: CompetencyLevel | None = None
    text: str | None = Field(None, min_length=10)
    options: dict[str, str] | None = None
    correct_option: str | None = None

    @field_validator("options")
    @classmethod
    def check_options(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        return _normalize_options(v) if v is not None else None

    @field_validator("correct_option")
    @classmethod
    def check_correct_option(cls, v: str | None) -> str | None:
        return _normalize_correct_option(v) if v is not None else None


class QuestionDetail(QuestionBase):
    """Full question details including version and timestamps"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    version: int
    previous_version_id: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class QuestionItem(BaseModel):
    """Simplified question for list views"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    competency: str
    level: CompetencyLevel
    text: str
    version: int
    is_active: bool
