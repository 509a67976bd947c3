"""Test definition and question snapshot schemas."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class QuestionType(str, Enum):
    MCQ = "mcq"
    MSQ = "msq"
    FILL_BLANK = "fillblank"
    COMPREHENSION = "comprehension"
    BROAD = "broad"


class TestConfig(BaseModel):
    """Recognised per-test settings; unknown keys are rejected.

    ``None`` means "use the engine default from ``Settings``".
    """

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    random_count: int = Field(0, ge=0)
    shuffle_questions: bool = False
    show_results: bool = True
    show_results_immediately: bool = True
    passing_percentage: float | None = Field(None, ge=0, le=100)
    warning_threshold: int | None = Field(None, ge=1)
    terminate_on_warning_threshold: bool | None = None
    max_resumes: int | None = Field(None, ge=0)


class SnapshotSubQuestion(BaseModel):
    """Gradable question content frozen into an attempt."""

    id: str
    text: str
    question_type: QuestionType
    options: list[str] | None = None
    correct_answer: Any = None
    marks: float = 1.0
    negative_marks: float = 0.0
    case_sensitive: bool = False
    is_number_range: bool = False
    number_range_min: float | None = None
    number_range_max: float | None = None


class SnapshotQuestion(SnapshotSubQuestion):
    topic: str | None = None
    sub_questions: list[SnapshotSubQuestion] = []


class QuestionView(BaseModel):
    """Student-facing question: no correct answers, no range bounds."""

    id: str
    text: str
    question_type: QuestionType
    options: list[str] | None = None
    marks: float
    negative_marks: float = 0.0
    case_sensitive: bool = False
    is_number_range: bool = False
    topic: str | None = None
    sub_questions: list["QuestionView"] = []


class AttemptSummary(BaseModel):
    status: str
    started_at: datetime | None = None
    time_spent_ms: int = 0
    warning_count: int = 0


class TestInfo(BaseModel):
    """GET /api/tests/{id}: test details shown before starting."""

    __test__ = False

    id: uuid.UUID
    title: str
    description: str | None = None
    total_marks: float | None = None
    duration_minutes: int
    start_time: datetime | None = None
    end_time: datetime | None = None
    is_open: bool
    question_count: int
    attempt: AttemptSummary | None = None


class QuestionSetRead(BaseModel):
    """The student's own question subset for a test."""

    source_id: str
    student_id: str
    question_ids: list[str]
    questions: list[QuestionView]
