"""SQLAlchemy ORM models for the assessment attempt engine.

Tables
------
- questions       – question bank entries (read-only to the engine)
- online_tests    – timed test definitions with their question pool
- attempts        – one row per (test, student); the attempt aggregate root
- attempt_answers – per-question answers within an attempt
- question_sets   – persisted per-student random question subsets
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_engine.core.clock import utcnow
from exam_engine.db.session import Base


# ── helpers ───────────────────────────────────────────────────────────────────


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# ── Enums (stored as their lowercase values) ──────────────────────────────────


class QuestionTypeEnum(str, enum.Enum):
    MCQ = "mcq"
    MSQ = "msq"
    FILL_BLANK = "fillblank"
    COMPREHENSION = "comprehension"
    BROAD = "broad"


class TestStatusEnum(str, enum.Enum):
    __test__ = False  # keep pytest from collecting this when imported in tests

    DRAFT = "draft"
    DEPLOYED = "deployed"
    CLOSED = "closed"


class AttemptStatusEnum(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TerminationReasonEnum(str, enum.Enum):
    SUBMITTED = "submitted"
    TIMEOUT = "timeout"
    INTEGRITY_VIOLATION = "integrity_violation"
    MAX_RESUMES_EXCEEDED = "max_resumes_exceeded"


# ── Questions ─────────────────────────────────────────────────────────────────


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    text: Mapped[str] = mapped_column(Text)
    question_type: Mapped[QuestionTypeEnum] = mapped_column(
        Enum(QuestionTypeEnum, name="question_type_enum", values_callable=_enum_values),
        default=QuestionTypeEnum.MCQ,
    )
    options: Mapped[list | None] = mapped_column(JSON, nullable=True)
    # str for mcq / fillblank, list[str] for msq, None for broad / comprehension
    correct_answer: Mapped[object | None] = mapped_column(JSON, nullable=True)
    marks: Mapped[float] = mapped_column(Float, default=1.0)
    negative_marks: Mapped[float] = mapped_column(Float, default=0.0)
    case_sensitive: Mapped[bool] = mapped_column(Boolean, default=False)
    is_number_range: Mapped[bool] = mapped_column(Boolean, default=False)
    number_range_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    number_range_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    # comprehension passages carry their gradable parts inline
    sub_questions: Mapped[list | None] = mapped_column(JSON, nullable=True)
    topic: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


# ── Tests ─────────────────────────────────────────────────────────────────────


class OnlineTest(Base):
    __tablename__ = "online_tests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TestStatusEnum] = mapped_column(
        Enum(TestStatusEnum, name="test_status_enum", values_callable=_enum_values),
        default=TestStatusEnum.DRAFT,
        index=True,
    )
    question_ids: Mapped[list] = mapped_column(JSON, default=list)
    total_marks: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    config: Mapped[dict] = mapped_column(JSON, default=dict)
    created_by: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    attempts: Mapped[list["Attempt"]] = relationship(back_populates="test")


# ── Attempts ──────────────────────────────────────────────────────────────────


class Attempt(Base):
    """One student's single run of one timed test.

    Every write after creation goes through a conditional UPDATE in
    ``AttemptStore`` keyed on ``status``; ``version`` is bumped by each one.
    """

    __tablename__ = "attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("online_tests.id", ondelete="CASCADE")
    )
    student_id: Mapped[str] = mapped_column(String(255))
    student_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[AttemptStatusEnum] = mapped_column(
        Enum(AttemptStatusEnum, name="attempt_status_enum", values_callable=_enum_values),
        default=AttemptStatusEnum.NOT_STARTED,
    )
    question_snapshot: Mapped[list | None] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    time_spent_ms: Mapped[int] = mapped_column(BigInteger, default=0)
    warning_count: Mapped[int] = mapped_column(Integer, default=0)
    resume_count: Mapped[int] = mapped_column(Integer, default=0)
    termination_reason: Mapped[TerminationReasonEnum | None] = mapped_column(
        Enum(
            TerminationReasonEnum,
            name="termination_reason_enum",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    total_marks: Mapped[float] = mapped_column(Float, default=0.0)
    score: Mapped[float] = mapped_column(Float, default=0.0)
    percentage: Mapped[float] = mapped_column(Float, default=0.0)
    grace_marks: Mapped[float] = mapped_column(Float, default=0.0)
    grace_reason: Mapped[str] = mapped_column(Text, default="")
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    test: Mapped["OnlineTest"] = relationship(back_populates="attempts")
    answers: Mapped[list["AttemptAnswer"]] = relationship(
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="AttemptAnswer.answered_at",
    )

    __table_args__ = (
        UniqueConstraint("test_id", "student_id", name="uq_attempt_test_student"),
        Index("ix_attempts_test_status", "test_id", "status"),
    )


class AttemptAnswer(Base):
    """Latest answer to one question within an attempt (last write wins)."""

    __tablename__ = "attempt_answers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attempts.id", ondelete="CASCADE")
    )
    question_id: Mapped[str] = mapped_column(String(64))
    submitted_value: Mapped[object | None] = mapped_column(JSON, nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    marks_awarded: Mapped[float | None] = mapped_column(Float, nullable=True)
    adjustment_marks: Mapped[float] = mapped_column(Float, default=0.0)
    answered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    attempt: Mapped["Attempt"] = relationship(back_populates="answers")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )


# ── Per-student question sets ─────────────────────────────────────────────────


class QuestionSet(Base):
    """Random subset drawn once for a student and reused on every view."""

    __tablename__ = "question_sets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    source_id: Mapped[str] = mapped_column(String(64))
    student_id: Mapped[str] = mapped_column(String(255))
    question_ids: Mapped[list] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("source_id", "student_id", name="uq_question_set_source_student"),
    )
