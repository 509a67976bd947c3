"""Attempt schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from exam_engine.schemas.test import QuestionView, SnapshotQuestion


# ── Requests ──────────────────────────────────────────────────────────────────


class AnswerSubmit(BaseModel):
    """POST /api/attempts/{id}/answers: one answer, last write wins."""

    question_id: str
    value: Any = None
    elapsed_ms: int = 0  # client-reported active time since the previous report


class Heartbeat(BaseModel):
    """POST /api/attempts/{id}/heartbeat."""

    elapsed_ms: int = 0


class FinalizeRequest(BaseModel):
    """POST /api/attempts/{id}/finalize."""

    elapsed_ms: int = 0


# ── Student-facing responses ──────────────────────────────────────────────────


class StudentAnswerRead(BaseModel):
    question_id: str
    submitted_value: Any = None
    answered_at: datetime


class AnswerConfirmation(BaseModel):
    attempt_id: uuid.UUID
    question_id: str
    submitted_value: Any = None
    answered_at: datetime
    time_spent_ms: int
    remaining_ms: int


class WarningResult(BaseModel):
    attempt_id: uuid.UUID
    warning_count: int
    threshold: int
    status: str
    termination_reason: str | None = None


class AttemptStudentRead(BaseModel):
    """Attempt state for the student taking the test."""

    id: uuid.UUID
    test_id: uuid.UUID
    status: str
    started_at: datetime | None = None
    submitted_at: datetime | None = None
    time_spent_ms: int
    remaining_ms: int | None = None
    warning_count: int
    termination_reason: str | None = None
    questions: list[QuestionView] = []
    answers: list[StudentAnswerRead] = []
    score: float | None = None
    total_marks: float | None = None
    percentage: float | None = None


class AnswerResult(BaseModel):
    question_id: str
    submitted_value: Any = None
    is_correct: bool | None = None
    marks: float | None = None  # awarded + adjustment


class AttemptResult(BaseModel):
    """Final score once the attempt is completed."""

    attempt_id: uuid.UUID
    status: str
    score: float | None = None
    total_marks: float | None = None
    percentage: float | None = None
    passed: bool | None = None
    grace_marks: float = 0.0
    grace_reason: str = ""
    termination_reason: str | None = None
    submitted_at: datetime | None = None
    results_pending: bool = False
    message: str | None = None
    answers: list[AnswerResult] = []


# ── Staff-facing responses ────────────────────────────────────────────────────


class StaffAnswerRead(BaseModel):
    question_id: str
    submitted_value: Any = None
    is_correct: bool | None = None
    marks_awarded: float | None = None
    adjustment_marks: float = 0.0
    answered_at: datetime

    model_config = {"from_attributes": True}


class AttemptStaffRead(BaseModel):
    """Full attempt record, including correct answers and adjustments."""

    id: uuid.UUID
    test_id: uuid.UUID
    student_id: str
    student_name: str | None = None
    status: str
    started_at: datetime | None = None
    submitted_at: datetime | None = None
    time_spent_ms: int
    warning_count: int
    resume_count: int
    termination_reason: str | None = None
    total_marks: float
    score: float
    percentage: float
    grace_marks: float
    grace_reason: str
    version: int
    questions: list[SnapshotQuestion] = []
    answers: list[StaffAnswerRead] = []


class Adjustment(BaseModel):
    """Per-question manual correction; ``marks_awarded`` only for free-text."""

    question_id: str
    adjustment_marks: float | None = None
    marks_awarded: float | None = None
    is_correct: bool | None = None


class AdjustmentRequest(BaseModel):
    adjustments: list[Adjustment] = Field(..., min_length=1)


class GraceRequest(BaseModel):
    grace_marks: float = Field(..., gt=0)
    reason: str | None = None


class GraceResult(BaseModel):
    test_id: uuid.UUID
    updated: int


class ExpireResult(BaseModel):
    completed_count: int


class ReassignRequest(BaseModel):
    student_ids: list[str] = Field(..., min_length=1)


class ReassignResult(BaseModel):
    deleted: int


# ── Staff results roster ──────────────────────────────────────────────────────


class CompletedEntry(BaseModel):
    attempt_id: uuid.UUID
    student_id: str
    student_name: str | None = None
    score: float
    percentage: float
    submitted_at: datetime | None = None
    time_spent_ms: int
    grace_marks: float
    warning_count: int
    termination_reason: str | None = None


class InProgressEntry(BaseModel):
    attempt_id: uuid.UUID
    student_id: str
    student_name: str | None = None
    started_at: datetime | None = None
    time_elapsed_ms: int
    warning_count: int


class NotStartedEntry(BaseModel):
    student_id: str
    student_name: str | None = None


class ResultsAnalytics(BaseModel):
    total_students: int
    completed_count: int
    in_progress_count: int
    not_started_count: int
    average_score: float | None = None
    highest_score: float | None = None
    lowest_score: float | None = None
    median_score: float | None = None
    average_percentage: float | None = None
    pass_rate: float | None = None
    passed_count: int = 0
    failed_count: int = 0


class TestResults(BaseModel):
    __test__ = False

    test_id: uuid.UUID
    title: str
    completed: list[CompletedEntry]
    in_progress: list[InProgressEntry]
    not_started: list[NotStartedEntry]
    analytics: ResultsAnalytics
