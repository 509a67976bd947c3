"""Role-filtered renderings of an attempt.

Students never see correct answers, numeric range bounds or adjustment
fields; staff see the full record.
"""

from exam_engine.db.models import Attempt, AttemptAnswer, AttemptStatusEnum, OnlineTest
from exam_engine.schemas.attempt import (
    AttemptStaffRead,
    AttemptStudentRead,
    StaffAnswerRead,
    StudentAnswerRead,
)
from exam_engine.schemas.test import QuestionView, SnapshotQuestion
from exam_engine.services.session_manager import SessionManager


def _reason(attempt: Attempt) -> str | None:
    return attempt.termination_reason.value if attempt.termination_reason else None


def question_views(snapshot: list[dict] | None) -> list[QuestionView]:
    # extra snapshot keys (correct_answer, number_range_*) are dropped on validation
    return [QuestionView.model_validate(q) for q in snapshot or []]


def student_view(
    manager: SessionManager,
    test: OnlineTest,
    attempt: Attempt,
    answers: list[AttemptAnswer],
) -> AttemptStudentRead:
    completed = attempt.status == AttemptStatusEnum.COMPLETED
    view = AttemptStudentRead(
        id=attempt.id,
        test_id=attempt.test_id,
        status=attempt.status.value,
        started_at=attempt.started_at,
        submitted_at=attempt.submitted_at,
        time_spent_ms=attempt.time_spent_ms,
        warning_count=attempt.warning_count,
        termination_reason=_reason(attempt),
        questions=question_views(attempt.question_snapshot),
        answers=[
            StudentAnswerRead(
                question_id=a.question_id,
                submitted_value=a.submitted_value,
                answered_at=a.answered_at,
            )
            for a in answers
        ],
    )
    if attempt.status == AttemptStatusEnum.IN_PROGRESS:
        view.remaining_ms = manager.remaining_ms(test, attempt)
    if completed:
        view.remaining_ms = 0
    return view


def staff_view(attempt: Attempt, answers: list[AttemptAnswer]) -> AttemptStaffRead:
    return AttemptStaffRead(
        id=attempt.id,
        test_id=attempt.test_id,
        student_id=attempt.student_id,
        student_name=attempt.student_name,
        status=attempt.status.value,
        started_at=attempt.started_at,
        submitted_at=attempt.submitted_at,
        time_spent_ms=attempt.time_spent_ms,
        warning_count=attempt.warning_count,
        resume_count=attempt.resume_count,
        termination_reason=_reason(attempt),
        total_marks=attempt.total_marks,
        score=attempt.score,
        percentage=attempt.percentage,
        grace_marks=attempt.grace_marks,
        grace_reason=attempt.grace_reason,
        version=attempt.version,
        questions=[SnapshotQuestion.model_validate(q) for q in attempt.question_snapshot or []],
        answers=[StaffAnswerRead.model_validate(a) for a in answers],
    )
