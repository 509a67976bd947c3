"""Student-facing test routes: view, start/resume, own question set."""

import logging

from fastapi import APIRouter, Depends

from exam_engine.api.deps import Identity, get_identity, get_session_manager
from exam_engine.api.views import question_views, student_view
from exam_engine.schemas.attempt import AttemptStudentRead
from exam_engine.schemas.test import AttemptSummary, QuestionSetRead, TestInfo
from exam_engine.services.question_repository import load_test_config
from exam_engine.services.session_manager import SessionManager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{test_id}", response_model=TestInfo)
def view_test(
    test_id: str,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
):
    """Test details; a student's first view registers a ``not_started`` attempt."""
    if identity.is_staff:
        test, attempt = manager.tests.get_test(test_id), None
    else:
        test, attempt = manager.ensure_attempt(test_id, identity.student_id, identity.name)

    config = load_test_config(test)
    pool = len(test.question_ids or [])
    return TestInfo(
        id=test.id,
        title=test.title,
        description=test.description,
        total_marks=test.total_marks,
        duration_minutes=manager.duration_ms(test) // 60_000,
        start_time=test.start_time,
        end_time=test.end_time,
        is_open=manager.is_open(test),
        question_count=config.random_count if 0 < config.random_count < pool else pool,
        attempt=(
            AttemptSummary(
                status=attempt.status.value,
                started_at=attempt.started_at,
                time_spent_ms=attempt.time_spent_ms,
                warning_count=attempt.warning_count,
            )
            if attempt is not None
            else None
        ),
    )


@router.post("/{test_id}/attempt", response_model=AttemptStudentRead)
def start_attempt(
    test_id: str,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
):
    """Start the attempt, or resume the one already in progress."""
    attempt = manager.start_or_resume(test_id, identity.student_id, identity.name)
    test = manager.test_for(attempt)
    return student_view(manager, test, attempt, manager.store.list_answers(attempt.id))


@router.get("/{test_id}/question-set", response_model=QuestionSetRead)
def get_question_set(
    test_id: str,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
):
    test, questions = manager.question_set(test_id, identity.student_id)
    return QuestionSetRead(
        source_id=str(test.id),
        student_id=identity.student_id,
        question_ids=[q["id"] for q in questions],
        questions=question_views(questions),
    )
