"""Attempt routes used while a test is being taken."""

import logging
import uuid

from fastapi import APIRouter, Depends

from exam_engine.api.deps import Identity, get_identity, get_session_manager
from exam_engine.api.views import staff_view, student_view
from exam_engine.schemas.attempt import (
    AnswerConfirmation,
    AnswerSubmit,
    AttemptResult,
    AttemptStaffRead,
    AttemptStudentRead,
    FinalizeRequest,
    Heartbeat,
    WarningResult,
)
from exam_engine.services.rate_limiter import require_attempt_rate_limit
from exam_engine.services.results import student_result
from exam_engine.services.session_manager import SessionManager

logger = logging.getLogger(__name__)
router = APIRouter()


def _owner(identity: Identity) -> str | None:
    """Students are scoped to their own attempts; staff see any."""
    return None if identity.is_staff else identity.student_id


@router.get("/{attempt_id}", response_model=None)
def get_attempt(
    attempt_id: str,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
) -> AttemptStudentRead | AttemptStaffRead:
    """Full attempt record, filtered by the caller's role."""
    attempt = manager.load_attempt(attempt_id, _owner(identity))
    answers = manager.store.list_answers(attempt.id)
    if identity.is_staff:
        return staff_view(attempt, answers)
    return student_view(manager, manager.test_for(attempt), attempt, answers)


@router.post("/{attempt_id}/answers", response_model=AnswerConfirmation)
def submit_answer(
    attempt_id: str,
    body: AnswerSubmit,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
    _rl=Depends(require_attempt_rate_limit),
):
    """Record one answer; resubmitting a question overwrites the previous value."""
    attempt, answer = manager.submit_answer(
        attempt_id,
        body.question_id,
        body.value,
        student_id=identity.student_id,
        elapsed_ms=body.elapsed_ms,
    )
    return AnswerConfirmation(
        attempt_id=attempt.id,
        question_id=answer.question_id,
        submitted_value=answer.submitted_value,
        answered_at=answer.answered_at,
        time_spent_ms=attempt.time_spent_ms,
        remaining_ms=manager.remaining_ms(manager.test_for(attempt), attempt),
    )


@router.post("/{attempt_id}/heartbeat", response_model=AttemptStudentRead)
def heartbeat(
    attempt_id: str,
    body: Heartbeat,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
    _rl=Depends(require_attempt_rate_limit),
):
    attempt = manager.heartbeat(attempt_id, identity.student_id, body.elapsed_ms)
    return student_view(
        manager, manager.test_for(attempt), attempt, manager.store.list_answers(attempt.id)
    )


@router.post("/{attempt_id}/warnings", response_model=WarningResult)
def record_warning(
    attempt_id: str,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
    _rl=Depends(require_attempt_rate_limit),
):
    """Report an integrity event (tab switch, focus loss, copy)."""
    attempt, outcome, threshold = manager.record_warning(attempt_id, identity.student_id)
    return WarningResult(
        attempt_id=attempt.id,
        warning_count=outcome.warning_count,
        threshold=threshold,
        status=attempt.status.value,
        termination_reason=(
            attempt.termination_reason.value if attempt.termination_reason else None
        ),
    )


@router.post("/{attempt_id}/finalize", response_model=AttemptResult)
def finalize_attempt(
    attempt_id: str,
    body: FinalizeRequest | None = None,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
):
    """Submit the attempt. Repeating the call returns the same result."""
    attempt = manager.finalize(
        attempt_id,
        student_id=_owner(identity),
        elapsed_ms=body.elapsed_ms if body else 0,
    )
    return _result(manager, attempt.id)


@router.get("/{attempt_id}/result", response_model=AttemptResult)
def get_result(
    attempt_id: str,
    identity: Identity = Depends(get_identity),
    manager: SessionManager = Depends(get_session_manager),
):
    attempt = manager.load_attempt(attempt_id, _owner(identity))
    return _result(manager, attempt.id)


def _result(manager: SessionManager, attempt_id: uuid.UUID) -> AttemptResult:
    attempt = manager.store.get(attempt_id)
    return student_result(
        attempt,
        manager.store.list_answers(attempt.id),
        manager.test_for(attempt),
        manager.timer.now(),
    )
