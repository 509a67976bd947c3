"""Staff routes: results roster, adjustments, grace marks, expiry sweep, reassign."""

import logging

from fastapi import APIRouter, Depends

from exam_engine.api.deps import Identity, get_session_manager, require_staff
from exam_engine.api.views import staff_view
from exam_engine.schemas.attempt import (
    AdjustmentRequest,
    AttemptStaffRead,
    ExpireResult,
    GraceRequest,
    GraceResult,
    ReassignRequest,
    ReassignResult,
    TestResults,
)
from exam_engine.services.session_manager import SessionManager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/tests/{test_id}/results", response_model=TestResults)
def test_results(
    test_id: str,
    manager: SessionManager = Depends(get_session_manager),
    _staff: Identity = Depends(require_staff),
):
    """Completed, in-progress and not-started students with score analytics."""
    return manager.results(test_id)


@router.post("/attempts/{attempt_id}/adjustments", response_model=AttemptStaffRead)
def adjust_attempt(
    attempt_id: str,
    body: AdjustmentRequest,
    manager: SessionManager = Depends(get_session_manager),
    staff: Identity = Depends(require_staff),
):
    """Per-question mark corrections and manual grading; rescored on save."""
    attempt = manager.apply_adjustments(attempt_id, body.adjustments)
    logger.info("Attempt %s adjusted by %s", attempt.id, staff.student_id)
    return staff_view(attempt, manager.store.list_answers(attempt.id))


@router.post("/tests/{test_id}/grace", response_model=GraceResult)
def award_grace(
    test_id: str,
    body: GraceRequest,
    manager: SessionManager = Depends(get_session_manager),
    _staff: Identity = Depends(require_staff),
):
    updated = manager.award_grace(test_id, body.grace_marks, body.reason)
    return GraceResult(test_id=manager.tests.get_test(test_id).id, updated=updated)


@router.post("/tests/{test_id}/expire", response_model=ExpireResult)
def expire_attempts(
    test_id: str,
    manager: SessionManager = Depends(get_session_manager),
    _staff: Identity = Depends(require_staff),
):
    """Finalise this test's in-progress attempts whose time has run out."""
    return ExpireResult(completed_count=manager.expire_stale(test_id))


@router.delete("/tests/{test_id}/attempts", response_model=ReassignResult)
def reassign_test(
    test_id: str,
    body: ReassignRequest,
    manager: SessionManager = Depends(get_session_manager),
    _staff: Identity = Depends(require_staff),
):
    """Clear attempts for the listed students so they can take the test again."""
    return ReassignResult(deleted=manager.reassign(test_id, body.student_ids))
