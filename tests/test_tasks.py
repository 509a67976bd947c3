"""Tests for the Celery expiry sweep task and its schedule."""

from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from exam_engine.celery_app import celery_app
from exam_engine.core.clock import utcnow
from exam_engine.db.models import Attempt, AttemptStatusEnum, TerminationReasonEnum
from exam_engine.services.session_manager import SessionManager
from exam_engine.tasks import expire_stale_attempts


def _run(db, test_id=None) -> dict:
    factory = sessionmaker(bind=db.get_bind(), autoflush=False)
    with patch("exam_engine.tasks.get_session_factory", return_value=factory):
        return expire_stale_attempts.run(test_id)


class TestExpireStaleAttempts:
    def test_completes_expired_attempts(self, db, scenario_test):
        manager = SessionManager(db)
        stale = manager.start_or_resume(scenario_test.id, "s1")
        fresh = manager.start_or_resume(scenario_test.id, "s2")
        db.execute(
            update(Attempt)
            .where(Attempt.id == stale.id)
            .values(started_at=utcnow() - timedelta(minutes=45))
        )
        db.commit()

        result = _run(db)

        assert result == {"success": True, "test_id": None, "completed_count": 1}
        assert manager.load_attempt(stale.id).termination_reason == TerminationReasonEnum.TIMEOUT
        assert manager.load_attempt(fresh.id).status == AttemptStatusEnum.IN_PROGRESS

    def test_scoped_to_one_test(self, db, scenario_test):
        result = _run(db, str(scenario_test.id))
        assert result["test_id"] == str(scenario_test.id)
        assert result["completed_count"] == 0

    def test_registered_on_beat_schedule(self):
        entry = celery_app.conf.beat_schedule["expire-stale-attempts"]
        assert entry["task"] == "expire_stale_attempts"
        assert expire_stale_attempts.name == "expire_stale_attempts"
