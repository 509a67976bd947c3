"""Background tasks executed by Celery workers."""

import logging

from sqlalchemy.exc import OperationalError

from exam_engine.celery_app import celery_app
from exam_engine.db.session import get_session_factory
from exam_engine.services.session_manager import SessionManager

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="expire_stale_attempts", max_retries=3)
def expire_stale_attempts(self, test_id: str | None = None) -> dict:
    """Finalise in-progress attempts whose time has run out.

    Scoped to one test when *test_id* is given, otherwise every test with
    attempts in progress. Runs on the beat schedule so abandoned attempts
    are completed even when the student never comes back.
    """
    factory = get_session_factory()
    db = factory()
    try:
        completed = SessionManager(db).expire_stale(test_id)
        return {"success": True, "test_id": test_id, "completed_count": completed}
    except OperationalError as exc:
        logger.exception("Expiry sweep failed (test=%s)", test_id)
        raise self.retry(exc=exc, countdown=10 * (3**self.request.retries))
    finally:
        db.close()
