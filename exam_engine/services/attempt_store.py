"""Persistence boundary for attempts.

All mutations after creation are conditional ``UPDATE`` statements whose
``WHERE`` clause names the status the caller expects. A zero row count means
the attempt moved on (completed, or activated by someone else); the caller
rereads instead of overwriting. The ``UPDATE`` also takes the row lock, so
writes to one attempt are serialised by the database rather than by an
in-process lock.

Transient database errors are retried here, with backoff, and nowhere else.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, TypeVar

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from exam_engine.config import settings
from exam_engine.core.clock import utcnow
from exam_engine.db.models import (
    Attempt,
    AttemptAnswer,
    AttemptStatusEnum,
    TerminationReasonEnum,
)
from exam_engine.errors import ConcurrentModification, NotFound
from exam_engine.services.question_repository import parse_uuid
from exam_engine.services.scoring import Grade, ScoreResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_sleep(attempt: int, base: float, cap: float) -> None:
    raw = min(cap, base * (2 ** attempt))
    jitter = random.uniform(0.5, 1.5)
    time.sleep(raw * jitter)


def _is_transient(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    return isinstance(exc, OperationalError) or bool(exc.connection_invalidated)


def _accumulated_time(add_ms: int, cap_ms: int | None):
    """``time_spent_ms + add_ms`` bounded by *cap_ms*, never decreasing."""
    total = Attempt.time_spent_ms + add_ms
    if cap_ms is None:
        return total
    return case(
        (total <= cap_ms, total),
        (Attempt.time_spent_ms >= cap_ms, Attempt.time_spent_ms),
        else_=cap_ms,
    )


class AttemptStore:
    """One attempt row per (test, student), written through atomic updates."""

    def __init__(self, db: Session):
        self.db = db

    # ── transactions ─────────────────────────────────────────────────────

    def atomic(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run *operation* as one transaction and commit it.

        Transient failures roll back and re-run the whole operation a bounded
        number of times; anything else rolls back and propagates.
        """
        attempt = 0
        while True:
            try:
                result = operation(*args, **kwargs)
                self.db.commit()
                return result
            except DBAPIError as exc:
                self.db.rollback()
                attempt += 1
                if not _is_transient(exc) or attempt >= settings.STORE_RETRY_ATTEMPTS:
                    raise
                logger.warning("store retry attempt=%s err=%s", attempt, exc)
                backoff_sleep(
                    attempt,
                    settings.STORE_RETRY_BASE_SECONDS,
                    settings.STORE_RETRY_CAP_SECONDS,
                )
            except Exception:
                self.db.rollback()
                raise

    # ── reads ────────────────────────────────────────────────────────────

    def get(self, attempt_id: str | uuid.UUID) -> Attempt:
        aid = parse_uuid(attempt_id)
        attempt = (
            self.db.get(Attempt, aid, populate_existing=True) if aid else None
        )
        if attempt is None:
            raise NotFound("Attempt not found")
        return attempt

    def find(self, test_id: uuid.UUID, student_id: str) -> Attempt | None:
        stmt = (
            select(Attempt)
            .where(Attempt.test_id == test_id, Attempt.student_id == student_id)
            .execution_options(populate_existing=True)
        )
        return self.db.scalars(stmt).first()

    def list_for_test(
        self,
        test_id: uuid.UUID,
        status: AttemptStatusEnum | None = None,
    ) -> list[Attempt]:
        stmt = select(Attempt).where(Attempt.test_id == test_id)
        if status is not None:
            stmt = stmt.where(Attempt.status == status)
        return list(self.db.scalars(stmt.order_by(Attempt.created_at)).all())

    def list_in_progress(self, test_ids: Iterable[uuid.UUID] | None = None) -> list[Attempt]:
        stmt = select(Attempt).where(Attempt.status == AttemptStatusEnum.IN_PROGRESS)
        if test_ids is not None:
            stmt = stmt.where(Attempt.test_id.in_(list(test_ids)))
        return list(self.db.scalars(stmt).all())

    def list_answers(self, attempt_id: uuid.UUID) -> list[AttemptAnswer]:
        stmt = (
            select(AttemptAnswer)
            .where(AttemptAnswer.attempt_id == attempt_id)
            .order_by(AttemptAnswer.answered_at)
            .execution_options(populate_existing=True)
        )
        return list(self.db.scalars(stmt).all())

    def get_answer(self, attempt_id: uuid.UUID, question_id: str) -> AttemptAnswer | None:
        stmt = select(AttemptAnswer).where(
            AttemptAnswer.attempt_id == attempt_id,
            AttemptAnswer.question_id == question_id,
        )
        return self.db.scalars(stmt).first()

    # ── creation ─────────────────────────────────────────────────────────

    def create_if_absent(
        self,
        test_id: uuid.UUID,
        student_id: str,
        student_name: str | None = None,
    ) -> tuple[Attempt, bool]:
        """Find-or-create the ``not_started`` attempt for a pair.

        Returns ``(attempt, created)``. Losing the insert race to another
        request is not an error: the winner's row is reread and returned.
        """
        existing = self.find(test_id, student_id)
        if existing is not None:
            return existing, False

        def _insert() -> Attempt:
            attempt = Attempt(
                test_id=test_id,
                student_id=student_id,
                student_name=student_name,
                status=AttemptStatusEnum.NOT_STARTED,
            )
            self.db.add(attempt)
            self.db.flush()
            return attempt

        try:
            attempt = self.atomic(_insert)
        except IntegrityError:
            logger.info(
                "Attempt creation race lost for test=%s student=%s, rereading",
                test_id, student_id,
            )
            winner = self.find(test_id, student_id)
            if winner is None:
                raise ConcurrentModification()
            return winner, False

        self.db.refresh(attempt)
        logger.info("Attempt %s created for test=%s student=%s", attempt.id, test_id, student_id)
        return attempt, True

    # ── conditional writes (run inside atomic) ────────────────────────────

    def _conditional_update(
        self,
        attempt_id: uuid.UUID,
        expected: AttemptStatusEnum,
        **values: Any,
    ) -> bool:
        values.setdefault("version", Attempt.version + 1)
        values.setdefault("updated_at", utcnow())
        stmt = (
            update(Attempt)
            .where(Attempt.id == attempt_id, Attempt.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def activate(
        self,
        attempt_id: uuid.UUID,
        snapshot: list[dict],
        total_marks: float,
        started_at: datetime,
    ) -> bool:
        """``not_started → in_progress``; the snapshot and start time are written here only."""
        return self._conditional_update(
            attempt_id,
            AttemptStatusEnum.NOT_STARTED,
            status=AttemptStatusEnum.IN_PROGRESS,
            question_snapshot=snapshot,
            total_marks=total_marks,
            started_at=started_at,
        )

    def lock_active(
        self,
        attempt_id: uuid.UUID,
        add_time_ms: int = 0,
        time_cap_ms: int | None = None,
    ) -> bool:
        """Claim the row for a write while it is ``in_progress``."""
        return self._conditional_update(
            attempt_id,
            AttemptStatusEnum.IN_PROGRESS,
            time_spent_ms=_accumulated_time(add_time_ms, time_cap_ms),
        )

    def _increment(self, attempt_id: uuid.UUID, column) -> int | None:
        if not self._conditional_update(
            attempt_id, AttemptStatusEnum.IN_PROGRESS, **{column.key: column + 1}
        ):
            return None
        # row is locked by the update above until commit
        return self.db.scalar(select(column).where(Attempt.id == attempt_id))

    def increment_warning(self, attempt_id: uuid.UUID) -> int | None:
        return self._increment(attempt_id, Attempt.warning_count)

    def increment_resume(self, attempt_id: uuid.UUID) -> int | None:
        return self._increment(attempt_id, Attempt.resume_count)

    def complete(
        self,
        attempt_id: uuid.UUID,
        reason: TerminationReasonEnum,
        submitted_at: datetime,
        add_time_ms: int = 0,
        time_cap_ms: int | None = None,
    ) -> bool:
        """``in_progress → completed``. Normal submissions leave no termination reason."""
        return self._conditional_update(
            attempt_id,
            AttemptStatusEnum.IN_PROGRESS,
            status=AttemptStatusEnum.COMPLETED,
            submitted_at=submitted_at,
            termination_reason=None if reason == TerminationReasonEnum.SUBMITTED else reason,
            time_spent_ms=_accumulated_time(add_time_ms, time_cap_ms),
        )

    def lock_completed(self, attempt_id: uuid.UUID, **values: Any) -> bool:
        """Claim a completed attempt for the staff adjustment path."""
        return self._conditional_update(attempt_id, AttemptStatusEnum.COMPLETED, **values)

    def save_score(self, attempt_id: uuid.UUID, result: ScoreResult) -> None:
        self.db.execute(
            update(Attempt)
            .where(Attempt.id == attempt_id, Attempt.status == AttemptStatusEnum.COMPLETED)
            .values(score=result.score, percentage=result.percentage)
            .execution_options(synchronize_session=False)
        )

    def upsert_answer(
        self,
        attempt_id: uuid.UUID,
        question_id: str,
        value: Any,
        grade: Grade,
        answered_at: datetime,
    ) -> AttemptAnswer:
        """Overwrite the answer for one question; caller holds the row lock."""
        answer = self.get_answer(attempt_id, question_id)
        if answer is None:
            answer = AttemptAnswer(attempt_id=attempt_id, question_id=question_id)
            self.db.add(answer)
        answer.submitted_value = value
        answer.is_correct = grade.is_correct
        answer.marks_awarded = grade.marks_awarded
        answer.answered_at = answered_at
        self.db.flush()
        return answer

    def delete_for_students(self, test_id: uuid.UUID, student_ids: list[str]) -> int:
        attempt_ids = select(Attempt.id).where(
            Attempt.test_id == test_id, Attempt.student_id.in_(student_ids)
        )
        self.db.execute(
            delete(AttemptAnswer)
            .where(AttemptAnswer.attempt_id.in_(attempt_ids))
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(
            delete(Attempt)
            .where(Attempt.test_id == test_id, Attempt.student_id.in_(student_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
