"""Attempt lifecycle: ``not_started → in_progress → completed``.

``SessionManager`` is the entry point for every attempt operation. It
delegates selection to ``QuestionSelector`` (once, at activation), answers to
``AnswerRecorder``, time to ``TimeTracker``, warnings to ``AntiCheatMonitor``
and scores to the scoring functions. Each write is a single short
transaction run through ``AttemptStore.atomic``; state conflicts surface as
zero-row conditional updates and are resolved by rereading.
"""

import logging
import random
import uuid
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from exam_engine.config import settings
from exam_engine.core.clock import as_utc, utcnow
from exam_engine.db.models import (
    Attempt,
    AttemptAnswer,
    AttemptStatusEnum,
    OnlineTest,
    TerminationReasonEnum,
    TestStatusEnum,
)
from exam_engine.errors import (
    AttemptAlreadyCompleted,
    AttemptNotActive,
    ConcurrentModification,
    InvalidAnswerTarget,
    NotFound,
    TestNotAvailable,
)
from exam_engine.schemas.attempt import Adjustment, TestResults
from exam_engine.schemas.test import TestConfig
from exam_engine.services.answer_recorder import AnswerRecorder, resolve_target
from exam_engine.services.anti_cheat import AntiCheatMonitor, WarningOutcome
from exam_engine.services.attempt_store import AttemptStore
from exam_engine.services.question_repository import (
    QuestionRepository,
    TestProvider,
    load_test_config,
    to_snapshot,
)
from exam_engine.services.question_selector import QuestionSelector
from exam_engine.services.results import build_results
from exam_engine.services.scoring import (
    MANUAL_TYPES,
    ScoreResult,
    compute_score,
    served_total_marks,
)
from exam_engine.services.time_tracker import TimeTracker

logger = logging.getLogger(__name__)


def warning_policy(config: TestConfig) -> tuple[int, bool]:
    """(threshold, terminal) with per-test values overriding settings."""
    threshold = config.warning_threshold or settings.WARNING_THRESHOLD
    terminal = config.terminate_on_warning_threshold
    if terminal is None:
        terminal = settings.TERMINATE_ON_WARNING_THRESHOLD
    return threshold, terminal


def resume_limit(config: TestConfig) -> int | None:
    if config.max_resumes is not None:
        return config.max_resumes
    return settings.MAX_RESUMES


class SessionManager:
    def __init__(
        self,
        db: Session,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.store = AttemptStore(db)
        self.tests = TestProvider(db)
        self.questions = QuestionRepository(db)
        self.selector = QuestionSelector(db, rng)
        self.timer = TimeTracker(clock)
        self.recorder = AnswerRecorder(self.store)

    # ── lookups ───────────────────────────────────────────────────────────

    def load_attempt(self, attempt_id: str | uuid.UUID, student_id: str | None = None) -> Attempt:
        """Fetch an attempt; a student may only see their own."""
        attempt = self.store.get(attempt_id)
        if student_id is not None and attempt.student_id != student_id:
            raise NotFound("Attempt not found")
        return attempt

    def test_for(self, attempt: Attempt) -> OnlineTest:
        return self.tests.get_test(attempt.test_id)

    def is_open(self, test: OnlineTest, now: datetime | None = None) -> bool:
        if test.status != TestStatusEnum.DEPLOYED:
            return False
        now = now or self.timer.now()
        start = as_utc(test.start_time)
        end = as_utc(test.end_time)
        if start is not None and now < start:
            return False
        return end is None or now <= end

    def duration_ms(self, test: OnlineTest) -> int:
        return self.timer.duration_ms(test)

    def remaining_ms(self, test: OnlineTest, attempt: Attempt) -> int:
        return self.timer.remaining_ms(
            attempt, self.duration_ms(test), end_time=test.end_time
        )

    def _expired(self, test: OnlineTest, attempt: Attempt, now: datetime) -> bool:
        return self.timer.is_expired(
            attempt, self.duration_ms(test), now=now, end_time=test.end_time
        )

    # ── creation / activation ─────────────────────────────────────────────

    def ensure_attempt(
        self,
        test_id: str | uuid.UUID,
        student_id: str,
        student_name: str | None = None,
    ) -> tuple[OnlineTest, Attempt | None]:
        """Lazy view: viewing a deployed test creates the ``not_started`` attempt."""
        test = self.tests.get_test(test_id)
        if test.status == TestStatusEnum.DRAFT:
            raise TestNotAvailable()
        if test.status != TestStatusEnum.DEPLOYED:
            return test, self.store.find(test.id, student_id)
        attempt, _ = self.store.create_if_absent(test.id, student_id, student_name)
        return test, attempt

    def start_or_resume(
        self,
        test_id: str | uuid.UUID,
        student_id: str,
        student_name: str | None = None,
    ) -> Attempt:
        """Activate the student's attempt, or resume the one in progress.

        Concurrent calls for one (test, student) converge on a single
        attempt: the unique constraint settles creation and the
        ``WHERE status = 'not_started'`` update settles activation; losers
        reread the winner's row.
        """
        test = self.tests.get_test(test_id)
        attempt = self.store.find(test.id, student_id)

        if attempt is None or attempt.status == AttemptStatusEnum.NOT_STARTED:
            now = self.timer.now()
            if not self.is_open(test, now):
                raise TestNotAvailable()
            if attempt is None:
                attempt, _ = self.store.create_if_absent(test.id, student_id, student_name)
            if attempt.status == AttemptStatusEnum.NOT_STARTED:
                return self._activate(test, attempt, now)
            # another request got there first; take its row as-is
            if attempt.status == AttemptStatusEnum.IN_PROGRESS:
                return attempt

        if attempt.status == AttemptStatusEnum.COMPLETED:
            raise AttemptAlreadyCompleted()
        return self._resume(test, attempt)

    def _activate(self, test: OnlineTest, attempt: Attempt, now: datetime) -> Attempt:
        snapshot = self.selector.build_snapshot(test, attempt.student_id)
        total = served_total_marks(snapshot) or (test.total_marks or 0.0)
        won = self.store.atomic(self.store.activate, attempt.id, snapshot, total, now)
        attempt = self.store.get(attempt.id)
        if won:
            logger.info(
                "Attempt %s started: test=%s student=%s questions=%d",
                attempt.id, test.id, attempt.student_id, len(snapshot),
            )
        else:
            logger.info("Attempt %s activation race lost, using existing snapshot", attempt.id)
            if attempt.status == AttemptStatusEnum.COMPLETED:
                raise AttemptAlreadyCompleted()
        return attempt

    def _resume(self, test: OnlineTest, attempt: Attempt) -> Attempt:
        now = self.timer.now()
        if self._expired(test, attempt, now):
            self._finalize_now(test, attempt, TerminationReasonEnum.TIMEOUT, now)
            raise AttemptAlreadyCompleted()

        limit = resume_limit(load_test_config(test))
        if limit is not None:
            count = self.store.atomic(self.store.increment_resume, attempt.id)
            if count is None:
                raise AttemptAlreadyCompleted()
            if count > limit:
                logger.warning(
                    "Attempt %s exceeded resume limit (%d > %d)", attempt.id, count, limit
                )
                self._finalize_now(
                    test, attempt, TerminationReasonEnum.MAX_RESUMES_EXCEEDED, now
                )
                raise AttemptAlreadyCompleted(
                    "Maximum number of resumes exceeded. This test has been submitted."
                )
            attempt = self.store.get(attempt.id)

        logger.info("Attempt %s resumed (resume_count=%d)", attempt.id, attempt.resume_count)
        return attempt

    # ── finalisation ──────────────────────────────────────────────────────

    def _rescore(self, attempt_id: uuid.UUID) -> ScoreResult:
        """Recompute the stored score; caller holds the row lock."""
        row = self.db.execute(
            select(Attempt.grace_marks, Attempt.total_marks).where(Attempt.id == attempt_id)
        ).one()
        result = compute_score(self.store.list_answers(attempt_id), row.grace_marks, row.total_marks)
        self.store.save_score(attempt_id, result)
        return result

    def _finalize_now(
        self,
        test: OnlineTest,
        attempt: Attempt,
        reason: TerminationReasonEnum,
        now: datetime,
        delta_ms: int = 0,
    ) -> tuple[Attempt, bool]:
        cap = self.timer.active_cap_ms(attempt, now, test.end_time)
        delta = self.timer.clip_delta(delta_ms)

        def _complete() -> ScoreResult | None:
            if not self.store.complete(attempt.id, reason, now, delta, cap):
                return None
            return self._rescore(attempt.id)

        result = self.store.atomic(_complete)
        if result is not None:
            logger.info(
                "Attempt %s finalised: reason=%s score=%s percentage=%s",
                attempt.id, reason.value, result.score, result.percentage,
            )
        return self.store.get(attempt.id), result is not None

    def finalize(
        self,
        attempt_id: str | uuid.UUID,
        reason: TerminationReasonEnum = TerminationReasonEnum.SUBMITTED,
        student_id: str | None = None,
        elapsed_ms: int = 0,
    ) -> Attempt:
        """Complete and score the attempt. Completed attempts are returned unchanged."""
        attempt = self.load_attempt(attempt_id, student_id)
        if attempt.status == AttemptStatusEnum.COMPLETED:
            return attempt
        if attempt.status == AttemptStatusEnum.NOT_STARTED:
            raise AttemptNotActive("This test has not been started.")
        test = self.test_for(attempt)
        now = self.timer.now()
        if reason == TerminationReasonEnum.SUBMITTED and self._expired(test, attempt, now):
            reason, elapsed_ms = TerminationReasonEnum.TIMEOUT, 0
        attempt, _ = self._finalize_now(test, attempt, reason, now, elapsed_ms)
        return attempt

    # ── active phase ──────────────────────────────────────────────────────

    def _require_active(self, test: OnlineTest, attempt: Attempt, now: datetime) -> None:
        """``AttemptNotActive`` unless in progress; expiry finalises with timeout first."""
        if attempt.status != AttemptStatusEnum.IN_PROGRESS:
            raise AttemptNotActive()
        if self._expired(test, attempt, now):
            self._finalize_now(test, attempt, TerminationReasonEnum.TIMEOUT, now)
            raise AttemptNotActive("Time is up. This test has been submitted.")

    def submit_answer(
        self,
        attempt_id: str | uuid.UUID,
        question_id: str,
        value: Any,
        student_id: str | None = None,
        elapsed_ms: int = 0,
    ) -> tuple[Attempt, AttemptAnswer]:
        attempt = self.load_attempt(attempt_id, student_id)
        test = self.test_for(attempt)
        now = self.timer.now()
        self._require_active(test, attempt, now)

        question = resolve_target(attempt.question_snapshot, question_id)
        cap = self.timer.active_cap_ms(attempt, now, test.end_time)
        delta = self.timer.clip_delta(elapsed_ms)

        def _record() -> AttemptAnswer | None:
            # the conditional update takes the row lock before the upsert
            if not self.store.lock_active(attempt.id, delta, cap):
                return None
            return self.recorder.record(attempt.id, question, value, now)

        answer = self.store.atomic(_record)
        if answer is None:
            raise AttemptNotActive()
        return self.store.get(attempt.id), answer

    def heartbeat(
        self,
        attempt_id: str | uuid.UUID,
        student_id: str | None = None,
        elapsed_ms: int = 0,
    ) -> Attempt:
        """Add active time. An expired attempt is finalised and returned completed."""
        attempt = self.load_attempt(attempt_id, student_id)
        if attempt.status != AttemptStatusEnum.IN_PROGRESS:
            raise AttemptNotActive()
        test = self.test_for(attempt)
        now = self.timer.now()
        if self._expired(test, attempt, now):
            attempt, _ = self._finalize_now(
                test, attempt, TerminationReasonEnum.TIMEOUT, now, elapsed_ms
            )
            return attempt

        cap = self.timer.active_cap_ms(attempt, now, test.end_time)
        if not self.store.atomic(
            self.store.lock_active, attempt.id, self.timer.clip_delta(elapsed_ms), cap
        ):
            raise AttemptNotActive()
        return self.store.get(attempt.id)

    def record_warning(
        self,
        attempt_id: str | uuid.UUID,
        student_id: str | None = None,
    ) -> tuple[Attempt, WarningOutcome, int]:
        """Count one integrity warning; a terminal breach finalises the attempt.

        Returns ``(attempt, outcome, threshold)``.
        """
        attempt = self.load_attempt(attempt_id, student_id)
        test = self.test_for(attempt)
        now = self.timer.now()
        self._require_active(test, attempt, now)

        threshold, terminal = warning_policy(load_test_config(test))
        monitor = AntiCheatMonitor(self.store, threshold, terminal)
        outcome = self.store.atomic(monitor.record_warning, attempt.id)
        if outcome is None:
            raise AttemptNotActive()

        if outcome.terminate:
            attempt, _ = self._finalize_now(
                test, attempt, TerminationReasonEnum.INTEGRITY_VIOLATION, now
            )
        else:
            attempt = self.store.get(attempt.id)
        return attempt, outcome, threshold

    # ── staff operations ──────────────────────────────────────────────────

    def apply_adjustments(
        self,
        attempt_id: str | uuid.UUID,
        adjustments: list[Adjustment],
    ) -> Attempt:
        """Post-hoc per-question corrections on a completed attempt, then rescore.

        ``marks_awarded`` grades free-text answers; other types take only
        ``adjustment_marks``. The answer set itself is never reopened.
        """
        attempt = self.store.get(attempt_id)
        if attempt.status != AttemptStatusEnum.COMPLETED:
            raise AttemptNotActive("Adjustments apply to submitted attempts only.")
        for adj in adjustments:
            question = resolve_target(attempt.question_snapshot, adj.question_id)
            if adj.marks_awarded is not None and question.get("question_type") not in MANUAL_TYPES:
                raise InvalidAnswerTarget(
                    "Manual marks apply to free-text questions only.",
                    question_id=adj.question_id,
                )

        def _apply() -> ScoreResult:
            if not self.store.lock_completed(attempt.id):
                raise ConcurrentModification()
            for adj in adjustments:
                answer = self.store.get_answer(attempt.id, adj.question_id)
                if answer is None:
                    raise InvalidAnswerTarget(
                        "Question was not answered in this attempt.",
                        question_id=adj.question_id,
                    )
                if adj.adjustment_marks is not None:
                    answer.adjustment_marks = adj.adjustment_marks
                if adj.marks_awarded is not None:
                    answer.marks_awarded = adj.marks_awarded
                if adj.is_correct is not None:
                    answer.is_correct = adj.is_correct
            self.db.flush()
            return self._rescore(attempt.id)

        result = self.store.atomic(_apply)
        logger.info(
            "Attempt %s adjusted (%d answers): score=%s percentage=%s",
            attempt.id, len(adjustments), result.score, result.percentage,
        )
        return self.store.get(attempt.id)

    def award_grace(self, test_id: str | uuid.UUID, marks: float, reason: str | None = None) -> int:
        """Add grace marks to every completed attempt of a test; returns how many changed."""
        test = self.tests.get_test(test_id)
        values: dict[str, Any] = {"grace_marks": Attempt.grace_marks + marks}
        if reason:
            values["grace_reason"] = case(
                (Attempt.grace_reason == "", reason),
                else_=Attempt.grace_reason + "; " + reason,
            )

        def _grace(attempt_id: uuid.UUID) -> bool:
            if not self.store.lock_completed(attempt_id, **values):
                return False
            self._rescore(attempt_id)
            return True

        updated = 0
        for attempt in self.store.list_for_test(test.id, AttemptStatusEnum.COMPLETED):
            if self.store.atomic(_grace, attempt.id):
                updated += 1
        logger.info("Grace marks %.2f awarded on test %s to %d attempts", marks, test.id, updated)
        return updated

    def expire_stale(self, test_id: str | uuid.UUID | None = None) -> int:
        """Finalise every expired in-progress attempt with ``timeout``."""
        scope = [self.tests.get_test(test_id).id] if test_id is not None else None
        now = self.timer.now()
        tests: dict[uuid.UUID, OnlineTest] = {}
        completed = 0
        for attempt in self.store.list_in_progress(scope):
            test = tests.get(attempt.test_id)
            if test is None:
                test = tests[attempt.test_id] = self.test_for(attempt)
            if not self._expired(test, attempt, now):
                continue
            _, won = self._finalize_now(test, attempt, TerminationReasonEnum.TIMEOUT, now)
            if won:
                completed += 1
        if completed:
            logger.info("Expiry sweep completed %d attempts", completed)
        return completed

    def reassign(self, test_id: str | uuid.UUID, student_ids: list[str]) -> int:
        """Delete the listed students' attempts so they may take the test again."""
        test = self.tests.get_test(test_id)
        deleted = self.store.atomic(self.store.delete_for_students, test.id, student_ids)
        logger.info("Reassigned test %s: %d attempts deleted", test.id, deleted)
        return deleted

    def results(self, test_id: str | uuid.UUID) -> TestResults:
        test = self.tests.get_test(test_id)
        return build_results(test, self.store.list_for_test(test.id), self.timer.now())

    def question_set(self, test_id: str | uuid.UUID, student_id: str) -> tuple[OnlineTest, list[dict]]:
        """The student's own questions: the snapshot once started, else the persisted subset."""
        test = self.tests.get_test(test_id)
        if test.status == TestStatusEnum.DRAFT:
            raise TestNotAvailable()
        attempt = self.store.find(test.id, student_id)
        if attempt is not None and attempt.question_snapshot:
            return test, list(attempt.question_snapshot)
        ids = self.selector.subset_ids(test, student_id)
        return test, [to_snapshot(q) for q in self.questions.get_questions_by_ids(ids)]
