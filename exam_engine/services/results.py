"""Result views: the staff roster with analytics and the student's own result."""

import statistics
from datetime import datetime

from exam_engine.config import settings
from exam_engine.core.clock import as_utc, elapsed_ms
from exam_engine.db.models import Attempt, AttemptAnswer, AttemptStatusEnum, OnlineTest
from exam_engine.schemas.attempt import (
    AnswerResult,
    AttemptResult,
    CompletedEntry,
    InProgressEntry,
    NotStartedEntry,
    ResultsAnalytics,
    TestResults,
)
from exam_engine.services.question_repository import load_test_config


def _reason(attempt: Attempt) -> str | None:
    return attempt.termination_reason.value if attempt.termination_reason else None


def passing_percentage(test: OnlineTest) -> float:
    config = load_test_config(test)
    if config.passing_percentage is not None:
        return config.passing_percentage
    return settings.DEFAULT_PASSING_PERCENTAGE


def build_results(test: OnlineTest, attempts: list[Attempt], now: datetime) -> TestResults:
    """Group a test's attempts by status and summarise completed scores."""
    completed: list[CompletedEntry] = []
    in_progress: list[InProgressEntry] = []
    not_started: list[NotStartedEntry] = []

    for a in attempts:
        if a.status == AttemptStatusEnum.COMPLETED:
            completed.append(
                CompletedEntry(
                    attempt_id=a.id,
                    student_id=a.student_id,
                    student_name=a.student_name,
                    score=a.score,
                    percentage=a.percentage,
                    submitted_at=a.submitted_at,
                    time_spent_ms=a.time_spent_ms,
                    grace_marks=a.grace_marks,
                    warning_count=a.warning_count,
                    termination_reason=_reason(a),
                )
            )
        elif a.status == AttemptStatusEnum.IN_PROGRESS:
            in_progress.append(
                InProgressEntry(
                    attempt_id=a.id,
                    student_id=a.student_id,
                    student_name=a.student_name,
                    started_at=a.started_at,
                    time_elapsed_ms=elapsed_ms(a.started_at, now) if a.started_at else 0,
                    warning_count=a.warning_count,
                )
            )
        else:
            not_started.append(
                NotStartedEntry(student_id=a.student_id, student_name=a.student_name)
            )

    completed.sort(key=lambda e: e.score, reverse=True)

    analytics = ResultsAnalytics(
        total_students=len(attempts),
        completed_count=len(completed),
        in_progress_count=len(in_progress),
        not_started_count=len(not_started),
    )
    if completed:
        scores = [e.score for e in completed]
        threshold = passing_percentage(test)
        passed = sum(1 for e in completed if e.percentage >= threshold)
        analytics.average_score = round(statistics.fmean(scores), 2)
        analytics.highest_score = max(scores)
        analytics.lowest_score = min(scores)
        analytics.median_score = round(statistics.median(scores), 2)
        analytics.average_percentage = round(
            statistics.fmean(e.percentage for e in completed), 2
        )
        analytics.passed_count = passed
        analytics.failed_count = len(completed) - passed
        analytics.pass_rate = round(passed / len(completed) * 100, 2)

    return TestResults(
        test_id=test.id,
        title=test.title,
        completed=completed,
        in_progress=in_progress,
        not_started=not_started,
        analytics=analytics,
    )


def student_result(
    attempt: Attempt,
    answers: list[AttemptAnswer],
    test: OnlineTest,
    now: datetime,
) -> AttemptResult:
    """The student's result, withheld while the test hides it.

    ``show_results=False`` hides scores entirely; with
    ``show_results_immediately=False`` they appear once the window closes.
    """
    result = AttemptResult(
        attempt_id=attempt.id,
        status=attempt.status.value,
        termination_reason=_reason(attempt),
        submitted_at=attempt.submitted_at,
    )
    if attempt.status != AttemptStatusEnum.COMPLETED:
        result.results_pending = True
        result.message = "Results are available after the test is submitted."
        return result

    config = load_test_config(test)
    if not config.show_results:
        result.results_pending = True
        result.message = "Results for this test are not published."
        return result
    end = as_utc(test.end_time)
    if not config.show_results_immediately and end is not None and now < end:
        result.results_pending = True
        result.message = "Results will be available after the test closes."
        return result

    result.score = attempt.score
    result.total_marks = attempt.total_marks
    result.percentage = attempt.percentage
    result.passed = attempt.percentage >= passing_percentage(test)
    result.grace_marks = attempt.grace_marks
    result.grace_reason = attempt.grace_reason
    result.results_pending = any(a.marks_awarded is None for a in answers)
    result.answers = [
        AnswerResult(
            question_id=a.question_id,
            submitted_value=a.submitted_value,
            is_correct=a.is_correct,
            marks=(
                None
                if a.marks_awarded is None
                else a.marks_awarded + (a.adjustment_marks or 0.0)
            ),
        )
        for a in answers
    ]
    return result
