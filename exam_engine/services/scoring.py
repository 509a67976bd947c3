"""Automatic grading and score computation.

Objective questions are graded the moment an answer arrives:
  - mcq: option label match (case-insensitive)
  - msq: exact set of option labels
  - fillblank: normalised text match, or a numeric range

Free-text (``broad``) answers stay ungraded until staff mark them.
``compute_score`` is pure: the same answers, grace marks and total always
produce the same score and percentage.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

logger = logging.getLogger(__name__)

OBJECTIVE_TYPES = frozenset({"mcq", "msq", "fillblank"})
MANUAL_TYPES = frozenset({"broad"})

# ── Text normalisation helpers ────────────────────────────────────────────────

_MULTI_SPACE = re.compile(r"\s+")


def _normalise(text: Any, case_sensitive: bool = False) -> str:
    """Trim and collapse whitespace; lowercase unless *case_sensitive*."""
    t = _MULTI_SPACE.sub(" ", str(text).strip())
    return t if case_sensitive else t.lower()


def _to_number(value: Any) -> float | None:
    try:
        return float(_MULTI_SPACE.sub("", str(value)))
    except (TypeError, ValueError):
        return None


def is_blank(value: Any) -> bool:
    """Unanswered: ``None``, empty string or empty selection."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


# ── Per-question grading ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Grade:
    is_correct: bool | None
    marks_awarded: float | None

    @property
    def pending(self) -> bool:
        return self.marks_awarded is None


PENDING = Grade(is_correct=None, marks_awarded=None)


def _check_mcq(question: dict, value: Any) -> bool:
    correct = question.get("correct_answer")
    if correct is None or isinstance(value, (list, dict)):
        return False
    return _normalise(value) == _normalise(correct)


def _check_msq(question: dict, value: Any) -> bool:
    correct = question.get("correct_answer")
    if not isinstance(correct, list) or not isinstance(value, list):
        return False
    return {_normalise(v) for v in value} == {_normalise(c) for c in correct}


def _check_fill_blank(question: dict, value: Any) -> bool:
    if question.get("is_number_range"):
        number = _to_number(value)
        low = question.get("number_range_min")
        high = question.get("number_range_max")
        if number is None or low is None or high is None:
            return False
        return low <= number <= high

    correct = question.get("correct_answer")
    if correct is None:
        return False
    case_sensitive = bool(question.get("case_sensitive"))
    return _normalise(value, case_sensitive) == _normalise(correct, case_sensitive)


_CHECKERS = {
    "mcq": _check_mcq,
    "msq": _check_msq,
    "fillblank": _check_fill_blank,
}


def grade_answer(question: dict, value: Any) -> Grade:
    """Grade *value* against one snapshot question.

    Correct answers earn ``marks``, wrong ones lose ``negative_marks``;
    blank answers earn nothing either way.
    """
    question_type = question.get("question_type")
    if question_type in MANUAL_TYPES:
        return PENDING
    if is_blank(value):
        return Grade(is_correct=False, marks_awarded=0.0)

    checker = _CHECKERS.get(question_type)
    if checker is None:
        logger.warning("No grader for question type %r (id=%s)", question_type, question.get("id"))
        return PENDING

    is_correct = checker(question, value)
    if is_correct:
        marks = float(question.get("marks") or 0.0)
    else:
        penalty = float(question.get("negative_marks") or 0.0)
        marks = -penalty if penalty else 0.0
    return Grade(is_correct=is_correct, marks_awarded=marks)


# ── Totals ───────────────────────────────────────────────────────────────────


def served_total_marks(snapshot: Iterable[dict]) -> float:
    """Sum of marks actually served; comprehension counts its parts."""
    total = 0.0
    for question in snapshot:
        subs = question.get("sub_questions") or []
        if question.get("question_type") == "comprehension" and subs:
            total += sum(float(sq.get("marks") or 0.0) for sq in subs)
        else:
            total += float(question.get("marks") or 0.0)
    return total


class ScoredAnswer(Protocol):
    marks_awarded: float | None
    adjustment_marks: float | None


@dataclass(frozen=True)
class ScoreResult:
    score: float
    percentage: float


def compute_score(
    answers: Iterable[ScoredAnswer],
    grace_marks: float,
    total_marks: float,
) -> ScoreResult:
    """Combine awarded marks, manual adjustments and grace marks.

    The score never drops below zero and the percentage is clamped to
    [0, 100]; out-of-range adjustments are absorbed, not rejected.
    """
    raw = 0.0
    for answer in answers:
        raw += (answer.marks_awarded or 0.0) + (answer.adjustment_marks or 0.0)
    raw += grace_marks or 0.0

    score = round(max(0.0, raw), 4)
    if not total_marks or total_marks <= 0:
        return ScoreResult(score=score, percentage=0.0)

    percentage = round(score / total_marks * 100, 2)
    return ScoreResult(score=score, percentage=min(100.0, max(0.0, percentage)))
