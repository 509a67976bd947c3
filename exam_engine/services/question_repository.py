"""Read-only lookups of tests and questions owned by the question bank."""

import logging
import uuid
from typing import Sequence

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from exam_engine.db.models import OnlineTest, Question
from exam_engine.errors import ConfigurationError, NotFound
from exam_engine.schemas.test import SnapshotQuestion, TestConfig

logger = logging.getLogger(__name__)


def parse_uuid(value: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def load_test_config(test: OnlineTest) -> TestConfig:
    """Validate the stored config map into the typed ``TestConfig``."""
    try:
        return TestConfig.model_validate(test.config or {})
    except ValidationError as exc:
        raise ConfigurationError(
            "Test configuration is invalid.",
            test_id=str(test.id),
            errors=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc


def to_snapshot(question: Question) -> dict:
    """Freeze a question bank row into the JSON stored on an attempt."""
    try:
        snapshot = SnapshotQuestion.model_validate(_snapshot_fields(question))
    except ValidationError as exc:
        raise ConfigurationError(
            "Question definition is invalid.",
            question_id=str(question.id),
            errors=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc
    return snapshot.model_dump(mode="json")


def _snapshot_fields(question: Question) -> dict:
    return {
        "id": str(question.id),
        "text": question.text,
        "question_type": question.question_type.value,
        "options": question.options,
        "correct_answer": question.correct_answer,
        "marks": question.marks if question.marks is not None else 1.0,
        "negative_marks": question.negative_marks or 0.0,
        "case_sensitive": bool(question.case_sensitive),
        "is_number_range": bool(question.is_number_range),
        "number_range_min": question.number_range_min,
        "number_range_max": question.number_range_max,
        "topic": question.topic,
        "sub_questions": question.sub_questions or [],
    }


class QuestionRepository:
    """``get_questions_by_ids`` over the questions table."""

    def __init__(self, db: Session):
        self.db = db

    def get_questions_by_ids(self, ids: Sequence[str]) -> list[Question]:
        """Return questions in the order of *ids*; unknown ids are skipped."""
        wanted = [u for u in (parse_uuid(i) for i in ids) if u is not None]
        if not wanted:
            return []
        rows = self.db.scalars(select(Question).where(Question.id.in_(wanted))).all()
        by_id = {q.id: q for q in rows}
        return [by_id[u] for u in wanted if u in by_id]


class TestProvider:
    """``get_test`` over the online_tests table."""

    __test__ = False

    def __init__(self, db: Session):
        self.db = db

    def get_test(self, test_id: str | uuid.UUID) -> OnlineTest:
        tid = parse_uuid(test_id)
        test = self.db.get(OnlineTest, tid) if tid else None
        if test is None:
            raise NotFound("Test not found")
        return test
