"""Validates and stores answers against an attempt's frozen snapshot."""

import logging
import uuid
from datetime import datetime
from typing import Any

from exam_engine.db.models import AttemptAnswer
from exam_engine.errors import InvalidAnswerTarget
from exam_engine.services.attempt_store import AttemptStore
from exam_engine.services.scoring import grade_answer

logger = logging.getLogger(__name__)


def resolve_target(snapshot: list[dict] | None, question_id: str) -> dict:
    """Find the answerable snapshot entry for *question_id*.

    Comprehension passages are containers; only their sub-questions take
    answers.
    """
    for question in snapshot or []:
        if question.get("id") == question_id:
            if question.get("question_type") == "comprehension":
                raise InvalidAnswerTarget(
                    "Answer the sub-questions of a comprehension passage.",
                    question_id=question_id,
                )
            return question
        for sub in question.get("sub_questions") or []:
            if sub.get("id") == question_id:
                return sub
    raise InvalidAnswerTarget(question_id=question_id)


class AnswerRecorder:
    def __init__(self, store: AttemptStore):
        self.store = store

    def record(
        self,
        attempt_id: uuid.UUID,
        question: dict,
        value: Any,
        answered_at: datetime,
    ) -> AttemptAnswer:
        """Grade and upsert one answer; the caller holds the attempt row lock."""
        grade = grade_answer(question, value)
        answer = self.store.upsert_answer(
            attempt_id, question["id"], value, grade, answered_at
        )
        logger.debug(
            "Answer recorded attempt=%s question=%s pending=%s",
            attempt_id, question["id"], grade.pending,
        )
        return answer
