"""Decides which questions, in what order, a student is served.

Pools with ``random_count`` below their size draw a per-student subset once
and persist it as a ``QuestionSet``; every later view reuses that subset.
"""

import logging
import random

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_engine.db.models import OnlineTest, QuestionSet
from exam_engine.errors import ConcurrentModification, ConfigurationError
from exam_engine.services.question_repository import (
    QuestionRepository,
    load_test_config,
    to_snapshot,
)

logger = logging.getLogger(__name__)


class QuestionSelector:
    def __init__(self, db: Session, rng: random.Random | None = None):
        self.db = db
        self.rng = rng or random.Random()
        self.questions = QuestionRepository(db)

    def find_set(self, source_id: str, student_id: str) -> QuestionSet | None:
        stmt = select(QuestionSet).where(
            QuestionSet.source_id == source_id,
            QuestionSet.student_id == student_id,
        )
        return self.db.scalars(stmt).first()

    def get_or_create_set(
        self,
        source_id: str,
        student_id: str,
        pool: list[str],
        count: int,
    ) -> QuestionSet:
        """Persist one random subset per (source, student), first writer wins."""
        existing = self.find_set(source_id, student_id)
        if existing is not None:
            return existing

        question_set = QuestionSet(
            source_id=source_id,
            student_id=student_id,
            question_ids=self.rng.sample(pool, count),
        )
        self.db.add(question_set)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Question set race lost for source=%s student=%s, rereading",
                source_id, student_id,
            )
            winner = self.find_set(source_id, student_id)
            if winner is None:
                raise ConcurrentModification()
            return winner

        logger.info(
            "Question set created for source=%s student=%s (%d of %d)",
            source_id, student_id, count, len(pool),
        )
        return question_set

    def subset_ids(self, test: OnlineTest, student_id: str) -> list[str]:
        """The student's questions in pool order, before any shuffling.

        Stable across calls: fixed lists are returned verbatim and random
        subsets are drawn once and persisted.
        """
        config = load_test_config(test)
        pool = [str(qid) for qid in (test.question_ids or [])]
        if not pool:
            raise ConfigurationError("Test has no questions.", test_id=str(test.id))
        if config.random_count > len(pool):
            raise ConfigurationError(
                "random_count exceeds the question pool.",
                test_id=str(test.id),
                random_count=config.random_count,
                pool_size=len(pool),
            )

        if 0 < config.random_count < len(pool):
            question_set = self.get_or_create_set(
                str(test.id), student_id, pool, config.random_count
            )
            return list(question_set.question_ids)
        return pool

    def select_question_ids(self, test: OnlineTest, student_id: str) -> list[str]:
        """Ordered question ids for a new attempt; shuffled when configured."""
        selected = self.subset_ids(test, student_id)
        if load_test_config(test).shuffle_questions:
            self.rng.shuffle(selected)
        return selected

    def build_snapshot(self, test: OnlineTest, student_id: str) -> list[dict]:
        """Resolve the selected ids into frozen question content."""
        ids = self.select_question_ids(test, student_id)
        questions = self.questions.get_questions_by_ids(ids)
        if len(questions) != len(ids):
            found = {str(q.id) for q in questions}
            raise ConfigurationError(
                "Test references questions that do not exist.",
                test_id=str(test.id),
                missing=[qid for qid in ids if qid not in found],
            )
        return [to_snapshot(q) for q in questions]
