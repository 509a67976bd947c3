"""Pydantic schemas — re‑exported for convenience."""

from exam_engine.schemas.common import ErrorResponse  # noqa: F401
from exam_engine.schemas.test import (  # noqa: F401
    QuestionType,
    QuestionView,
    SnapshotQuestion,
    SnapshotSubQuestion,
    TestConfig,
    TestInfo,
)
from exam_engine.schemas.attempt import (  # noqa: F401
    AnswerConfirmation,
    AnswerSubmit,
    AttemptResult,
    AttemptStaffRead,
    AttemptStudentRead,
    WarningResult,
)
