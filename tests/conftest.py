"""Shared pytest fixtures for engine tests."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from exam_engine.config import settings
from exam_engine.core.security import create_access_token
from exam_engine.db.models import (
    OnlineTest,
    Question,
    QuestionTypeEnum,
    TestStatusEnum,
)
from exam_engine.db.session import Base, get_db
from exam_engine.main import app


# Use an in-memory SQLite database for testing with static pool
SQLALCHEMY_TEST_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # Use StaticPool to keep connection alive
    echo=False,
)
TestSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class FakeClock:
    """Injectable clock for time-dependent tests."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def no_rate_limit(monkeypatch):
    """Keep the Redis rate limiter out of every test."""
    monkeypatch.setattr(settings, "RATE_LIMIT_ATTEMPT_RPM", 0)


@pytest.fixture(scope="function")
def db():
    """Fresh schema and session for each test.

    The engine commits its own transactions, so tables are recreated rather
    than rolled back.
    """
    Base.metadata.create_all(bind=engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session):
    """FastAPI test client with overridden DB dependency."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    # Remove TrustedHostMiddleware for tests to allow 'testserver' host
    app.user_middleware = [m for m in app.user_middleware if "TrustedHost" not in str(m)]

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Identity helpers ──────────────────────────────────────────────────────────


def _token(student_id: str, role: str = "student", name: str | None = None) -> str:
    claims = {"sub": student_id, "role": role}
    if name:
        claims["name"] = name
    return create_access_token(claims)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """Build auth headers for an arbitrary identity."""

    def _headers(student_id: str, role: str = "student", name: str | None = None) -> dict:
        return auth(_token(student_id, role, name))

    return _headers


@pytest.fixture
def student_headers() -> dict:
    return auth(_token("student-1", name="Asha Student"))


@pytest.fixture
def other_student_headers() -> dict:
    return auth(_token("student-2"))


@pytest.fixture
def staff_headers() -> dict:
    return auth(_token("teacher-1", role="staff"))


# ── Data factories ────────────────────────────────────────────────────────────


@pytest.fixture
def make_question(db: Session):
    def _make(
        text: str = "Pick one",
        question_type: QuestionTypeEnum = QuestionTypeEnum.MCQ,
        correct_answer=None,
        marks: float = 1.0,
        **fields,
    ) -> Question:
        if question_type == QuestionTypeEnum.MCQ:
            fields.setdefault("options", ["A", "B", "C", "D"])
        q = Question(
            text=text,
            question_type=question_type,
            correct_answer=correct_answer,
            marks=marks,
            **fields,
        )
        db.add(q)
        db.commit()
        db.refresh(q)
        return q

    return _make


@pytest.fixture
def make_test(db: Session):
    def _make(
        questions: list[Question],
        status: TestStatusEnum = TestStatusEnum.DEPLOYED,
        duration_minutes: int = 30,
        config: dict | None = None,
        **fields,
    ) -> OnlineTest:
        test = OnlineTest(
            title=fields.pop("title", "Unit test"),
            status=status,
            question_ids=[str(q.id) for q in questions],
            duration_minutes=duration_minutes,
            config=config or {},
            created_by="teacher-1",
            **fields,
        )
        db.add(test)
        db.commit()
        db.refresh(test)
        return test

    return _make


@pytest.fixture
def scenario_test(make_question, make_test) -> OnlineTest:
    """Two fixed questions: mcq answered "B" and fill-blank answered "4"."""
    q1 = make_question("Which letter?", QuestionTypeEnum.MCQ, "B", marks=2.0)
    q2 = make_question(
        "2 + 2 = ?", QuestionTypeEnum.FILL_BLANK, "4", marks=3.0, options=None
    )
    return make_test([q1, q2])
