"""Integration tests for the student-facing test and attempt endpoints.

Covers:
  GET  /api/tests/{id}
  POST /api/tests/{id}/attempt
  GET  /api/tests/{id}/question-set
  GET  /api/attempts/{id}
  POST /api/attempts/{id}/answers
  POST /api/attempts/{id}/heartbeat
  POST /api/attempts/{id}/warnings
  POST /api/attempts/{id}/finalize
  GET  /api/attempts/{id}/result
"""

from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from exam_engine.db.models import Attempt, QuestionTypeEnum, TestStatusEnum
from exam_engine.main import app
from exam_engine.services import rate_limiter
from exam_engine.services.session_manager import SessionManager


# ── Helpers ────────────────────────────────────────────────────────────────────


def _start(client: TestClient, test_id, headers: dict) -> dict:
    resp = client.post(f"/api/tests/{test_id}/attempt", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _answer(client: TestClient, attempt_id: str, question_id: str, value, headers: dict, **extra):
    return client.post(
        f"/api/attempts/{attempt_id}/answers",
        json={"question_id": question_id, "value": value, **extra},
        headers=headers,
    )


def _attempt_count(db: Session) -> int:
    return db.scalar(select(func.count()).select_from(Attempt))


# ── Auth ───────────────────────────────────────────────────────────────────────


class TestAuth:
    def test_missing_token(self, client, scenario_test):
        resp = client.post(f"/api/tests/{scenario_test.id}/attempt")
        assert resp.status_code == 401
        assert resp.json()["error_code"] == "unauthorized"

    def test_garbage_token(self, client, scenario_test):
        resp = client.post(
            f"/api/tests/{scenario_test.id}/attempt",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401

    def test_health_is_public(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


# ── Test view / lazy attempt ───────────────────────────────────────────────────


class TestViewTest:
    def test_student_view_registers_not_started(self, client, db, scenario_test, student_headers):
        resp = client.get(f"/api/tests/{scenario_test.id}", headers=student_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["is_open"] is True
        assert data["question_count"] == 2
        assert data["duration_minutes"] == 30
        assert data["attempt"]["status"] == "not_started"

        client.get(f"/api/tests/{scenario_test.id}", headers=student_headers)
        assert _attempt_count(db) == 1

    def test_staff_view_creates_nothing(self, client, db, scenario_test, staff_headers):
        resp = client.get(f"/api/tests/{scenario_test.id}", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json()["attempt"] is None
        assert _attempt_count(db) == 0

    def test_unknown_test(self, client, student_headers):
        resp = client.get("/api/tests/00000000-0000-0000-0000-000000000000", headers=student_headers)
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "not_found"

    def test_draft_test_hidden(self, client, make_question, make_test, student_headers):
        test = make_test([make_question(correct_answer="A")], status=TestStatusEnum.DRAFT)
        resp = client.get(f"/api/tests/{test.id}", headers=student_headers)
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "test_not_available"


class TestQuestionSet:
    def test_random_subset_is_stable(self, client, make_question, make_test, student_headers):
        pool = [make_question(f"Q{i}", correct_answer="A") for i in range(6)]
        test = make_test(pool, config={"random_count": 2})

        first = client.get(f"/api/tests/{test.id}/question-set", headers=student_headers).json()
        second = client.get(f"/api/tests/{test.id}/question-set", headers=student_headers).json()

        assert len(first["question_ids"]) == 2
        assert first["question_ids"] == second["question_ids"]
        assert first["student_id"] == "student-1"
        assert all("correct_answer" not in q for q in first["questions"])

    def test_started_attempt_serves_its_snapshot(self, client, make_question, make_test, student_headers):
        pool = [make_question(f"Q{i}", correct_answer="A") for i in range(6)]
        test = make_test(pool, config={"random_count": 3})
        attempt = _start(client, test.id, student_headers)

        resp = client.get(f"/api/tests/{test.id}/question-set", headers=student_headers)
        assert resp.json()["question_ids"] == [q["id"] for q in attempt["questions"]]

    def test_oversized_random_count(self, client, make_question, make_test, student_headers):
        test = make_test([make_question(correct_answer="A")], config={"random_count": 4})
        resp = client.get(f"/api/tests/{test.id}/question-set", headers=student_headers)
        assert resp.status_code == 422
        body = resp.json()
        assert body["error_code"] == "configuration_error"
        assert body["details"]["pool_size"] == 1


# ── Start / resume ─────────────────────────────────────────────────────────────


class TestStartAttempt:
    def test_start_hides_correct_answers(self, client, scenario_test, student_headers):
        data = _start(client, scenario_test.id, student_headers)

        assert data["status"] == "in_progress"
        assert len(data["questions"]) == 2
        assert 0 < data["remaining_ms"] <= 30 * 60_000
        for q in data["questions"]:
            assert "correct_answer" not in q
            assert "number_range_min" not in q

    def test_resume_returns_same_attempt(self, client, db, scenario_test, student_headers):
        first = _start(client, scenario_test.id, student_headers)
        second = _start(client, scenario_test.id, student_headers)
        assert first["id"] == second["id"]
        assert first["started_at"] == second["started_at"]
        assert _attempt_count(db) == 1

    def test_restart_after_submit_conflicts(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        client.post(f"/api/attempts/{attempt['id']}/finalize", headers=student_headers)

        resp = client.post(f"/api/tests/{scenario_test.id}/attempt", headers=student_headers)
        assert resp.status_code == 409
        assert resp.json()["error_code"] == "attempt_already_completed"

    def test_malformed_question_is_configuration_error(
        self, client, make_question, make_test, student_headers
    ):
        passage = make_question(
            "Read the passage",
            QuestionTypeEnum.COMPREHENSION,
            None,
            options=None,
            sub_questions=[{"text": "no id", "question_type": "mcq"}],
        )
        test = make_test([passage])

        resp = client.post(f"/api/tests/{test.id}/attempt", headers=student_headers)
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "configuration_error"

    def test_unexpected_failure_returns_generic_error(
        self, client, scenario_test, student_headers, monkeypatch
    ):
        def broken(self, *args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(SessionManager, "start_or_resume", broken)
        quiet = TestClient(app, raise_server_exceptions=False)

        resp = quiet.post(f"/api/tests/{scenario_test.id}/attempt", headers=student_headers)
        assert resp.status_code == 500
        body = resp.json()
        assert body["success"] is False
        assert body["error_code"] == "internal_error"
        assert body["message"] == "Unable to continue. Please try again."


# ── Answering ──────────────────────────────────────────────────────────────────


class TestAnswers:
    def test_submit_and_overwrite(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        q1 = attempt["questions"][0]["id"]

        _answer(client, attempt["id"], q1, "A", student_headers)
        resp = _answer(client, attempt["id"], q1, "B", student_headers, elapsed_ms=500)
        assert resp.status_code == 200
        assert resp.json()["submitted_value"] == "B"
        assert "is_correct" not in resp.json()

        view = client.get(f"/api/attempts/{attempt['id']}", headers=student_headers).json()
        assert view["answers"] == [
            {"question_id": q1, "submitted_value": "B", "answered_at": view["answers"][0]["answered_at"]}
        ]

    def test_unknown_question(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        resp = _answer(client, attempt["id"], "nope", "A", student_headers)
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "invalid_answer_target"

    def test_other_students_attempt_not_found(
        self, client, scenario_test, student_headers, other_student_headers
    ):
        attempt = _start(client, scenario_test.id, student_headers)
        q1 = attempt["questions"][0]["id"]

        assert client.get(f"/api/attempts/{attempt['id']}", headers=other_student_headers).status_code == 404
        assert _answer(client, attempt["id"], q1, "B", other_student_headers).status_code == 404

    def test_rate_limited(self, client, scenario_test, student_headers, monkeypatch):
        attempt = _start(client, scenario_test.id, student_headers)
        monkeypatch.setattr(rate_limiter, "check", lambda key: False)
        resp = _answer(client, attempt["id"], attempt["questions"][0]["id"], "B", student_headers)
        assert resp.status_code == 429


class TestHeartbeat:
    def test_heartbeat_keeps_attempt_open(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        resp = client.post(
            f"/api/attempts/{attempt['id']}/heartbeat",
            json={"elapsed_ms": 10 * 60_000},
            headers=student_headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "in_progress"
        # bounded by wall-clock time since start
        assert data["time_spent_ms"] < 60_000


# ── Warnings ───────────────────────────────────────────────────────────────────


class TestWarnings:
    def test_third_warning_terminates(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        url = f"/api/attempts/{attempt['id']}/warnings"

        for count in (1, 2):
            data = client.post(url, headers=student_headers).json()
            assert data["warning_count"] == count
            assert data["status"] == "in_progress"

        data = client.post(url, headers=student_headers).json()
        assert data["warning_count"] == 3
        assert data["threshold"] == 3
        assert data["status"] == "completed"
        assert data["termination_reason"] == "integrity_violation"

        resp = client.post(url, headers=student_headers)
        assert resp.status_code == 409
        assert resp.json()["error_code"] == "attempt_not_active"


# ── Finalize & results ─────────────────────────────────────────────────────────


class TestFinalize:
    def test_two_question_flow(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        q1, q2 = (q["id"] for q in attempt["questions"])
        _answer(client, attempt["id"], q1, "B", student_headers)
        _answer(client, attempt["id"], q2, "3", student_headers)

        resp = client.post(f"/api/attempts/{attempt['id']}/finalize", headers=student_headers)
        assert resp.status_code == 200
        result = resp.json()
        assert result["status"] == "completed"
        assert result["score"] == 2.0
        assert result["total_marks"] == 5.0
        assert result["percentage"] == 40.0
        assert result["passed"] is True
        assert result["termination_reason"] is None
        marks = {a["question_id"]: a["marks"] for a in result["answers"]}
        assert marks == {q1: 2.0, q2: 0.0}

    def test_finalize_twice_returns_same_result(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        _answer(client, attempt["id"], attempt["questions"][0]["id"], "B", student_headers)
        url = f"/api/attempts/{attempt['id']}/finalize"

        first = client.post(url, json={"elapsed_ms": 1000}, headers=student_headers).json()
        second = client.post(url, headers=student_headers).json()
        assert first == second

    def test_answer_after_submit_conflicts(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        client.post(f"/api/attempts/{attempt['id']}/finalize", headers=student_headers)

        resp = _answer(client, attempt["id"], attempt["questions"][0]["id"], "B", student_headers)
        assert resp.status_code == 409
        body = resp.json()
        assert body["success"] is False
        assert body["error_code"] == "attempt_not_active"
        assert body["message"] == "This test has already been submitted."

    def test_hidden_results(self, client, make_question, make_test, student_headers):
        test = make_test([make_question(correct_answer="A")], config={"show_results": False})
        attempt = _start(client, test.id, student_headers)

        result = client.post(f"/api/attempts/{attempt['id']}/finalize", headers=student_headers).json()
        assert result["status"] == "completed"
        assert result["results_pending"] is True
        assert result["score"] is None
        assert result["answers"] == []

    def test_result_before_submit_is_pending(self, client, scenario_test, student_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        result = client.get(f"/api/attempts/{attempt['id']}/result", headers=student_headers).json()
        assert result["status"] == "in_progress"
        assert result["results_pending"] is True


class TestStaffAttemptView:
    def test_staff_sees_full_record(self, client, scenario_test, student_headers, staff_headers):
        attempt = _start(client, scenario_test.id, student_headers)
        _answer(client, attempt["id"], attempt["questions"][0]["id"], "B", student_headers)

        resp = client.get(f"/api/attempts/{attempt['id']}", headers=staff_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["student_id"] == "student-1"
        assert data["student_name"] == "Asha Student"
        assert data["questions"][0]["correct_answer"] == "B"
        assert data["answers"][0]["is_correct"] is True
        assert data["answers"][0]["marks_awarded"] == 2.0

    def test_staff_can_finalize_student_attempt(
        self, client, scenario_test, student_headers, staff_headers
    ):
        attempt = _start(client, scenario_test.id, student_headers)

        resp = client.post(f"/api/attempts/{attempt['id']}/finalize", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"
