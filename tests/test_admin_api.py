"""Integration tests for the staff endpoints.

Covers:
  GET    /api/admin/tests/{id}/results
  POST   /api/admin/attempts/{id}/adjustments
  POST   /api/admin/tests/{id}/grace
  POST   /api/admin/tests/{id}/expire
  DELETE /api/admin/tests/{id}/attempts
"""

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

from exam_engine.core.clock import utcnow
from exam_engine.db.models import Attempt, QuestionTypeEnum


# ── Helpers ────────────────────────────────────────────────────────────────────


def _take_test(client: TestClient, test_id, headers: dict, values: list) -> dict:
    """Start, answer in snapshot order, finalize; returns the started attempt."""
    attempt = client.post(f"/api/tests/{test_id}/attempt", headers=headers).json()
    for question, value in zip(attempt["questions"], values):
        client.post(
            f"/api/attempts/{attempt['id']}/answers",
            json={"question_id": question["id"], "value": value},
            headers=headers,
        )
    resp = client.post(f"/api/attempts/{attempt['id']}/finalize", headers=headers)
    assert resp.status_code == 200, resp.text
    return attempt


@pytest.fixture
def admin_urls(scenario_test):
    base = f"/api/admin/tests/{scenario_test.id}"
    return {
        "results": f"{base}/results",
        "grace": f"{base}/grace",
        "expire": f"{base}/expire",
        "attempts": f"{base}/attempts",
    }


# ── Access control ─────────────────────────────────────────────────────────────


class TestStaffOnly:
    def test_student_forbidden(self, client, admin_urls, student_headers):
        resp = client.get(admin_urls["results"], headers=student_headers)
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "forbidden"

    def test_anonymous_unauthorized(self, client, admin_urls):
        assert client.post(admin_urls["expire"]).status_code == 401

    def test_admin_role_allowed(self, client, admin_urls, headers_for):
        resp = client.get(admin_urls["results"], headers=headers_for("admin-1", role="admin"))
        assert resp.status_code == 200


# ── Results ────────────────────────────────────────────────────────────────────


class TestResults:
    def test_roster_groups_and_analytics(
        self, client, scenario_test, admin_urls, headers_for, staff_headers
    ):
        _take_test(client, scenario_test.id, headers_for("s1", name="Low"), ["A", "3"])
        _take_test(client, scenario_test.id, headers_for("s2", name="High"), ["B", "4"])
        client.post(f"/api/tests/{scenario_test.id}/attempt", headers=headers_for("s3"))
        client.get(f"/api/tests/{scenario_test.id}", headers=headers_for("s4"))

        data = client.get(admin_urls["results"], headers=staff_headers).json()

        assert [e["student_name"] for e in data["completed"]] == ["High", "Low"]
        assert [e["student_id"] for e in data["in_progress"]] == ["s3"]
        assert [e["student_id"] for e in data["not_started"]] == ["s4"]
        analytics = data["analytics"]
        assert analytics["total_students"] == 4
        assert analytics["average_score"] == 2.5
        assert analytics["highest_score"] == 5.0
        assert analytics["lowest_score"] == 0.0
        assert analytics["pass_rate"] == 50.0


# ── Adjustments & grace ────────────────────────────────────────────────────────


class TestAdjustments:
    def test_adjustment_rescores(self, client, scenario_test, student_headers, staff_headers):
        attempt = _take_test(client, scenario_test.id, student_headers, ["B", "3"])
        q2 = attempt["questions"][1]["id"]

        resp = client.post(
            f"/api/admin/attempts/{attempt['id']}/adjustments",
            json={"adjustments": [{"question_id": q2, "adjustment_marks": 3}]},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["score"] == 5.0
        assert data["percentage"] == 100.0
        adjusted = next(a for a in data["answers"] if a["question_id"] == q2)
        assert adjusted["adjustment_marks"] == 3.0

        result = client.get(f"/api/attempts/{attempt['id']}/result", headers=student_headers).json()
        assert result["score"] == 5.0

    def test_manual_grading(self, client, make_question, make_test, student_headers, staff_headers):
        essay = make_question("Explain", QuestionTypeEnum.BROAD, None, marks=10.0, options=None)
        test = make_test([essay])
        attempt = _take_test(client, test.id, student_headers, ["Because..."])

        pending = client.get(f"/api/attempts/{attempt['id']}/result", headers=student_headers).json()
        assert pending["results_pending"] is True
        assert pending["answers"][0]["marks"] is None

        client.post(
            f"/api/admin/attempts/{attempt['id']}/adjustments",
            json={"adjustments": [{"question_id": str(essay.id), "marks_awarded": 7}]},
            headers=staff_headers,
        )
        graded = client.get(f"/api/attempts/{attempt['id']}/result", headers=student_headers).json()
        assert graded["results_pending"] is False
        assert graded["score"] == 7.0
        assert graded["percentage"] == 70.0

    def test_in_progress_attempt_rejected(self, client, scenario_test, student_headers, staff_headers):
        attempt = client.post(f"/api/tests/{scenario_test.id}/attempt", headers=student_headers).json()
        resp = client.post(
            f"/api/admin/attempts/{attempt['id']}/adjustments",
            json={"adjustments": [{"question_id": attempt["questions"][0]["id"], "adjustment_marks": 1}]},
            headers=staff_headers,
        )
        assert resp.status_code == 409

    def test_empty_adjustments_rejected(self, client, scenario_test, student_headers, staff_headers):
        attempt = _take_test(client, scenario_test.id, student_headers, ["B"])
        resp = client.post(
            f"/api/admin/attempts/{attempt['id']}/adjustments",
            json={"adjustments": []},
            headers=staff_headers,
        )
        assert resp.status_code == 422


class TestGrace:
    def test_grace_added_to_completed(
        self, client, scenario_test, admin_urls, student_headers, staff_headers
    ):
        attempt = _take_test(client, scenario_test.id, student_headers, ["B", "3"])

        resp = client.post(
            admin_urls["grace"],
            json={"grace_marks": 1, "reason": "Q2 was ambiguous"},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["updated"] == 1

        result = client.get(f"/api/attempts/{attempt['id']}/result", headers=student_headers).json()
        assert result["score"] == 3.0
        assert result["grace_marks"] == 1.0
        assert result["grace_reason"] == "Q2 was ambiguous"

    def test_non_positive_grace_rejected(self, client, admin_urls, staff_headers):
        resp = client.post(admin_urls["grace"], json={"grace_marks": 0}, headers=staff_headers)
        assert resp.status_code == 422


# ── Expiry & reassign ──────────────────────────────────────────────────────────


class TestExpire:
    def test_expired_attempts_completed(
        self, client, db, scenario_test, admin_urls, headers_for, staff_headers
    ):
        stale = client.post(f"/api/tests/{scenario_test.id}/attempt", headers=headers_for("s1")).json()
        fresh = client.post(f"/api/tests/{scenario_test.id}/attempt", headers=headers_for("s2")).json()
        db.execute(
            update(Attempt)
            .where(Attempt.id == uuid.UUID(stale["id"]))
            .values(started_at=utcnow() - timedelta(hours=2))
        )
        db.commit()

        resp = client.post(admin_urls["expire"], headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json() == {"completed_count": 1}

        stale_view = client.get(f"/api/attempts/{stale['id']}", headers=staff_headers).json()
        fresh_view = client.get(f"/api/attempts/{fresh['id']}", headers=staff_headers).json()
        assert stale_view["status"] == "completed"
        assert stale_view["termination_reason"] == "timeout"
        assert fresh_view["status"] == "in_progress"


class TestReassign:
    def test_student_can_retake(self, client, scenario_test, admin_urls, student_headers, staff_headers):
        first = _take_test(client, scenario_test.id, student_headers, ["B", "4"])

        resp = client.request(
            "DELETE",
            admin_urls["attempts"],
            json={"student_ids": ["student-1"]},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.json() == {"deleted": 1}

        assert client.get(f"/api/attempts/{first['id']}", headers=student_headers).status_code == 404
        again = client.post(f"/api/tests/{scenario_test.id}/attempt", headers=student_headers)
        assert again.status_code == 200
        assert again.json()["id"] != first["id"]
