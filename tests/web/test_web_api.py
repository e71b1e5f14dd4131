"""Tests for the Web API: health, progress and simulation routes."""

import pytest
from fastapi.testclient import TestClient

from fe1prep.core.errors import (
    ConflictError,
    NotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from fe1prep.web.api import create_app, status_code_for
from fe1prep.web.dependencies import get_essay_grader

USER = {"X-User-Id": "candidate-1"}


@pytest.fixture
def app(db_path, seeded_course, question_pool):
    """App bound to the temporary database."""
    return create_app(db_path=db_path)


@pytest.fixture
def client(app):
    """Test client with startup/shutdown events."""
    with TestClient(app) as test_client:
        yield test_client


def _start(client):
    response = client.post("/api/simulations", headers=USER)
    assert response.status_code == 201
    return response.json()


def _answer_all(client, simulation_id, first_question_id):
    question_id = first_question_id
    for index in range(5):
        view = client.get(
            f"/api/simulations/{simulation_id}/questions/{question_id}",
            params={"index": index},
            headers=USER,
        ).json()
        result = client.post(
            f"/api/simulations/{simulation_id}/answers",
            json={
                "question_id": question_id,
                "answer_text": "Negligence requires a duty of care.",
                "timer_id": view["timer_id"],
                "current_question_index": index,
            },
            headers=USER,
        )
        assert result.status_code == 200
        question_id = result.json()["next_question_id"]


def _run_to_last_answer(client):
    """Start a simulation and answer all five questions through the API."""
    started = _start(client)
    _answer_all(client, started["simulation_id"], started["question"]["question_id"])
    return started["simulation_id"]


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_health(self, client):
        """Health reports API and database status."""
        data = client.get("/health").json()

        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"
        assert data["database"] == "ok"
        assert "T" in data["timestamp"]


class TestErrorMapping:
    """Tests for AppError -> HTTP mapping."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (NotFoundError("x"), 404),
            (ConflictError("x"), 409),
            (ValidationError("x"), 422),
            (UpstreamFailureError("x"), 502),
        ],
    )
    def test_status_codes(self, error, expected):
        """Every error kind has a fixed HTTP status."""
        assert status_code_for(error) == expected

    def test_missing_user_header(self, client):
        """Requests without X-User-Id are rejected."""
        response = client.get("/api/progress/overview")

        assert response.status_code == 422
        assert response.json()["error"] == "validation"

    def test_not_found(self, client):
        """NotFoundError maps to 404 with kind and message."""
        response = client.post("/api/lessons/nope/access", headers=USER)

        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "message": "Lesson not found: nope"}

    def test_conflict(self, client):
        """ConflictError maps to 409."""
        simulation_id = _start(client)["simulation_id"]
        client.post(f"/api/simulations/{simulation_id}/fail", headers=USER)

        response = client.post(f"/api/simulations/{simulation_id}/fail", headers=USER)

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"


class TestProgressRoutes:
    """Tests for lesson and progress routes."""

    def test_access_then_overview(self, client):
        """Opening a lesson registers the subject in the overview."""
        response = client.post("/api/lessons/m1-l1/access", headers=USER)
        assert response.status_code == 200
        assert response.json()["is_completed"] is False

        overview = client.get("/api/progress/overview", headers=USER).json()
        assert overview == {
            "total_subjects": 1,
            "completed_subjects": 0,
            "average_progress": 0.0,
            "lessons_completed_today": 0,
            "lessons_completed_this_week": 0,
            "recent_lessons": [],
        }

    def test_overview_lists_completed_lesson(self, client):
        """A completion shows up in today's activity and the recent feed."""
        client.post(
            "/api/lessons/m1-l1/video-progress",
            json={"current_time_seconds": 95},
            headers=USER,
        )

        overview = client.get("/api/progress/overview", headers=USER).json()

        assert overview["lessons_completed_today"] == 1
        assert overview["lessons_completed_this_week"] == 1
        assert overview["recent_lessons"][0]["title"] == "Duty of care"
        assert overview["recent_lessons"][0]["subject_name"] == "Tort Law"

    def test_video_progress_completion(self, client):
        """Crossing 90% completes the lesson and cascades."""
        response = client.post(
            "/api/lessons/m1-l1/video-progress",
            json={"current_time_seconds": 92, "time_spent_seconds": 60},
            headers=USER,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["just_completed"] is True
        assert data["module"]["progress_percent"] == 50
        assert data["subject"]["status"] == "IN_PROGRESS"

    def test_negative_video_time(self, client):
        """Negative positions are rejected by request validation."""
        response = client.post(
            "/api/lessons/m1-l1/video-progress",
            json={"current_time_seconds": -3},
            headers=USER,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation"
        assert "current_time_seconds" in response.json()["message"]

    @pytest.mark.parametrize(
        "body",
        [
            {"current_time_seconds": 1e20},
            {"current_time_seconds": 10, "time_spent_seconds": 10**20},
        ],
    )
    def test_oversized_times_rejected(self, client, body):
        """Out-of-range times are a 422, never a server error."""
        response = client.post("/api/lessons/m1-l1/video-progress", json=body, headers=USER)

        assert response.status_code == 422
        assert response.json()["error"] == "validation"
        assert client.get("/api/progress/modules/tort-m1", headers=USER).status_code == 200

    def test_module_progress_time_stats(self, client):
        """Module progress reports time spent and time per completed lesson."""
        client.post(
            "/api/lessons/m1-l1/video-progress",
            json={"current_time_seconds": 95, "time_spent_seconds": 120},
            headers=USER,
        )
        client.post(
            "/api/lessons/m1-l2/video-progress",
            json={"current_time_seconds": 10, "time_spent_seconds": 30},
            headers=USER,
        )

        data = client.get("/api/progress/modules/tort-m1", headers=USER).json()

        assert data["total_time_spent_seconds"] == 150
        assert data["average_time_per_lesson"] == 150

    def test_module_progress(self, client):
        """Module progress reads with its name."""
        data = client.get("/api/progress/modules/tort-m1", headers=USER).json()

        assert data["name"] == "Negligence"
        assert data["status"] == "NOT_STARTED"
        assert data["total_lessons"] == 2

    def test_subject_detail(self, client):
        """Subject detail lists modules and lesson totals."""
        client.post(
            "/api/lessons/m2-l1/video-progress",
            json={"current_time_seconds": 200},
            headers=USER,
        )

        data = client.get("/api/progress/subjects/tort", headers=USER).json()

        assert data["subject"]["name"] == "Tort Law"
        assert len(data["modules"]) == 3
        assert data["performance"]["total_lessons_completed"] == 1
        assert data["performance"]["completion_rate"] == 25.0


class TestSimulationRoutes:
    """Tests for simulation routes."""

    def test_start(self, client):
        """Start returns the first question and the 3-hour time limit."""
        data = _start(client)

        assert data["time_limit_seconds"] == 10800
        assert data["total_questions"] == 5
        assert data["timer_id"]

    def test_full_run(self, client, app, grader_factory):
        """Answer five questions and finish with grading."""
        app.dependency_overrides[get_essay_grader] = lambda: grader_factory(
            scores=[60, 70, 80, 90, 100]
        )
        simulation_id = _run_to_last_answer(client)

        response = client.post(f"/api/simulations/{simulation_id}/finish", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "COMPLETED"
        assert data["overall_score"] == 80
        assert data["passed"] is True
        assert data["app_pass_threshold"] == 80
        assert len(data["results"]) == 5

        history = client.get("/api/simulations", headers=USER).json()
        assert history["count"] == 1
        assert history["simulations"][0]["overall_score"] == 80

    def test_finish_grading_failure(self, client, app, grader_factory):
        """A grading failure is a 502 and leaves the simulation open."""
        app.dependency_overrides[get_essay_grader] = lambda: grader_factory(fail_on_call=2)
        simulation_id = _run_to_last_answer(client)

        response = client.post(f"/api/simulations/{simulation_id}/finish", headers=USER)

        assert response.status_code == 502
        assert response.json()["error"] == "upstream_failure"
        detail = client.get(f"/api/simulations/{simulation_id}", headers=USER).json()
        assert detail["status"] == "IN_PROGRESS"

    def test_duplicate_answer(self, client):
        """Answering the same question twice is a 409."""
        started = _start(client)
        body = {
            "question_id": started["question"]["question_id"],
            "answer_text": "Answer",
            "timer_id": started["timer_id"],
            "current_question_index": 0,
        }
        url = f"/api/simulations/{started['simulation_id']}/answers"

        assert client.post(url, json=body, headers=USER).status_code == 200
        assert client.post(url, json=body, headers=USER).status_code == 409

    def test_fail_with_reason(self, client):
        """Failing stores the reason and a zero score."""
        simulation_id = _start(client)["simulation_id"]

        response = client.post(
            f"/api/simulations/{simulation_id}/fail",
            json={"reason": "Time expired"},
            headers=USER,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "FAILED"
        assert data["overall_score"] == 0
        assert data["passed"] is False
        assert data["fail_reason"] == "Time expired"

    def test_other_user_gets_404(self, client):
        """Simulations are private to their owner."""
        simulation_id = _start(client)["simulation_id"]

        response = client.get(
            f"/api/simulations/{simulation_id}", headers={"X-User-Id": "intruder"}
        )

        assert response.status_code == 404
