"""
Tests for the FastAPI surface over quiz sessions.
"""

import pytest
from fastapi.testclient import TestClient

from quiz_attempt.core.quiz_manager import QuizManager
from quiz_attempt.server.api_server import create_api_app

from conftest import IDLE_INTERVAL

ADA = {"X-User-Id": "u1", "X-User-Name": "Ada"}
GRACE = {"X-User-Id": "u2", "X-User-Name": "Grace"}


@pytest.fixture
def client(gateway, fast_retry, clock, tmp_path):
    manager = QuizManager(
        gateway,
        snapshot_root=tmp_path / "snapshots",
        retry_policy=fast_retry,
        tick_interval=IDLE_INTERVAL,
        autosave_interval=IDLE_INTERVAL,
        clock=clock,
    )
    with TestClient(create_api_app(manager)) as test_client:
        yield test_client


def test_requests_without_user_are_rejected(client):
    response = client.post("/quizzes/quiz-1/session")
    assert response.status_code == 401


def test_start_session_hides_correct_answers(client):
    response = client.post("/quizzes/quiz-1/session", headers=ADA)

    assert response.status_code == 201
    body = response.json()
    assert body["phase"] == "in_progress"
    assert body["remaining_seconds"] == 600
    assert body["remaining_display"] == "10:00"
    assert body["questions"][0] == {
        "id": "q1",
        "text": "Question q1",
        "type": "mcq",
        "points": 1,
        "options": ["A", "B", "C", "D"],
    }


def test_starting_twice_returns_the_live_session(client):
    client.post("/quizzes/quiz-1/session", headers=ADA)
    client.put("/quizzes/quiz-1/session/answers/q1", json={"value": "B"}, headers=ADA)

    response = client.post("/quizzes/quiz-1/session", headers=ADA)

    assert response.status_code == 201
    assert response.json()["answers"] == {"q1": "B"}


def test_unknown_quiz_is_not_found(client):
    response = client.post("/quizzes/missing/session", headers=ADA)

    assert response.status_code == 404
    assert response.json()["detail"]["quiz_id"] == "missing"


def test_answer_and_validation_errors(client):
    client.post("/quizzes/mixed/session", headers=ADA)

    ok = client.put("/quizzes/mixed/session/answers/num", json={"value": 99}, headers=ADA)
    bad = client.put("/quizzes/mixed/session/answers/num", json={"value": "9-9"}, headers=ADA)

    assert ok.status_code == 200
    assert ok.json()["value"] == "99"
    assert bad.status_code == 422
    detail = bad.json()["detail"]
    assert detail["question_id"] == "num"
    assert detail["user_id"] == "u1"
    assert detail["phase"] == "in_progress"


def test_navigation_and_flags(client):
    client.post("/quizzes/quiz-1/session", headers=ADA)

    moved = client.post("/quizzes/quiz-1/session/navigate", json={"index": 1}, headers=ADA)
    out_of_range = client.post("/quizzes/quiz-1/session/navigate", json={"index": 7}, headers=ADA)
    flagged = client.put("/quizzes/quiz-1/session/flags/1", headers=ADA)
    unflagged = client.delete("/quizzes/quiz-1/session/flags/1", headers=ADA)

    assert moved.json()["question"]["id"] == "q2"
    assert out_of_range.status_code == 422
    assert flagged.json() == {"flagged": [1]}
    assert unflagged.json() == {"flagged": []}


def test_session_actions_need_a_session(client):
    assert client.get("/quizzes/quiz-1/session", headers=ADA).status_code == 404
    assert client.post("/quizzes/quiz-1/session/submit", headers=ADA).status_code == 404


def test_submit_leaderboard_and_result(client):
    client.post("/quizzes/quiz-1/session", headers=ADA)
    client.put("/quizzes/quiz-1/session/answers/q1", json={"value": "B"}, headers=ADA)

    submitted = client.post("/quizzes/quiz-1/session/submit", headers=ADA)
    again = client.post("/quizzes/quiz-1/session/submit", headers=ADA)

    assert submitted.status_code == 200
    body = submitted.json()
    assert body["score"] == 1
    assert body["total_points"] == 2
    assert body["leaderboard_updated"] is True
    assert body["rank"] == 1
    assert again.json()["attempt_id"] == body["attempt_id"]

    board = client.get("/quizzes/quiz-1/leaderboard").json()
    assert [entry["user_name"] for entry in board["entries"]] == ["Ada"]

    result = client.get("/quizzes/quiz-1/result", headers=ADA).json()
    assert result["score"] == 1
    assert result["rank"] == 1
    assert result["score_matches"] is True

    rejected = client.post("/quizzes/quiz-1/session", headers=ADA)
    assert rejected.status_code == 409
    assert client.post("/quizzes/quiz-1/session", headers=GRACE).status_code == 201


def test_answer_after_submit_conflicts(client):
    client.post("/quizzes/quiz-1/session", headers=ADA)
    client.post("/quizzes/quiz-1/session/submit", headers=ADA)

    response = client.put("/quizzes/quiz-1/session/answers/q1", json={"value": "B"}, headers=ADA)

    assert response.status_code == 409


def test_abandoning_a_session(client):
    client.post("/quizzes/quiz-1/session", headers=ADA)

    assert client.delete("/quizzes/quiz-1/session", headers=ADA).status_code == 204
    assert client.get("/quizzes/quiz-1/session", headers=ADA).status_code == 404


def test_empty_leaderboard_and_missing_result(client):
    assert client.get("/quizzes/quiz-1/leaderboard").json() == {
        "quiz_id": "quiz-1",
        "entries": [],
        "last_updated": None,
    }
    assert client.get("/quizzes/quiz-1/result", headers=ADA).status_code == 404


def test_openapi_document_describes_the_service(client):
    info = client.get("/openapi.json").json()["info"]

    assert info["title"] == "QuizAttempt API"
    assert info["license"] == {"name": "MIT License"}
