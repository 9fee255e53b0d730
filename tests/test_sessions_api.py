from fastapi.testclient import TestClient

from main import app

client = TestClient(app)

H = {"x-user-id": "cand-1"}


def _start(assessment_id="scenario", headers=H, **extra):
    r = client.post("/sessions", json={"assessment_id": assessment_id, **extra}, headers=headers)
    assert r.status_code == 200
    return r.json()


def test_missing_user_header_is_401(orchestrator):
    r = client.post("/sessions", json={"assessment_id": "scenario"})
    assert r.status_code == 401
    r = client.get("/sessions/00000000-0000-4000-8000-000000000000", headers={"x-user-id": "  "})
    assert r.status_code == 401


def test_start_answer_complete_flow(orchestrator, clock):
    body = _start()
    assert body["ok"] is True
    sid = body["data"]["id"]
    assert body["data"]["status"] == "in_progress"

    r = client.get(f"/sessions/{sid}/questions", headers=H)
    qs = r.json()["data"]
    assert [q["question_id"] for q in qs] == ["sc-1", "sc-2", "sc-3"]
    assert "correct_index" not in qs[0]

    for qid, idx in (("sc-1", 0), ("sc-2", 1), ("sc-3", 2)):
        clock.advance(seconds=20)
        r = client.put(
            f"/sessions/{sid}/answers",
            json={"question_id": qid, "selected_index": idx, "time_spent_seconds": 20},
            headers=H,
        )
        assert r.json()["ok"] is True

    answers = client.get(f"/sessions/{sid}/answers", headers=H).json()["data"]
    assert set(answers) == {"sc-1", "sc-2", "sc-3"}

    r = client.post(f"/sessions/{sid}/complete", json={"reason": "manual"}, headers=H)
    done = r.json()
    assert done["ok"] is True
    assert done["data"]["status"] == "completed"
    assert done["data"]["score"] == 100
    assert done["data"]["passed"] is True

    results = client.get(f"/sessions/{sid}/results", headers=H).json()["data"]
    assert results["allow_review"] is True
    assert all(item["is_correct"] for item in results["items"])

    pct = client.get(f"/sessions/{sid}/percentile", headers=H).json()["data"]
    assert pct == {"percentile": 0, "rank": 1, "total_sessions": 1}


def test_expected_failures_are_200_with_error(orchestrator):
    r = client.post("/sessions", json={"assessment_id": "coded", "access_code": "nope"}, headers=H)
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "INVALID_ACCESS_CODE"
    assert body["error"]["kind"] == "validation"

    r = client.get("/sessions/not-a-uuid", headers=H)
    assert r.json()["error"]["code"] == "INVALID_SESSION_ID"


def test_request_validation_is_422(orchestrator):
    sid = _start()["data"]["id"]
    r = client.put(f"/sessions/{sid}/answers", json={"question_id": "sc-1", "selected_index": -1}, headers=H)
    assert r.status_code == 422
    r = client.post(f"/sessions/{sid}/complete", json={"reason": "bored"}, headers=H)
    assert r.status_code == 422
    r = client.post(f"/sessions/{sid}/violations", json={"type": "copy_paste"}, headers=H)
    assert r.status_code == 422


def test_timeout_over_http(orchestrator):
    sid = _start()["data"]["id"]
    client.put(f"/sessions/{sid}/answers", json={"question_id": "sc-1", "selected_index": 0}, headers=H)
    r = client.post(f"/sessions/{sid}/complete", json={"reason": "timeout"}, headers=H)
    data = r.json()["data"]
    assert data["status"] == "timed_out"
    assert data["score"] == 33
    assert data["time_remaining_seconds"] == 0


def test_resume_returns_snapshot_and_answers(orchestrator, clock):
    sid = _start()["data"]["id"]
    client.put(
        f"/sessions/{sid}/answers",
        json={"question_id": "sc-2", "selected_index": 1, "time_remaining_seconds": 340},
        headers=H,
    )
    clock.advance(minutes=45)
    again = _start()
    assert again["data"]["id"] == sid

    body = client.get(f"/sessions/{sid}", headers=H).json()["data"]
    assert body["session"]["time_remaining_seconds"] == 340
    assert body["answers"]["sc-2"]["selected_index"] == 1
    assert len(body["questions"]) == 3


def test_violation_report_over_http(orchestrator):
    sid = _start()["data"]["id"]
    r = client.post(
        f"/sessions/{sid}/violations",
        json={"type": "tab_hidden", "timestamp": "2024-03-01T09:01:00Z"},
        headers=H,
    )
    assert r.json() == {"ok": True, "data": {"recorded": True}, "error": None}


def test_other_candidate_cannot_see_session(orchestrator):
    sid = _start()["data"]["id"]
    r = client.get(f"/sessions/{sid}", headers={"x-user-id": "intruder"})
    assert r.json()["error"]["code"] == "SESSION_NOT_FOUND"
