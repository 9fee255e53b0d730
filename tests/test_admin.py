from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def test_admin_reload_unauthorized(monkeypatch):
    monkeypatch.setenv("ADMIN_TOKEN", "secret")
    r = client.post("/admin/reload")
    assert r.status_code == 200 and r.json()["ok"] is False


def test_admin_reload_not_configured(monkeypatch):
    monkeypatch.delenv("ADMIN_TOKEN", raising=False)
    r = client.post("/admin/reload", headers={"x-admin-token": "secret"})
    assert r.json() == {"ok": False, "error": "ADMIN_TOKEN not configured on server."}


def test_admin_reload_ok(monkeypatch):
    monkeypatch.setenv("ADMIN_TOKEN", "secret")
    r = client.post("/admin/reload", headers={"x-admin-token": "secret"})
    assert r.status_code == 200 and r.json()["ok"] is True
    assert r.json()["count"] == 8


def test_admin_expire_stale(monkeypatch, orchestrator, clock):
    monkeypatch.setenv("ADMIN_TOKEN", "secret")
    s = orchestrator.start("cand-1", "scenario").data
    clock.advance(minutes=11)

    r = client.post("/admin/expire-stale")
    assert r.json()["ok"] is False

    r = client.post("/admin/expire-stale", headers={"x-admin-token": "secret"})
    assert r.json() == {"ok": True, "data": {"expired": 1}, "error": None}
    assert orchestrator.resume("cand-1", s.id).data.session.status == "timed_out"
