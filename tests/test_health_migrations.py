from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def test_health_migrations_basic():
    r = client.get("/health/migrations")
    assert r.status_code == 200
    b = r.json()
    assert "code_heads" in b and isinstance(b["code_heads"], list)
    assert "db_version" in b


def test_health_db_and_catalog():
    assert client.get("/health/db").json() == {"ok": True}
    r = client.get("/health/catalog").json()
    assert r["ok"] is True and r["assessments"] == 8


def test_single_alembic_head():
    from routers.health import _alembic_heads

    heads = _alembic_heads()
    assert len(heads) == 1, f"expected one head, found {heads}"
