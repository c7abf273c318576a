from __future__ import annotations

from fastapi.testclient import TestClient


def test_app_smoke_routes(sandbox_env):
    import app as app_module

    client = TestClient(app_module.create_app())

    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"

    # data routes are protected by default
    r = client.get("/api")
    assert r.status_code == 401
    assert r.headers["www-authenticate"] == "Bearer"


def test_app_without_auth_uses_anonymous_actor(sandbox_env, monkeypatch):
    monkeypatch.setenv("ALPHABASE_REQUIRE_AUTH", "false")
    import app as app_module

    client = TestClient(app_module.create_app())
    r = client.put("/api/greeting", json={"value": "hi"})
    assert r.status_code == 200

    entries = client.app.state.audit.get_logs()
    assert entries[-1]["operation"] == "set"
    assert entries[-1]["actor"] == "anonymous"


def test_settings_from_environment(sandbox_env, monkeypatch):
    from settings import get_settings

    monkeypatch.setenv("ALPHABASE_USERS", "alice:a1, bob:b2 ,broken")
    monkeypatch.setenv("ALPHABASE_DEFERRED_WRITE_MS", "250")
    monkeypatch.setenv("ALPHABASE_BATCH_WRITE", "yes")
    s = get_settings()
    assert s.users == {"alice": "a1", "bob": "b2"}
    assert s.deferred_write_ms == 250
    assert s.batch_write is True
    assert s.require_auth is True
    assert s.cipher == "None"
    assert s.backup_dir is None


def test_error_status_mapping():
    from app import status_for
    from alphabase.errors import (
        CollectionNotFound,
        ImportFormatError,
        NoTransactionOpen,
        SchemaViolation,
        StorageIOError,
    )

    assert status_for(ImportFormatError("x")) == 400
    assert status_for(SchemaViolation("k", [])) == 422
    assert status_for(CollectionNotFound("c")) == 404
    assert status_for(NoTransactionOpen()) == 409
    assert status_for(StorageIOError("p", "disk gone")) == 503
