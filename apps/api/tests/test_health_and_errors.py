"""Health endpoints and RFC 9457 problem responses."""

import pytest
from fastapi.testclient import TestClient

from crux_api.main import app
from crux_api.routers import health


@pytest.fixture
def client():
    return TestClient(app)


def test_health_is_always_200(client, monkeypatch):
    monkeypatch.setattr(health, "check_database", lambda: "down: OperationalError")

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert resp.headers["x-request-id"]


def test_readyz_is_503_when_a_dependency_is_down(client, monkeypatch):
    monkeypatch.setattr(health, "check_database", lambda: "down: OperationalError")
    monkeypatch.setattr(health, "check_auth_config", lambda: "configured")

    resp = client.get("/readyz")

    assert resp.status_code == 503
    assert resp.json()["services"]["database"].startswith("down")


def test_readyz_ready(client, monkeypatch):
    monkeypatch.setattr(health, "check_database", lambda: "up")
    monkeypatch.setattr(health, "check_auth_config", lambda: "configured")

    assert client.get("/readyz").json()["status"] == "ready"


def test_auth_config_missing_is_reported(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    health.get_supabase_url.cache_clear()
    assert health.check_auth_config().startswith("down")


def test_unknown_route_is_problem_json(client):
    resp = client.get("/v1/nope")

    assert resp.status_code == 404
    assert resp.headers["content-type"].startswith("application/problem+json")
    assert resp.json()["instance"].startswith("urn:crux:trace:")


def test_validation_error_is_422_problem(client):
    resp = client.post("/v1/auth/session", json={})

    assert resp.status_code == 422
    assert resp.headers["content-type"].startswith("application/problem+json")


def test_request_id_is_echoed(client):
    resp = client.get("/", headers={"X-Request-ID": "req-abc-123"})
    assert resp.headers["x-request-id"] == "req-abc-123"
