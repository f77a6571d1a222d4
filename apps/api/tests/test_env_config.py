"""Environment configuration getters."""

import pytest

from crux_api.config import env


def test_database_url_required_in_production(monkeypatch):
    monkeypatch.setenv("CRUX_ENV", "prod")
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError):
        env.get_database_url()


def test_public_entry_must_be_local_path(monkeypatch):
    monkeypatch.setenv("CRUX_PUBLIC_ENTRY_PATH", "//evil.example")
    with pytest.raises(ValueError):
        env.get_public_entry_path()

    monkeypatch.setenv("CRUX_PUBLIC_ENTRY_PATH", "/welcome")
    assert env.get_public_entry_path() == "/welcome"


def test_app_base_url_strips_trailing_slash(monkeypatch):
    monkeypatch.setenv("CRUX_APP_BASE_URL", "https://app.crux.example/")
    assert env.get_app_base_url() == "https://app.crux.example"


def test_invitation_ttl(monkeypatch):
    monkeypatch.delenv("CRUX_INVITATION_TTL_DAYS", raising=False)
    assert env.get_invitation_ttl_days() == 7

    monkeypatch.setenv("CRUX_INVITATION_TTL_DAYS", "abc")
    with pytest.raises(ValueError):
        env.get_invitation_ttl_days()


def test_cors_origins_from_env(monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://a.example, https://b.example,")
    assert env.get_cors_allowed_origins() == ["https://a.example", "https://b.example"]


def test_api_entry_point_serves_app_with_configured_bind(monkeypatch):
    import uvicorn

    from crux_api import main

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setenv("CRUX_API_HOST", "127.0.0.1")
    monkeypatch.setenv("CRUX_API_PORT", "9100")

    main.run()

    assert calls == [(main.app, {"host": "127.0.0.1", "port": 9100, "log_config": None})]


def test_api_port_must_be_positive(monkeypatch):
    monkeypatch.setenv("CRUX_API_PORT", "0")
    with pytest.raises(ValueError):
        env.get_api_port()
