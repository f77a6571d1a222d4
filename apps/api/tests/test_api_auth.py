"""Session, guard and invitation-acceptance endpoints."""

import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from crux_api.auth.invitations import InvitationService
from crux_api.auth.session_store import Identity
from crux_api.db.models import AuditLog, Invitation, Profile
from crux_api.errors import InvalidRequest


def assert_problem(resp, expected_status: int, slug: str) -> dict:
    assert resp.status_code == expected_status
    assert resp.headers["content-type"].startswith("application/problem+json")
    data = resp.json()
    assert data["status"] == expected_status
    assert data["type"] == f"https://crux.app/problems/{slug}"
    assert re.match(r"^urn:crux:trace:[A-Za-z0-9-]{8,}$", data["instance"])
    return data


# ---------------------------------------------------------------- route guard


def test_browser_navigation_without_session_redirects(test_client, gateway):
    resp = test_client.get("/dashboard", headers={"Accept": "text/html"}, follow_redirects=False)

    assert resp.status_code == 303
    assert resp.headers["location"] == "/"
    assert gateway.get_user_calls == 0


def test_api_call_without_session_is_401(test_client):
    resp = test_client.get("/dashboard")

    assert_problem(resp, 401, "unauthenticated")
    assert resp.headers["location"] == "/"
    assert resp.headers["www-authenticate"] == "Bearer"


def test_public_entry_is_never_redirected(test_client):
    resp = test_client.get("/", headers={"Accept": "text/html"}, follow_redirects=False)
    assert resp.status_code == 200


def test_user_navigating_to_master_is_redirected(test_client, make_tenant, make_user):
    _, headers = make_user("user", make_tenant())

    resp = test_client.get("/master", headers={**headers, "Accept": "text/html"}, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/"

    resp = test_client.get("/master", headers=headers)
    data = assert_problem(resp, 404, "not-found")
    assert "master" not in data["detail"]


def test_tenant_admin_reaches_dashboard(test_client, make_tenant, make_user):
    tenant = make_tenant("Acme")
    profile, headers = make_user("tenant_admin", tenant)

    resp = test_client.get("/dashboard", headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {
        "landing": "/dashboard",
        "user_id": profile.id,
        "role": "tenant_admin",
        "tenant_id": tenant.id,
        "tenant_name": "Acme",
    }


def test_super_admin_reaches_master(test_client, make_user):
    _, headers = make_user("super_admin")
    assert test_client.get("/master", headers=headers).status_code == 200


def test_suspended_user_is_denied(test_client, make_tenant, make_user):
    _, headers = make_user("tenant_admin", make_tenant(), suspended=True)
    assert test_client.get("/dashboard", headers=headers).status_code == 404


def test_suspended_tenant_denies_members(test_client, make_tenant, make_user):
    _, headers = make_user("user", make_tenant(status="suspended"))
    assert test_client.get("/dashboard", headers=headers).status_code == 404


def test_invalid_token_is_unauthenticated(test_client):
    resp = test_client.get("/v1/auth/me", headers={"Authorization": "Bearer nope"})
    assert_problem(resp, 401, "unauthenticated")


def test_auth_backend_down_is_503(test_client, gateway, make_user):
    _, headers = make_user("user")
    gateway.failing.add("get_user")

    resp = test_client.get("/v1/auth/me", headers=headers)

    assert_problem(resp, 503, "backend-unavailable")
    assert resp.headers["retry-after"] == "5"


# -------------------------------------------------------------------- session


def test_session_provisions_default_profile(test_client, gateway, db_session: Session):
    identity, token = gateway.add_user("new@example.com")

    resp = test_client.post("/v1/auth/session", json={"access_token": token})

    assert resp.status_code == 200
    data = resp.json()
    assert data["profile"]["role"] == "user"
    assert data["profile"]["tenant_id"] is None
    assert data["landing_path"] == "/dashboard"
    assert db_session.get(Profile, identity.id) is not None


def test_session_binds_pending_invitation(test_client, gateway, make_tenant, db_session: Session):
    tenant = make_tenant("Acme")
    InvitationService(db_session).issue(tenant.id, "bob@example.com", "tenant_admin")
    _, token = gateway.add_user("bob@example.com")

    resp = test_client.post("/v1/auth/session", json={"access_token": token, "refresh_token": "rt"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["profile"]["role"] == "tenant_admin"
    assert data["tenant"]["id"] == tenant.id


def test_session_for_super_admin_lands_on_master(test_client, make_user):
    _, headers = make_user("super_admin")
    token = headers["Authorization"].split(" ", 1)[1]

    resp = test_client.post("/v1/auth/session", json={"access_token": token})

    assert resp.json()["landing_path"] == "/master"


def test_sign_out_revokes_token(test_client, gateway, make_user, db_session: Session):
    profile, headers = make_user("user")
    token = headers["Authorization"].split(" ", 1)[1]

    resp = test_client.post("/v1/auth/sign-out", headers=headers)

    assert resp.status_code == 204
    assert gateway.signed_out == [token]
    assert test_client.get("/v1/auth/me", headers=headers).status_code == 401
    actions = db_session.execute(select(AuditLog.action).where(AuditLog.user_id == profile.id)).scalars().all()
    assert "user_logout" in actions


def test_password_too_short_is_rejected(test_client, make_user, gateway):
    profile, headers = make_user("user")

    resp = test_client.post("/v1/auth/password", json={"password": "short"}, headers=headers)

    assert_problem(resp, 400, "invalid-request")
    assert profile.id not in gateway.passwords


def test_password_rejected_by_auth_backend_is_not_retryable(test_client, make_user, gateway, monkeypatch):
    profile, headers = make_user("user")

    def reject(user_id: str, password: str) -> None:
        raise InvalidRequest("Password is too weak.")

    monkeypatch.setattr(gateway, "set_password", reject)
    resp = test_client.post("/v1/auth/password", json={"password": "password123"}, headers=headers)

    data = assert_problem(resp, 400, "invalid-request")
    assert data["detail"] == "Password is too weak."
    assert "retry-after" not in resp.headers


# ----------------------------------------------------------------- invitations


def _issue(db_session: Session, tenant_id: str, email: str = "bob@example.com", role: str = "user") -> Invitation:
    return InvitationService(db_session).issue(tenant_id, email, role)


def test_inspect_invitation_does_not_consume(test_client, make_tenant, db_session: Session):
    tenant = make_tenant("Acme")
    invitation = _issue(db_session, tenant.id)

    resp = test_client.get(f"/v1/auth/invitations/{invitation.token}")

    assert resp.status_code == 200
    assert resp.json()["tenant_name"] == "Acme"
    assert db_session.get(Invitation, invitation.id).used_at is None


def test_accept_with_link_tokens_and_password(test_client, gateway, make_tenant, db_session: Session):
    """Bob opens the emailed link, chooses a password and lands on /dashboard."""
    tenant = make_tenant("Acme")
    invitation = _issue(db_session, tenant.id)
    bob, token = gateway.add_user("bob@example.com")

    resp = test_client.post(
        "/v1/auth/invitations/accept",
        json={
            "token": invitation.token,
            "access_token": token,
            "refresh_token": "rt",
            "password": "correct horse",
        },
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["profile"]["role"] == "user"
    assert data["profile"]["tenant_id"] == tenant.id
    assert data["landing_path"] == "/dashboard"
    assert data["password_set"] is True
    assert gateway.passwords[bob.id] == "correct horse"


def test_accept_twice_is_409(test_client, gateway, make_tenant, db_session: Session):
    tenant = make_tenant()
    invitation = _issue(db_session, tenant.id)
    _, token = gateway.add_user("bob@example.com")
    body = {"token": invitation.token, "access_token": token}

    assert test_client.post("/v1/auth/invitations/accept", json=body).status_code == 200
    resp = test_client.post("/v1/auth/invitations/accept", json=body)

    data = assert_problem(resp, 409, "invitation-invalid")
    assert data["reason"] == "ALREADY_USED"


def test_accept_ignores_requested_role_and_tenant(test_client, gateway, make_tenant, db_session: Session):
    tenant = make_tenant("Acme")
    other = make_tenant("Other")
    invitation = _issue(db_session, tenant.id)
    _, token = gateway.add_user("bob@example.com")

    resp = test_client.post(
        "/v1/auth/invitations/accept",
        json={"token": invitation.token, "access_token": token, "role": "super_admin", "tenant_id": other.id},
    )

    assert resp.status_code == 200
    assert resp.json()["profile"]["role"] == "user"
    assert resp.json()["profile"]["tenant_id"] == tenant.id


def test_accept_uses_invited_auth_user_without_tokens(test_client, make_tenant, db_session: Session):
    tenant = make_tenant()
    invitation = _issue(db_session, tenant.id)
    InvitationService(db_session).record_delivery(invitation, "auth-bob")

    resp = test_client.post("/v1/auth/invitations/accept", json={"token": invitation.token})

    assert resp.status_code == 200
    assert resp.json()["profile"]["id"] == "auth-bob"
    assert resp.json()["password_set"] is False


def test_accept_without_any_identity_is_401(test_client, make_tenant, db_session: Session):
    tenant = make_tenant()
    invitation = _issue(db_session, tenant.id)

    resp = test_client.post("/v1/auth/invitations/accept", json={"token": invitation.token})

    assert_problem(resp, 401, "unauthenticated")
    assert db_session.get(Invitation, invitation.id).used_at is None


def test_short_password_does_not_consume_invitation(test_client, gateway, make_tenant, db_session: Session):
    tenant = make_tenant()
    invitation = _issue(db_session, tenant.id)
    _, token = gateway.add_user("bob@example.com")

    resp = test_client.post(
        "/v1/auth/invitations/accept",
        json={"token": invitation.token, "access_token": token, "password": "x"},
    )

    assert resp.status_code == 400
    assert db_session.get(Invitation, invitation.id).used_at is None


def test_password_failure_keeps_binding(test_client, gateway, make_tenant, db_session: Session):
    tenant = make_tenant()
    invitation = _issue(db_session, tenant.id)
    bob, token = gateway.add_user("bob@example.com")
    gateway.failing.add("set_password")

    resp = test_client.post(
        "/v1/auth/invitations/accept",
        json={"token": invitation.token, "access_token": token, "password": "long enough"},
    )

    assert resp.status_code == 200
    assert resp.json()["password_set"] is False
    assert db_session.get(Profile, bob.id).tenant_id == tenant.id

    gateway.failing.clear()
    retry = test_client.post(
        "/v1/auth/password",
        json={"password": "long enough"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert retry.status_code == 204
    assert gateway.passwords[bob.id] == "long enough"


def test_accept_landing_page_renders_form(test_client, make_tenant, db_session: Session):
    tenant = make_tenant("Acme <Co>")
    invitation = _issue(db_session, tenant.id)

    resp = test_client.get(f"/auth/accept?token={invitation.token}&type=invite")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert "Acme &lt;Co&gt;" in resp.text
    assert "/v1/auth/invitations/accept" in resp.text


def test_accept_landing_page_for_expired_invitation(test_client, make_tenant, db_session: Session):
    tenant = make_tenant()
    invitation = _issue(db_session, tenant.id)
    InvitationService(db_session).revoke(invitation.id)

    resp = test_client.get(f"/auth/accept?token={invitation.token}")

    assert resp.status_code == 410
    assert "expired" in resp.text


def test_accept_landing_page_without_token_bridges_hash(test_client):
    resp = test_client.get("/auth/accept")

    assert resp.status_code == 200
    assert "window.location.hash" in resp.text
