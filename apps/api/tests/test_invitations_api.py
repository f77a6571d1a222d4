"""Tenant admins managing their tenant's invitations."""

from sqlalchemy.orm import Session

from crux_api.auth.invitations import InvitationService
from crux_api.auth.session_store import Identity
from crux_api.db.models import Invitation


def test_tenant_admin_invites_member(test_client, gateway, make_tenant, make_user, db_session: Session):
    tenant = make_tenant()
    _, admin = make_user("tenant_admin", tenant)

    resp = test_client.post("/v1/invitations", json={"email": "New@Example.com", "role": "user"}, headers=admin)

    assert resp.status_code == 201
    data = resp.json()
    assert data["invitation_email_sent"] is True
    assert data["invitation"]["email"] == "new@example.com"
    assert data["invitation"]["tenant_id"] == tenant.id
    assert gateway.invites[0]["data"]["role"] == "user"


def test_members_cannot_invite(test_client, make_tenant, make_user):
    _, member = make_user("user", make_tenant())
    resp = test_client.post("/v1/invitations", json={"email": "x@example.com"}, headers=member)
    assert resp.status_code == 404


def test_super_admin_role_cannot_be_invited(test_client, make_tenant, make_user):
    _, admin = make_user("tenant_admin", make_tenant())
    resp = test_client.post(
        "/v1/invitations", json={"email": "x@example.com", "role": "super_admin"}, headers=admin
    )
    assert resp.status_code == 400


def test_list_and_revoke_pending(test_client, make_tenant, make_user, db_session: Session):
    tenant = make_tenant()
    other = make_tenant("Other")
    _, admin = make_user("tenant_admin", tenant)
    own = InvitationService(db_session).issue(tenant.id, "a@example.com", "user")
    foreign = InvitationService(db_session).issue(other.id, "b@example.com", "user")

    listed = test_client.get("/v1/invitations", headers=admin).json()
    assert [i["id"] for i in listed] == [own.id]

    assert test_client.delete(f"/v1/invitations/{foreign.id}", headers=admin).status_code == 404
    assert test_client.delete(f"/v1/invitations/{own.id}", headers=admin).status_code == 204
    assert test_client.get("/v1/invitations", headers=admin).json() == []


def test_resend_used_invitation_is_409(test_client, make_tenant, make_user, gateway, db_session: Session):
    tenant = make_tenant()
    _, admin = make_user("tenant_admin", tenant)
    invitation = InvitationService(db_session).issue(tenant.id, "a@example.com", "user")
    InvitationService(db_session).accept(invitation.token, Identity(id="u-a", email="a@example.com"))

    resp = test_client.post(f"/v1/invitations/{invitation.id}/resend", headers=admin)

    assert resp.status_code == 409
    assert resp.json()["reason"] == "ALREADY_USED"
    assert gateway.invites == []


def test_resend_pending_invitation(test_client, make_tenant, make_user, gateway, db_session: Session):
    tenant = make_tenant()
    _, admin = make_user("tenant_admin", tenant)
    invitation = InvitationService(db_session).issue(tenant.id, "a@example.com", "user")

    resp = test_client.post(f"/v1/invitations/{invitation.id}/resend", headers=admin)

    assert resp.status_code == 200
    assert resp.json()["invitation_email_sent"] is True
    assert db_session.get(Invitation, invitation.id).auth_user_id == gateway.invites[0]["user_id"]
