"""Invitation state machine: issue, classify, accept, revoke."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from crux_api.auth.invitations import AcceptanceParams, InvitationService, InvitationState, as_utc
from crux_api.auth.session_store import Identity
from crux_api.db.models import Invitation, Profile
from crux_api.errors import InvalidRequest, InvitationFailure, InvitationInvalid

T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def service(db_session: Session, clock: Clock) -> InvitationService:
    return InvitationService(db_session, clock=clock)


@pytest.fixture
def tenant(make_tenant):
    return make_tenant("Acme")


def test_issue_normalizes_email_and_sets_expiry(service, tenant):
    invitation = service.issue(tenant.id, "  Bob@Example.COM ", "user", ttl_days=7)

    assert invitation.email == "bob@example.com"
    assert invitation.role == "user"
    assert invitation.used_at is None
    assert len(invitation.token) >= 32
    assert as_utc(invitation.expires_at) == T0 + timedelta(days=7)


@pytest.mark.parametrize("role", ["super_admin", "owner", None])
def test_issue_rejects_non_invitable_roles(service, tenant, role):
    with pytest.raises(InvalidRequest):
        service.issue(tenant.id, "bob@example.com", role)


def test_issue_rejects_unknown_tenant(service):
    with pytest.raises(InvalidRequest):
        service.issue("no-such-tenant", "bob@example.com", "user")


def test_unknown_token_is_invalid(service):
    with pytest.raises(InvitationInvalid) as exc:
        service.inspect("does-not-exist")
    assert exc.value.reason == InvitationFailure.INVALID_TOKEN
    assert exc.value.status_code == 404


def test_accept_binds_profile_from_invitation(service, tenant, db_session):
    """Bob accepts a user invitation to tenant Acme."""
    invitation = service.issue(tenant.id, "bob@example.com", "user")
    bob = Identity(id="u-bob", email="bob@example.com")

    result = service.accept(invitation.token, bob)

    assert result.state == InvitationState.PROFILE_BOUND
    assert result.profile.role == "user"
    assert result.profile.tenant_id == tenant.id

    stored = db_session.get(Invitation, invitation.id)
    assert stored.used_at is not None
    assert stored.accepted_by == "u-bob"


def test_second_accept_is_already_used_and_changes_nothing(service, tenant, db_session):
    invitation = service.issue(tenant.id, "bob@example.com", "tenant_admin")
    bob = Identity(id="u-bob", email="bob@example.com")
    service.accept(invitation.token, bob)
    first_used_at = db_session.get(Invitation, invitation.id).used_at

    with pytest.raises(InvitationInvalid) as exc:
        service.accept(invitation.token, bob)

    assert exc.value.reason == InvitationFailure.ALREADY_USED
    assert exc.value.status_code == 409
    assert db_session.get(Invitation, invitation.id).used_at == first_used_at
    assert db_session.get(Profile, "u-bob").role == "tenant_admin"


def test_expired_invitation_is_rejected_without_profile(service, tenant, clock, db_session):
    invitation = service.issue(tenant.id, "bob@example.com", "user", ttl_days=7)
    clock.advance(days=7)

    with pytest.raises(InvitationInvalid) as exc:
        service.accept(invitation.token, Identity(id="u-bob", email="bob@example.com"))

    assert exc.value.reason == InvitationFailure.EXPIRED
    assert exc.value.status_code == 410
    assert db_session.get(Profile, "u-bob") is None
    assert db_session.get(Invitation, invitation.id).used_at is None


def test_used_is_reported_before_expired(service, tenant, clock):
    invitation = service.issue(tenant.id, "bob@example.com", "user", ttl_days=1)
    service.accept(invitation.token, Identity(id="u-bob", email="bob@example.com"))
    clock.advance(days=30)

    assert service.classify(invitation) == InvitationFailure.ALREADY_USED


def test_request_cannot_escalate_role_or_tenant(service, tenant, make_tenant):
    other = make_tenant("Other")
    invitation = service.issue(tenant.id, "bob@example.com", "user")

    result = service.accept(
        invitation.token,
        Identity(id="u-bob", email="bob@example.com"),
        requested_role="super_admin",
        requested_tenant_id=other.id,
    )

    assert result.profile.role == "user"
    assert result.profile.tenant_id == tenant.id


def test_other_account_cannot_redeem(service, tenant, db_session):
    invitation = service.issue(tenant.id, "bob@example.com", "user")

    with pytest.raises(InvitationInvalid) as exc:
        service.accept(invitation.token, Identity(id="u-eve", email="eve@example.com"))

    assert exc.value.reason == InvitationFailure.INVALID_TOKEN
    assert db_session.get(Invitation, invitation.id).used_at is None


def test_email_match_is_case_insensitive(service, tenant):
    invitation = service.issue(tenant.id, "bob@example.com", "user")
    result = service.accept(invitation.token, Identity(id="u-bob", email="BOB@example.com"))
    assert result.profile.email == "bob@example.com"


def test_most_recent_active_invitation_wins(service, tenant, make_tenant, clock):
    older_tenant = make_tenant("Older")
    service.issue(older_tenant.id, "bob@example.com", "tenant_admin")
    clock.advance(minutes=5)
    newest = service.issue(tenant.id, "bob@example.com", "user")

    assert service.find_active_for_email("BOB@example.com").id == newest.id


def test_revoke_expires_unused_invitation(service, tenant, make_tenant):
    invitation = service.issue(tenant.id, "bob@example.com", "user")
    other = make_tenant("Other")

    assert service.revoke(invitation.id, tenant_id=other.id) is False
    assert service.revoke(invitation.id, tenant_id=tenant.id) is True
    assert service.revoke(invitation.id, tenant_id=tenant.id) is False

    with pytest.raises(InvitationInvalid) as exc:
        service.inspect(invitation.token)
    assert exc.value.reason == InvitationFailure.EXPIRED


def test_list_pending_excludes_used_and_expired(service, tenant):
    pending = service.issue(tenant.id, "a@example.com", "user")
    used = service.issue(tenant.id, "b@example.com", "user")
    revoked = service.issue(tenant.id, "c@example.com", "user")
    service.accept(used.token, Identity(id="u-b", email="b@example.com"))
    service.revoke(revoked.id)

    assert [i.id for i in service.list_pending(tenant.id)] == [pending.id]


def test_lost_race_is_reported_as_already_used(tenant, session_factory, db_session, clock):
    """The row was consumed by another session between lookup and update."""
    service = InvitationService(db_session, clock=clock)
    invitation = service.issue(tenant.id, "bob@example.com", "user")
    bob = Identity(id="u-bob", email="bob@example.com")

    stale = service.get_by_token(invitation.token)
    assert service.classify(stale) is None

    with session_factory() as other:
        InvitationService(other, clock=clock).accept(invitation.token, bob)

    with pytest.raises(InvitationInvalid) as exc:
        service._redeem_and_bind(stale, bob)
    assert exc.value.reason == InvitationFailure.ALREADY_USED


def test_provision_binds_active_invitation(service, tenant):
    service.issue(tenant.id, "bob@example.com", "tenant_admin")

    profile = service.provision_for_signup(Identity(id="u-bob", email="bob@example.com"))

    assert profile.role == "tenant_admin"
    assert profile.tenant_id == tenant.id


def test_provision_without_invitation_creates_default_user(service, db_session):
    profile = service.provision_for_signup(Identity(id="u-new", email="new@example.com"))

    assert profile.role == "user"
    assert profile.tenant_id is None
    assert db_session.get(Profile, "u-new") is not None


def test_acceptance_params_from_hash_and_query():
    params = AcceptanceParams.from_request(
        {"token": "query-token", "type": "INVITE"},
        "#access_token=at&refresh_token=rt&token=hash-token",
    )
    assert params.token == "query-token"
    assert params.type == "invite"
    assert params.has_session_tokens

    hash_only = AcceptanceParams.from_request({}, "access_token=at&type=weird")
    assert hash_only.type is None
    assert not hash_only.has_session_tokens

    assert AcceptanceParams.from_request({"token_hash": "th"}).token == "th"
