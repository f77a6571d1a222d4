"""ProfileResolver: read retry policy, provisioning fallbacks, error kinds."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from crux_api.auth.invitations import InvitationService
from crux_api.auth.profile_resolver import ProfileResolver, async_resolver
from crux_api.auth.session_store import Identity
from crux_api.errors import TransportError

T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _failing_execute(db: Session, failures: int):
    """Replace db.execute with one that fails `failures` times first."""
    real_execute = db.execute
    calls = {"count": 0}

    def execute(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] <= failures:
            raise OperationalError("SELECT", {}, Exception("connection reset"))
        return real_execute(*args, **kwargs)

    return execute, calls


def test_read_is_retried_once_after_failure(db_session, make_user, monkeypatch):
    profile, _ = make_user(role="user")
    execute, calls = _failing_execute(db_session, failures=1)
    monkeypatch.setattr(db_session, "execute", execute)

    resolved = ProfileResolver(db_session).resolve(profile.id)

    assert resolved is not None
    assert resolved.id == profile.id
    assert calls["count"] == 2


def test_persistent_read_failure_is_transport_error(db_session, make_user, monkeypatch):
    profile, _ = make_user(role="user")
    execute, calls = _failing_execute(db_session, failures=100)
    monkeypatch.setattr(db_session, "execute", execute)

    with pytest.raises(TransportError) as exc:
        ProfileResolver(db_session).resolve(profile.id)

    assert exc.value.operation == "profile.resolve"
    assert exc.value.status_code == 503
    assert calls["count"] == 2


def test_missing_profile_is_none_not_error(db_session):
    assert ProfileResolver(db_session).resolve("nobody") is None


def test_expired_invitation_is_skipped_at_signup(db_session, make_tenant):
    tenant = make_tenant("Acme")
    clock = Clock()
    invitations = InvitationService(db_session, clock=clock)
    invitations.issue(tenant.id, "bob@example.com", "tenant_admin", ttl_days=1)
    clock.advance(days=2)

    assert invitations.find_active_for_email("bob@example.com") is None

    bob = Identity(id="bob", email="bob@example.com")
    profile = ProfileResolver(db_session, invitations).resolve_or_provision(bob)

    assert profile.role == "user"
    assert profile.tenant_id is None


def test_active_invitation_wins_over_newer_expired_one(db_session, make_tenant):
    tenant = make_tenant("Acme")
    clock = Clock()
    invitations = InvitationService(db_session, clock=clock)
    older = invitations.issue(tenant.id, "bob@example.com", "tenant_admin", ttl_days=7)
    clock.advance(hours=1)
    invitations.issue(tenant.id, "bob@example.com", "user", ttl_days=0)

    found = invitations.find_active_for_email("bob@example.com")
    assert found is not None
    assert found.id == older.id

    bob = Identity(id="bob", email="bob@example.com")
    profile = invitations.provision_for_signup(bob)
    assert profile.role == "tenant_admin"
    assert profile.tenant_id == tenant.id


def test_provisioning_conflict_without_winner_is_transport_error(db_session, monkeypatch):
    def commit():
        raise IntegrityError("INSERT INTO profiles", {}, Exception("duplicate key"))

    monkeypatch.setattr(db_session, "commit", commit)
    carol = Identity(id="carol", email="carol@example.com")

    with pytest.raises(TransportError) as exc:
        InvitationService(db_session).provision_for_signup(carol)

    assert exc.value.operation == "profile.provision"
    assert isinstance(exc.value.__cause__, IntegrityError)


def test_provisioning_lookup_failure_is_transport_error(db_session, monkeypatch):
    def get(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(db_session, "get", get)
    dave = Identity(id="dave", email="dave@example.com")

    with pytest.raises(TransportError):
        InvitationService(db_session).provision_for_signup(dave)


@pytest.mark.asyncio
async def test_async_resolver_wraps_load_failure(session_factory, make_user, monkeypatch):
    profile, _ = make_user(role="user")

    def refresh(self, instance, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(Session, "refresh", refresh)
    resolve = async_resolver(session_factory)

    with pytest.raises(TransportError) as exc:
        await resolve(Identity(id=profile.id, email=profile.email))

    assert exc.value.operation == "profile.load"


@pytest.mark.asyncio
async def test_async_resolver_returns_detached_profile(session_factory, make_user):
    profile, _ = make_user(role="tenant_admin")
    resolve = async_resolver(session_factory)

    loaded = await resolve(Identity(id=profile.id, email=profile.email))

    assert loaded.id == profile.id
    assert loaded.role == "tenant_admin"
