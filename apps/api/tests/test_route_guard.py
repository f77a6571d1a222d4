"""RouteGuard navigation decisions."""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from crux_api.auth.profile_state import ProfileState
from crux_api.auth.roles import Role
from crux_api.auth.route_guard import GuardDecision, RouteGuard, decide, landing_for
from crux_api.auth.session_store import Identity, Session, SessionStore
from crux_api.errors import TransportError

ALICE = Identity(id="alice", email="alice@example.com")


def _profile(role="user", tenant_id="t1", suspended=False):
    return SimpleNamespace(
        role=role,
        tenant_id=tenant_id,
        suspended_at=datetime.now(timezone.utc) if suspended else None,
    )


async def _guard_for(profile=None, tenant_lookup=None, signed_in=True, resolve=None):
    store = SessionStore()
    store.init()
    resolve = resolve or AsyncMock(return_value=profile)
    state = ProfileState(store, resolve)
    guard = RouteGuard(store, state, public_entry="/", tenant_lookup=tenant_lookup)
    if signed_in:
        store.set_session(Session(ALICE, "at"))
        await state.wait_settled()
    return store, state, guard, resolve


@pytest.mark.asyncio
async def test_signed_out_redirects_without_profile_lookup():
    _, _, guard, resolve = await _guard_for(signed_in=False)

    outcome = guard.evaluate("/dashboard", Role.USER)

    assert outcome.decision == GuardDecision.REDIRECT
    assert outcome.location == "/"
    resolve.assert_not_called()


@pytest.mark.asyncio
async def test_denial_on_public_entry_halts():
    _, _, guard, _ = await _guard_for(signed_in=False)

    outcome = guard.evaluate("/", Role.USER)

    assert outcome.decision == GuardDecision.HALT
    assert outcome.location is None


@pytest.mark.asyncio
async def test_redirect_is_memoized_per_pathname():
    _, _, guard, _ = await _guard_for(_profile("user"))

    first = guard.evaluate("/master", Role.SUPER_ADMIN)
    second = guard.evaluate("/master", Role.SUPER_ADMIN)

    assert first.decision == GuardDecision.REDIRECT
    assert first.reason == "insufficient_role"
    assert second is first


@pytest.mark.asyncio
async def test_loading_while_profile_resolves():
    store = SessionStore()
    store.init()
    gate = asyncio.Event()

    async def slow(identity):
        await gate.wait()
        return _profile("tenant_admin")

    state = ProfileState(store, slow)
    guard = RouteGuard(store, state, public_entry="/")
    store.set_session(Session(ALICE, "at"))

    assert guard.evaluate("/dashboard", Role.USER).decision == GuardDecision.LOADING

    gate.set()
    await state.wait_settled()
    assert guard.evaluate("/dashboard", Role.USER).decision == GuardDecision.ALLOW


@pytest.mark.asyncio
async def test_hierarchy_allows_higher_roles():
    _, _, guard, _ = await _guard_for(_profile("super_admin", tenant_id=None))

    assert guard.evaluate("/dashboard", Role.USER).decision == GuardDecision.ALLOW
    assert guard.evaluate("/master", Role.SUPER_ADMIN).decision == GuardDecision.ALLOW
    assert guard.landing() == "/master"


@pytest.mark.asyncio
async def test_transport_error_offers_retry():
    _, _, guard, _ = await _guard_for(resolve=AsyncMock(side_effect=TransportError("profile.resolve")))

    assert guard.evaluate("/dashboard", Role.USER).decision == GuardDecision.RETRY


@pytest.mark.asyncio
async def test_raw_database_error_offers_retry_not_loading():
    failure = OperationalError("SELECT", {}, Exception("connection reset"))
    _, state, guard, _ = await _guard_for(resolve=AsyncMock(side_effect=failure))

    assert state.error is not None
    assert guard.evaluate("/dashboard", Role.USER).decision == GuardDecision.RETRY


@pytest.mark.asyncio
async def test_suspended_profile_and_tenant_are_denied():
    _, _, guard, _ = await _guard_for(_profile("tenant_admin", suspended=True))
    assert guard.evaluate("/dashboard", Role.USER).reason == "profile_suspended"

    lookup = lambda tenant_id: SimpleNamespace(id=tenant_id, status="suspended")
    _, _, guard, _ = await _guard_for(_profile("tenant_admin"), tenant_lookup=lookup)
    assert guard.evaluate("/dashboard", Role.USER).reason == "tenant_suspended"


@pytest.mark.asyncio
async def test_memo_is_cleared_when_identity_changes():
    store, state, guard, resolve = await _guard_for(_profile("user"))
    assert guard.evaluate("/master", Role.SUPER_ADMIN).decision == GuardDecision.REDIRECT

    resolve.return_value = _profile("super_admin", tenant_id=None)
    store.set_session(Session(Identity(id="root", email="root@example.com"), "at-2"))
    await state.wait_settled()

    assert guard.evaluate("/master", Role.SUPER_ADMIN).decision == GuardDecision.ALLOW


def test_decide_without_profile_or_with_unknown_role():
    assert decide(None, Role.USER) == (False, "no_profile")
    assert decide(_profile("owner"), None) == (False, "unknown_role")
    assert decide(_profile("user"), None) == (True, "authenticated")


def test_landing_for_falls_back_when_not_allowed():
    assert landing_for(_profile("user")) == "/dashboard"
    assert landing_for(_profile("user", suspended=True), "/welcome") == "/welcome"
