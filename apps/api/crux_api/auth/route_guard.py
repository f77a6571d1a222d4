"""Route Guard: the gate in front of protected views and endpoints.

FLOW:
1. No identity                → redirect to public entry (no profile lookup)
2. Profile still resolving    → LOADING (never protected content)
3. has_access(role, required) → role-hierarchy check, never string equality
4. Deny                       → redirect to public entry, not an error page

Two front ends share decide():
- RouteGuard.evaluate() for navigation driven by SessionStore/ProfileState,
  with per-pathname memoization so a redirect never re-triggers itself.
- require_role() FastAPI dependency for HTTP endpoints; failures raise
  Unauthenticated/AccessDenied which main.py turns into a 303 to the
  public entry (browser) or a neutral problem+json (API client).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from fastapi import Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from crux_api.auth.profile_resolver import ProfileResolver
from crux_api.auth.profile_state import ProfileState, ProfileStatus
from crux_api.auth.roles import LANDING_REQUIREMENTS, Role, has_access, is_platform_admin, landing_path, parse_role
from crux_api.auth.session_store import Identity, SessionStore
from crux_api.config.env import get_public_entry_path
from crux_api.context import tenant_id_var, user_id_var
from crux_api.db.models import Profile, Tenant
from crux_api.db.session import get_db
from crux_api.errors import AccessDenied, Unauthenticated
from crux_api.observability.metrics import log_guard_decision
from crux_api.supabase_client import AuthGateway, get_auth_gateway

logger = logging.getLogger(__name__)

session_security = HTTPBearer(auto_error=False, description="Supabase JWT Session Token")


class GuardDecision(str, Enum):
    ALLOW = "ALLOW"
    REDIRECT = "REDIRECT"
    LOADING = "LOADING"
    # Denied, but the redirect target is the current location: stay put
    HALT = "HALT"
    # Profile lookup failed with a transport error: offer a retry
    RETRY = "RETRY"


@dataclass(frozen=True)
class GuardOutcome:
    decision: GuardDecision
    location: Optional[str] = None
    reason: str = ""


def decide(
    profile: Optional[Any], required: Optional[Role], tenant: Optional[Any] = None
) -> tuple[bool, str]:
    """Core access decision for a resolved profile.

    required=None means "any authenticated user with a valid profile".
    """
    if profile is None:
        return False, "no_profile"

    role = parse_role(profile.role)
    if role is None:
        return False, "unknown_role"

    if getattr(profile, "suspended_at", None) is not None:
        return False, "profile_suspended"

    if not is_platform_admin(role) and tenant is not None and tenant.status == "suspended":
        return False, "tenant_suspended"

    if required is None:
        return True, "authenticated"

    if not has_access(role, required):
        return False, "insufficient_role"

    return True, "role_satisfied"


class RouteGuard:
    """Navigation guard over a SessionStore and its ProfileState."""

    def __init__(
        self,
        store: SessionStore,
        profile_state: ProfileState,
        public_entry: Optional[str] = None,
        tenant_lookup: Optional[Callable[[str], Optional[Any]]] = None,
    ):
        self._store = store
        self._state = profile_state
        self._public_entry = public_entry or get_public_entry_path()
        self._tenant_lookup = tenant_lookup
        self._memo: dict[str, GuardOutcome] = {}
        self._memo_generation = profile_state.generation

    def evaluate(self, pathname: str, required: Optional[Role] = None) -> GuardOutcome:
        if self._state.generation != self._memo_generation:
            self._memo.clear()
            self._memo_generation = self._state.generation

        memoized = self._memo.get(pathname)
        if memoized is not None:
            return memoized

        if self._store.identity is None:
            return self._deny(pathname, required, "unauthenticated", None)

        status = self._state.status
        if status == ProfileStatus.LOADING or self._state.identity != self._store.identity:
            log_guard_decision(GuardDecision.LOADING.value, _role_value(required), "profile_pending", path=pathname)
            return GuardOutcome(GuardDecision.LOADING, reason="profile_pending")

        if status == ProfileStatus.ERROR:
            return GuardOutcome(GuardDecision.RETRY, reason="transport_error")

        profile = self._state.profile
        tenant = None
        if self._tenant_lookup is not None and profile is not None and profile.tenant_id:
            tenant = self._tenant_lookup(profile.tenant_id)

        allowed, reason = decide(profile, required, tenant)
        if not allowed:
            return self._deny(pathname, required, reason, getattr(profile, "role", None))

        log_guard_decision(
            GuardDecision.ALLOW.value, _role_value(required), reason, actual_role=profile.role, path=pathname
        )
        return GuardOutcome(GuardDecision.ALLOW, reason=reason)

    def landing(self) -> Optional[str]:
        """Landing page for the current profile, if its role satisfies it."""
        profile = self._state.profile
        if self._state.status != ProfileStatus.READY or profile is None:
            return None
        return landing_for(profile, self._public_entry)

    def _deny(
        self, pathname: str, required: Optional[Role], reason: str, actual_role: Optional[str]
    ) -> GuardOutcome:
        if pathname == self._public_entry:
            outcome = GuardOutcome(GuardDecision.HALT, reason=reason)
        else:
            outcome = GuardOutcome(GuardDecision.REDIRECT, location=self._public_entry, reason=reason)
        self._memo[pathname] = outcome
        log_guard_decision(outcome.decision.value, _role_value(required), reason, actual_role=actual_role, path=pathname)
        return outcome


def _role_value(role: Optional[Role]) -> Optional[str]:
    return role.value if role is not None else None


def landing_for(profile: Any, public_entry: str = "/") -> str:
    """Role landing page, falling back to the public entry if not satisfied."""
    target = landing_path(profile.role, public_entry)
    required = LANDING_REQUIREMENTS.get(target)
    allowed, _ = decide(profile, required)
    return target if allowed else public_entry


# ============================================================================
# HTTP dependencies
# ============================================================================


class AccessContext:
    """Authenticated, authorized caller of an HTTP endpoint."""

    def __init__(
        self,
        identity: Identity,
        profile: Profile,
        tenant: Optional[Tenant] = None,
        access_token: Optional[str] = None,
    ):
        self.identity = identity
        self.profile = profile
        self.tenant = tenant
        self.access_token = access_token

    @property
    def user_id(self) -> str:
        return self.identity.id

    @property
    def role(self) -> Optional[Role]:
        return parse_role(self.profile.role)

    @property
    def tenant_id(self) -> Optional[str]:
        return self.profile.tenant_id

    @property
    def is_platform_admin(self) -> bool:
        return is_platform_admin(self.profile.role)


def _authenticate(token: str, db: Session, gateway: AuthGateway) -> AccessContext:
    identity = gateway.get_user(token)
    resolver = ProfileResolver(db)
    profile = resolver.resolve_or_provision(identity)
    tenant = resolver.get_tenant(profile.tenant_id) if profile.tenant_id else None
    return AccessContext(identity, profile, tenant, access_token=token)


def require_role(required: Optional[Role] = None) -> Callable[..., Any]:
    """Dependency factory: authenticated caller whose role satisfies required.

    Usage:
        @router.get("/v1/reviews")
        def list_reviews(ctx: AccessContext = Depends(require_role(Role.USER))): ...
    """

    async def dependency(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
        db: Session = Depends(get_db),
        gateway: AuthGateway = Depends(get_auth_gateway),
    ) -> AccessContext:
        path = request.url.path
        if credentials is None or not credentials.credentials:
            log_guard_decision(GuardDecision.REDIRECT.value, _role_value(required), "unauthenticated", path=path)
            raise Unauthenticated("Please sign in to continue.")

        ctx = await run_in_threadpool(_authenticate, credentials.credentials, db, gateway)

        user_id_var.set(ctx.user_id)
        tenant_id_var.set(ctx.tenant_id or "")

        allowed, reason = decide(ctx.profile, required, ctx.tenant)
        if not allowed:
            log_guard_decision(
                GuardDecision.REDIRECT.value, _role_value(required), reason, actual_role=ctx.profile.role, path=path
            )
            raise AccessDenied()

        log_guard_decision(
            GuardDecision.ALLOW.value, _role_value(required), reason, actual_role=ctx.profile.role, path=path
        )
        return ctx

    return dependency
