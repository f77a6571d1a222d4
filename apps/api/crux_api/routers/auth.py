"""Session and invitation-acceptance endpoints.

Endpoints:
- POST /v1/auth/session: bootstrap a session from Supabase tokens
- GET /v1/auth/me: current profile and landing path
- POST /v1/auth/sign-out: revoke the session
- POST /v1/auth/password: set the caller's password (retry-safe)
- GET /v1/auth/invitations/{token}: inspect an invitation (never consumes)
- POST /v1/auth/invitations/accept: redeem an invitation and bind the profile
- GET /auth/accept: HTML landing page for emailed invitation links

SECURITY:
- Bound role/tenant always come from the invitation row
- Tokens and passwords are never logged
"""

import html
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import HTMLResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from crux_api.audit.recorder import AuditAction, AuditRecorder, get_audit_recorder
from crux_api.auth.invitations import AcceptanceParams, InvitationService
from crux_api.auth.profile_resolver import ProfileResolver
from crux_api.auth.route_guard import AccessContext, decide, landing_for, require_role, session_security
from crux_api.auth.session_store import Identity, SessionStore
from crux_api.auth.session_store import Session as AuthSession
from crux_api.config.env import get_min_password_length, get_public_entry_path
from crux_api.context import tenant_id_var, user_id_var
from crux_api.db.models import Tenant
from crux_api.db.session import get_db
from crux_api.errors import AccessDenied, InvalidRequest, InvitationInvalid, TransportError, Unauthenticated
from crux_api.middleware import get_safe_query
from crux_api.schemas import (
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    InvitationPreview,
    PasswordRequest,
    ProfileOut,
    SessionRequest,
    SessionResponse,
    TenantOut,
)
from crux_api.supabase_client import AuthGateway, get_auth_gateway

router = APIRouter(prefix="/v1/auth", tags=["auth"])
landing_router = APIRouter(tags=["auth"])
logger = logging.getLogger(__name__)


def _bearer_identity(
    credentials: Optional[HTTPAuthorizationCredentials], gateway: AuthGateway
) -> tuple[Identity, str]:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Please sign in to continue.")
    return gateway.get_user(credentials.credentials), credentials.credentials


def _check_password(password: str) -> None:
    minimum = get_min_password_length()
    if len(password) < minimum:
        raise InvalidRequest(f"Password must be at least {minimum} characters.")


def _session_response(profile, tenant: Optional[Tenant]) -> SessionResponse:
    return SessionResponse(
        profile=ProfileOut.model_validate(profile),
        tenant=TenantOut.model_validate(tenant) if tenant is not None else None,
        landing_path=landing_for(profile, get_public_entry_path()),
    )


@router.post("/session", response_model=SessionResponse)
def create_session(
    body: SessionRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> SessionResponse:
    """Establish a session from the token pair Supabase handed the client.

    Validates the tokens through the auth backend, then resolves the profile,
    provisioning it on first sign-in (invitation binding or default user).

    Raises:
        Unauthenticated: tokens rejected by the auth backend
        AccessDenied: profile or tenant suspended
        TransportError: auth backend or database unavailable
    """
    store = SessionStore(gateway)
    store.init()
    try:
        if body.refresh_token:
            store.sign_in_with_tokens(body.access_token, body.refresh_token)
        else:
            store.set_session(AuthSession(gateway.get_user(body.access_token), body.access_token))
        identity = store.identity
    finally:
        store.teardown()

    resolver = ProfileResolver(db)
    profile = resolver.resolve_or_provision(identity)
    tenant = resolver.get_tenant(profile.tenant_id) if profile.tenant_id else None

    user_id_var.set(identity.id)
    tenant_id_var.set(profile.tenant_id or "")

    allowed, reason = decide(profile, None, tenant)
    if not allowed:
        logger.info(
            "Session refused for inactive profile",
            extra={"event": "auth.session.denied", "reason": reason},
        )
        raise AccessDenied()

    audit.record(
        AuditAction.USER_LOGIN,
        tenant_id=profile.tenant_id,
        user_id=identity.id,
        resource_type="user",
        resource_id=identity.id,
        request=request,
    )
    logger.info("auth.session.established", extra={"role": profile.role})
    return _session_response(profile, tenant)


@router.get("/me", response_model=SessionResponse)
def me(ctx: AccessContext = Depends(require_role())) -> SessionResponse:
    return _session_response(ctx.profile, ctx.tenant)


@router.post("/sign-out", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
    gateway: AuthGateway = Depends(get_auth_gateway),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Response:
    """Revoke the caller's session. Suspended users may still sign out."""
    identity, token = _bearer_identity(credentials, gateway)

    store = SessionStore(gateway)
    store.init(AuthSession(identity, token))
    try:
        store.sign_out()
    finally:
        store.teardown()

    audit.record(
        AuditAction.USER_LOGOUT,
        user_id=identity.id,
        resource_type="user",
        resource_id=identity.id,
        request=request,
    )
    logger.info("auth.session.signed_out")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
def set_password(
    body: PasswordRequest,
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
    gateway: AuthGateway = Depends(get_auth_gateway),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Response:
    """Set the caller's password.

    Safe to repeat; this is how a client finishes an acceptance whose
    response reported password_set=false.
    """
    identity, _ = _bearer_identity(credentials, gateway)
    _check_password(body.password)
    gateway.set_password(identity.id, body.password)

    audit.record(
        AuditAction.PASSWORD_SET,
        user_id=identity.id,
        resource_type="user",
        resource_id=identity.id,
        request=request,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Invitations
# ============================================================================


@router.get("/invitations/{token}", response_model=InvitationPreview)
def inspect_invitation(token: str, db: Session = Depends(get_db)) -> InvitationPreview:
    """Describe a redeemable invitation.

    Raises:
        InvitationInvalid: 404 unknown, 409 already used, 410 expired
    """
    invitation = InvitationService(db).inspect(token)
    tenant = db.get(Tenant, invitation.tenant_id)
    return InvitationPreview(
        email=invitation.email,
        role=invitation.role,
        tenant_id=invitation.tenant_id,
        tenant_name=tenant.name if tenant is not None else None,
        expires_at=invitation.expires_at,
    )


def _acceptance_identity(
    body: AcceptInvitationRequest,
    credentials: Optional[HTTPAuthorizationCredentials],
    gateway: AuthGateway,
    service: InvitationService,
) -> Identity:
    """Who is accepting: link tokens, bearer header, or the invited auth user."""
    if body.access_token and body.refresh_token:
        return gateway.set_session(body.access_token, body.refresh_token).identity
    if body.access_token:
        return gateway.get_user(body.access_token)
    if credentials is not None and credentials.credentials:
        return gateway.get_user(credentials.credentials)

    invitation = service.inspect(body.token)
    if invitation.auth_user_id is None:
        raise Unauthenticated("Open the invitation link from your email to continue.")
    return Identity(id=invitation.auth_user_id, email=invitation.email)


@router.post("/invitations/accept", response_model=AcceptInvitationResponse)
def accept_invitation(
    body: AcceptInvitationRequest,
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
    db: Session = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> AcceptInvitationResponse:
    """Redeem an invitation and bind the invitee's profile.

    Consumption is at-most-once. The password is set after binding; if
    that step fails the response carries password_set=false and the client
    retries through POST /v1/auth/password.
    """
    if body.password is not None:
        _check_password(body.password)

    service = InvitationService(db)
    identity = _acceptance_identity(body, credentials, gateway, service)
    user_id_var.set(identity.id)

    result = service.accept(body.token, identity, body.role, body.tenant_id)
    profile = result.profile
    tenant_id_var.set(profile.tenant_id or "")

    password_set = False
    if body.password is not None:
        try:
            gateway.set_password(identity.id, body.password)
            password_set = True
        except (TransportError, InvalidRequest):
            logger.warning(
                "Password not set after invitation acceptance",
                exc_info=True,
                extra={"event": "invitation.password_pending", "invitation_id": result.invitation.id},
            )

    audit.record(
        AuditAction.USER_INVITATION_ACCEPTED,
        tenant_id=profile.tenant_id,
        user_id=identity.id,
        resource_type="invitation",
        resource_id=result.invitation.id,
        details={"role": profile.role, "password_set": password_set},
        request=request,
    )
    return AcceptInvitationResponse(
        profile=ProfileOut.model_validate(profile),
        landing_path=landing_for(profile, get_public_entry_path()),
        password_set=password_set,
    )


# ============================================================================
# HTML landing for emailed links
# ============================================================================

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<meta name="referrer" content="no-referrer">
<title>{title}</title>
<style>
body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
       max-width: 480px; margin: 60px auto; padding: 0 20px; color: #1f2937; }}
.error {{ color: #b91c1c; }}
input, button {{ font-size: 16px; padding: 8px; width: 100%; margin-top: 8px; box-sizing: border-box; }}
</style>
</head>
<body>
{body}
</body>
</html>
"""

# Moves a hash-delivered token into the query string so it reaches the server
_HASH_BRIDGE = """<h1>Opening your invitation</h1>
<p id="status">One moment...</p>
<script>
if (window.location.hash.length > 1) {
  window.location.replace(window.location.pathname + "?" + window.location.hash.substring(1));
} else {
  document.getElementById("status").textContent = "This invitation link is incomplete. Please request a new invitation.";
}
</script>
"""

_ACCEPT_FORM = """<h1>Join {tenant_name}</h1>
<p>You were invited as <strong>{role}</strong> with {email}.</p>
<form id="accept">
  <label for="password">Choose a password</label>
  <input id="password" type="password" minlength="{min_length}" required>
  <button type="submit">Accept invitation</button>
</form>
<p id="status"></p>
<script>
const params = {params};
document.getElementById("accept").addEventListener("submit", async (event) => {{
  event.preventDefault();
  params.password = document.getElementById("password").value;
  const response = await fetch("/v1/auth/invitations/accept", {{
    method: "POST",
    headers: {{"Content-Type": "application/json", "Accept": "application/json"}},
    body: JSON.stringify(params),
  }});
  const payload = await response.json();
  if (response.ok) {{
    window.location.replace(payload.landing_path);
  }} else {{
    document.getElementById("status").textContent = payload.detail;
  }}
}});
</script>
"""


def _script_json(value: dict) -> str:
    return json.dumps(value).replace("<", "\\u003c").replace(">", "\\u003e")


def _error_page(message: str, status_code: int) -> HTMLResponse:
    body = f'<h1>Invitation unavailable</h1>\n<p class="error">{html.escape(message)}</p>'
    return HTMLResponse(_PAGE.format(title="Invitation", body=body), status_code=status_code)


@landing_router.get("/auth/accept", response_class=HTMLResponse)
def accept_landing(request: Request, db: Session = Depends(get_db)) -> HTMLResponse:
    """Landing page for invitation links.

    Tolerates both delivery styles: a token in the query string renders the
    acceptance form; a bare URL (token in the hash fragment, which browsers
    never send) renders a bridge that re-submits the fragment as a query.
    """
    params = AcceptanceParams.from_request(request.query_params)
    logger.info("auth.accept.view", extra={"query": get_safe_query(request), "link_type": params.type})

    if params.error_description:
        return _error_page(params.error_description, status.HTTP_400_BAD_REQUEST)

    if not params.token:
        return HTMLResponse(_PAGE.format(title="Invitation", body=_HASH_BRIDGE))

    try:
        invitation = InvitationService(db).inspect(params.token)
    except InvitationInvalid as e:
        return _error_page(e.detail, e.status_code)

    tenant = db.get(Tenant, invitation.tenant_id)
    form_params = {"token": params.token}
    if params.access_token:
        form_params["access_token"] = params.access_token
    if params.refresh_token:
        form_params["refresh_token"] = params.refresh_token

    body = _ACCEPT_FORM.format(
        tenant_name=html.escape(tenant.name if tenant is not None else "your team"),
        role=html.escape(invitation.role.replace("_", " ")),
        email=html.escape(invitation.email),
        min_length=get_min_password_length(),
        params=_script_json(form_params),
    )
    return HTMLResponse(_PAGE.format(title="Accept invitation", body=body))
