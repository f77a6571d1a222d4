"""Supabase client configuration and the auth collaborator gateway.

SECURITY NOTICE:
- SB_SECRET_KEY is server-only (NEVER exposed to clients)
- SB_PUBLISHABLE_KEY validates user JWTs and restores sessions (respects RLS)
- Admin operations (invite, password set, ban) use SECRET_KEY (bypasses RLS)
- This service never stores passwords or session tokens itself

KEY NAMING TRANSITION:
- New Supabase UI (2024+): SB_PUBLISHABLE_KEY / SB_SECRET_KEY
- Legacy (pre-2024): SUPABASE_ANON_KEY / SUPABASE_SERVICE_ROLE_KEY
- Falls back to legacy names if new names not set

ERROR MAPPING:
- Rejected/expired token (AuthApiError 4xx, missing session) → Unauthenticated
- Network failure or AuthApiError 5xx → TransportError
"""

import base64
import json
import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

import httpx
from supabase import AuthApiError, AuthError, Client, create_client

from crux_api.auth.session_store import Identity, Session
from crux_api.errors import InvalidRequest, TransportError, Unauthenticated

logger = logging.getLogger(__name__)

# Effectively permanent ban used for suspended users
BAN_DURATION = "876000h"


@lru_cache(maxsize=1)
def get_supabase_url() -> str:
    """Get Supabase project URL from environment.

    Raises:
        RuntimeError: If SUPABASE_URL not set
    """
    url = os.getenv("SUPABASE_URL")
    if not url:
        raise RuntimeError(
            "SUPABASE_URL environment variable not set. "
            "Required for session validation and invitations."
        )
    return url


@lru_cache(maxsize=1)
def get_supabase_api_key() -> str:
    """Get Supabase publishable (anon) key from environment.

    Priority:
    1. SB_PUBLISHABLE_KEY (new standard)
    2. SUPABASE_ANON_KEY (legacy)

    Raises:
        RuntimeError: If neither key is set
    """
    key = os.getenv("SB_PUBLISHABLE_KEY")
    if key:
        return key

    key = os.getenv("SUPABASE_ANON_KEY")
    if key:
        logger.info(
            "Using legacy SUPABASE_ANON_KEY (consider migrating to SB_PUBLISHABLE_KEY)"
        )
        return key

    raise RuntimeError(
        "Neither SB_PUBLISHABLE_KEY nor SUPABASE_ANON_KEY environment variable is set. "
        "Set SB_PUBLISHABLE_KEY (recommended) or SUPABASE_ANON_KEY (legacy)."
    )


@lru_cache(maxsize=1)
def get_supabase_secret_key() -> str:
    """Get Supabase secret (service role) key from environment.

    Priority:
    1. SB_SECRET_KEY (new standard)
    2. SUPABASE_SERVICE_ROLE_KEY (legacy)

    SECRET_KEY bypasses RLS and is for admin operations only.

    Raises:
        RuntimeError: If neither key is set
    """
    key = os.getenv("SB_SECRET_KEY")
    if key:
        return key

    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if key:
        logger.info(
            "Using legacy SUPABASE_SERVICE_ROLE_KEY (consider migrating to SB_SECRET_KEY)"
        )
        return key

    raise RuntimeError(
        "Neither SB_SECRET_KEY nor SUPABASE_SERVICE_ROLE_KEY environment variable is set. "
        "Required for invitations and user administration. "
        "Set SB_SECRET_KEY (recommended) or SUPABASE_SERVICE_ROLE_KEY (legacy)."
    )


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Get Supabase client for user-facing auth operations (publishable key)."""
    url = get_supabase_url()
    api_key = get_supabase_api_key()

    logger.info(
        "Initializing Supabase client",
        extra={"supabase_url": url, "key_type": "publishable"},
    )
    return create_client(url, api_key)


@lru_cache(maxsize=1)
def get_supabase_admin_client() -> Client:
    """Get Supabase admin client (secret key, bypasses RLS)."""
    url = get_supabase_url()
    secret_key = get_supabase_secret_key()

    logger.info(
        "Initializing Supabase admin client",
        extra={"supabase_url": url, "key_type": "secret"},
    )
    return create_client(url, secret_key)


def _user_identity(user: Any) -> Identity:
    email = getattr(user, "email", None) or ""
    return Identity(id=str(user.id), email=email.lower())


def _token_expiry(access_token: str) -> Optional[datetime]:
    """Read the exp claim of an already validated JWT. None if unreadable."""
    parts = access_token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
        return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
    except (ValueError, TypeError, KeyError):
        return None


class AuthGateway:
    """Thin wrapper over Supabase Auth.

    Clients are injected so tests can pass MagicMock objects; production
    uses the cached module-level clients via get_auth_gateway().
    """

    def __init__(self, client: Optional[Client] = None, admin_client: Optional[Client] = None):
        self._client = client
        self._admin_client = admin_client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    @property
    def admin(self) -> Client:
        if self._admin_client is None:
            self._admin_client = get_supabase_admin_client()
        return self._admin_client

    def _translate(self, operation: str, exc: Exception) -> Exception:
        if isinstance(exc, httpx.HTTPError):
            logger.error(
                "Auth backend unreachable",
                extra={"event": "auth.transport_error", "operation": operation},
            )
            return TransportError(operation)
        status = getattr(exc, "status", None)
        if isinstance(exc, AuthApiError) and status is not None and status >= 500:
            logger.error(
                "Auth backend error",
                extra={"event": "auth.transport_error", "operation": operation, "status": status},
            )
            return TransportError(operation)
        logger.info(
            "Auth backend rejected request",
            extra={"event": "auth.rejected", "operation": operation, "status": status},
        )
        return Unauthenticated("Invalid or expired session. Please sign in again.")

    def get_user(self, access_token: str) -> Identity:
        """Validate an access token and return its Identity.

        Raises:
            Unauthenticated: token missing, invalid or expired
            TransportError: auth backend unreachable
        """
        if not access_token:
            raise Unauthenticated("Missing session token. Please sign in.")
        try:
            response = self.client.auth.get_user(access_token)
        except (AuthError, httpx.HTTPError) as e:
            raise self._translate("get_user", e) from e

        if not response or not response.user:
            raise Unauthenticated("Invalid or expired session. Please sign in again.")
        return _user_identity(response.user)

    def set_session(self, access_token: str, refresh_token: str) -> Session:
        """Bootstrap a Session from a token pair (magic link / invite callback).

        Only the access token is validated (get_user). The pair is never
        installed on the shared client, so no server-side session or refresh
        timer is kept for the user.
        """
        if not access_token or not refresh_token:
            raise Unauthenticated("Session tokens are missing. Please use the link from your email.")
        identity = self.get_user(access_token)
        return Session(
            identity=identity,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_token_expiry(access_token),
        )

    def sign_out(self, access_token: str) -> None:
        """Revoke the session's refresh tokens (global scope)."""
        try:
            self.admin.auth.admin.sign_out(access_token)
        except (AuthError, httpx.HTTPError) as e:
            raise self._translate("sign_out", e) from e

    def invite_user_by_email(
        self, email: str, data: dict[str, Any], redirect_to: str
    ) -> Optional[str]:
        """Send the invitation email. Returns the auth user id when known."""
        try:
            response = self.admin.auth.admin.invite_user_by_email(
                email, {"data": data, "redirect_to": redirect_to}
            )
        except (AuthError, httpx.HTTPError) as e:
            translated = self._translate("invite_user_by_email", e)
            if isinstance(translated, TransportError):
                raise translated from e
            # 4xx (already registered, rate limited): report as a failed send
            raise TransportError("invite_user_by_email", str(e)) from e
        user = getattr(response, "user", None)
        return str(user.id) if user is not None else None

    def set_password(self, user_id: str, password: str) -> None:
        """Set the password on an existing account. Safe to retry."""
        try:
            self.admin.auth.admin.update_user_by_id(user_id, {"password": password})
        except (AuthError, httpx.HTTPError) as e:
            translated = self._translate("set_password", e)
            if isinstance(translated, TransportError):
                raise translated from e
            # 4xx (weak password, unknown user): retrying cannot succeed
            raise InvalidRequest(getattr(e, "message", None) or str(e)) from e

    def ban_user(self, user_id: str) -> None:
        try:
            self.admin.auth.admin.update_user_by_id(user_id, {"ban_duration": BAN_DURATION})
        except (AuthError, httpx.HTTPError) as e:
            raise TransportError("ban_user", str(e)) from e


@lru_cache(maxsize=1)
def _default_gateway() -> AuthGateway:
    return AuthGateway()


def get_auth_gateway() -> AuthGateway:
    """FastAPI dependency returning the process-wide gateway."""
    return _default_gateway()
