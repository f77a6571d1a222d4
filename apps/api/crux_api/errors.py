"""Access-control error taxonomy.

Each error carries the RFC 9457 fields the global exception handlers in
main.py need (type slug, title, status). Routers and services raise these;
they never build HTTP responses themselves.

- Unauthenticated      no valid session              → redirect / 401
- ProfileNotFound      identity has no profile row   → provisioned, or 404
- InvitationInvalid    EXPIRED | ALREADY_USED | INVALID_TOKEN
- AccessDenied         role or tenant insufficient   → redirect / stealth 404
- TransportError       database or auth backend unreachable → 503
- InvalidRequest       request is well-formed but not acceptable → 400
- Conflict             uniqueness violation (tenant domain) → 409
"""

from enum import Enum
from typing import Optional


class CruxError(Exception):
    """Base class for errors rendered as problem+json."""

    status_code: int = 500
    title: str = "Internal Server Error"
    slug: str = "internal-error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.title
        super().__init__(self.detail)


class Unauthenticated(CruxError):
    status_code = 401
    title = "Unauthenticated"
    slug = "unauthenticated"


class ProfileNotFound(CruxError):
    status_code = 404
    title = "Profile Not Found"
    slug = "profile-not-found"

    def __init__(self, identity_id: str, detail: Optional[str] = None):
        self.identity_id = identity_id
        super().__init__(detail or "No profile exists for this user.")


class InvitationFailure(str, Enum):
    """Terminal failure states of the invitation state machine."""

    EXPIRED = "EXPIRED"
    ALREADY_USED = "ALREADY_USED"
    INVALID_TOKEN = "INVALID_TOKEN"


_INVITATION_STATUS = {
    InvitationFailure.EXPIRED: 410,
    InvitationFailure.ALREADY_USED: 409,
    InvitationFailure.INVALID_TOKEN: 404,
}

_INVITATION_MESSAGES = {
    InvitationFailure.EXPIRED: "This invitation has expired. Please request a new invitation.",
    InvitationFailure.ALREADY_USED: (
        "This invitation has already been used. Sign in, or request a new invitation."
    ),
    InvitationFailure.INVALID_TOKEN: (
        "This invitation link is not valid. Please request a new invitation."
    ),
}


class InvitationInvalid(CruxError):
    """Invitation cannot be redeemed. Surfaced to the user, never retried."""

    title = "Invitation Invalid"
    slug = "invitation-invalid"

    def __init__(self, reason: InvitationFailure, detail: Optional[str] = None):
        self.reason = InvitationFailure(reason)
        self.status_code = _INVITATION_STATUS[self.reason]
        super().__init__(detail or _INVITATION_MESSAGES[self.reason])


class AccessDenied(CruxError):
    """Role or tenant insufficient. Rendered without confirming the route exists."""

    status_code = 404
    title = "Not Found"
    slug = "not-found"


class TransportError(CruxError):
    """Database or auth backend failure, distinct from an empty result."""

    status_code = 503
    title = "Service Unavailable"
    slug = "backend-unavailable"

    def __init__(self, operation: str, detail: Optional[str] = None):
        self.operation = operation
        super().__init__(detail or "A backend service is temporarily unavailable. Please retry.")


class InvalidRequest(CruxError):
    status_code = 400
    title = "Bad Request"
    slug = "invalid-request"


class Conflict(CruxError):
    status_code = 409
    title = "Conflict"
    slug = "conflict"
