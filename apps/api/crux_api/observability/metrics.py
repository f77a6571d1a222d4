"""Log-based metrics for the access-control flow.

Usage:
    from crux_api.observability.metrics import log_guard_decision

    log_guard_decision(decision="REDIRECT", required_role="tenant_admin", reason="unauthenticated")

Each helper emits one INFO/WARNING record with a fixed "metric" name so
dashboards can count occurrences from the JSON log stream.

Security:
- Tokens are never logged; invitation ids only
- Identity ids are internal identifiers, not PII
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Route Guard
# ============================================================================


def log_guard_decision(
    decision: str,
    required_role: Optional[str],
    reason: str,
    actual_role: Optional[str] = None,
    path: Optional[str] = None,
) -> None:
    """Count guard outcomes (ALLOW / REDIRECT / LOADING) by reason."""
    level = logging.WARNING if decision == "REDIRECT" and reason == "insufficient_role" else logging.INFO
    logger.log(
        level,
        "guard.decision",
        extra={
            "metric": "guard.decision",
            "decision": decision,
            "required_role": required_role,
            "actual_role": actual_role,
            "reason": reason,
            "path": path,
        },
    )


# ============================================================================
# Invitations / Profiles
# ============================================================================


def log_invitation_outcome(outcome: str, invitation_id: Optional[str] = None) -> None:
    """Count acceptance outcomes: PROFILE_BOUND, EXPIRED, ALREADY_USED, INVALID_TOKEN."""
    logger.info(
        "invitation.outcome",
        extra={
            "metric": "invitation.outcome",
            "outcome": outcome,
            "invitation_id": invitation_id,
        },
    )


def log_profile_provisioned(identity_id: str, source: str, role: str) -> None:
    """Count profiles created on first sign-in (source: invitation | default)."""
    logger.info(
        "profile.provisioned",
        extra={
            "metric": "profile.provisioned",
            "identity_id": identity_id,
            "source": source,
            "role": role,
        },
    )


# ============================================================================
# Tenant isolation
# ============================================================================


def log_scope_override_ignored(
    actor_id: str, profile_tenant_id: Optional[str], requested_tenant_id: str
) -> None:
    """A non-platform caller asked for another tenant's data."""
    logger.warning(
        "tenant.scope.override_ignored",
        extra={
            "metric": "tenant.scope.override_ignored",
            "actor_id": actor_id,
            "profile_tenant_id": profile_tenant_id,
            "requested_tenant_id": requested_tenant_id,
        },
    )
