"""Invitation/Acceptance Flow.

STATE MACHINE:
    ISSUED ──accept──▶ REDEEMED ──bind──▶ PROFILE_BOUND
      │
      ├─ unknown token            → INVALID_TOKEN
      ├─ used_at IS NOT NULL      → ALREADY_USED   (checked before expiry)
      └─ expires_at <= now()      → EXPIRED

AT-MOST-ONCE:
- REDEEMED is a conditional UPDATE (used_at IS NULL AND expires_at > now)
  with a rowcount check; a lost race re-classifies the token.
- REDEEMED and PROFILE_BOUND commit in one transaction. Any failure rolls
  both back, so a retry sees an unconsumed invitation.
- The consumption write is never retried automatically.

NO ESCALATION:
- Profile role and tenant_id always come from the invitation row.
  Values supplied by the acceptance request are ignored (and logged).

TIE-BREAK:
- Several active invitations for one email → most recently issued wins.

Password set is NOT part of this module: it is a separate, retry-safe call
against the account after the profile is bound (see routers/auth.py).
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Mapping, Optional
from urllib.parse import parse_qs

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crux_api.auth.roles import INVITABLE_ROLES, Role, parse_role
from crux_api.auth.session_store import Identity
from crux_api.config.env import get_invitation_ttl_days
from crux_api.db.models import Invitation, Profile, Tenant, utcnow
from crux_api.errors import (
    InvalidRequest,
    InvitationFailure,
    InvitationInvalid,
    TransportError,
)
from crux_api.observability.metrics import log_invitation_outcome, log_profile_provisioned

logger = logging.getLogger(__name__)


class InvitationState(str, Enum):
    ISSUED = "ISSUED"
    REDEEMED = "REDEEMED"
    PROFILE_BOUND = "PROFILE_BOUND"


@dataclass(frozen=True)
class AcceptanceResult:
    state: InvitationState
    profile: Profile
    invitation: Invitation


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them naive)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Acceptance link parameters
# ============================================================================


@dataclass(frozen=True)
class AcceptanceParams:
    """Parameters carried by an emailed invitation / magic link.

    Supabase delivers them in the hash fragment for implicit-flow links
    (#access_token=...&type=invite) and in the query string after a
    redirect hop (?token=...&type=invite). Both are accepted; the query
    string wins when a key appears in both.
    """

    token: Optional[str] = None
    type: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    error_description: Optional[str] = None

    KNOWN_TYPES = frozenset({"invite", "magiclink", "signup", "recovery"})

    @classmethod
    def from_request(
        cls, query: Mapping[str, str], fragment: Optional[str] = None
    ) -> "AcceptanceParams":
        values: dict[str, str] = {}
        if fragment:
            for key, items in parse_qs(fragment.lstrip("#"), keep_blank_values=False).items():
                values[key] = items[0]
        for key in ("token", "token_hash", "type", "access_token", "refresh_token", "error_description"):
            if query.get(key):
                values[key] = query[key]

        link_type = values.get("type")
        if link_type is not None:
            link_type = link_type.lower()
            if link_type not in cls.KNOWN_TYPES:
                link_type = None

        return cls(
            token=values.get("token") or values.get("token_hash"),
            type=link_type,
            access_token=values.get("access_token"),
            refresh_token=values.get("refresh_token"),
            error_description=values.get("error_description"),
        )

    @property
    def has_session_tokens(self) -> bool:
        return bool(self.access_token and self.refresh_token)


# ============================================================================
# Service
# ============================================================================


class InvitationService:
    """Issue, inspect, redeem and revoke invitations.

    Methods that write commit their own transaction unless commit=False is
    passed (used by create_tenant_with_admin to share one transaction).
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock

    def _now(self) -> datetime:
        return as_utc(self._clock())

    # ------------------------------------------------------------------ reads

    def get_by_token(self, token: str) -> Optional[Invitation]:
        if not token:
            return None
        try:
            return self.db.execute(
                select(Invitation).where(Invitation.token == token)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransportError("invitation.lookup") from e

    def classify(self, invitation: Optional[Invitation]) -> Optional[InvitationFailure]:
        """Return the failure state of an invitation, or None if redeemable."""
        if invitation is None:
            return InvitationFailure.INVALID_TOKEN
        if invitation.used_at is not None:
            return InvitationFailure.ALREADY_USED
        if as_utc(invitation.expires_at) <= self._now():
            return InvitationFailure.EXPIRED
        return None

    def inspect(self, token: str) -> Invitation:
        """Validate a token without consuming it.

        Raises:
            InvitationInvalid: EXPIRED, ALREADY_USED or INVALID_TOKEN
        """
        invitation = self.get_by_token(token)
        failure = self.classify(invitation)
        if failure is not None:
            log_invitation_outcome(failure.value, invitation_id=getattr(invitation, "id", None))
            raise InvitationInvalid(failure)
        return invitation

    def find_active_for_email(self, email: str) -> Optional[Invitation]:
        """Most recently issued unused, unexpired invitation for email."""
        now = self._now()
        try:
            return self.db.execute(
                select(Invitation)
                .where(
                    Invitation.email == normalize_email(email),
                    Invitation.used_at.is_(None),
                    Invitation.expires_at > now,
                )
                .order_by(Invitation.created_at.desc(), Invitation.id.desc())
                .limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransportError("invitation.find_active") from e

    def list_pending(self, tenant_id: str) -> list[Invitation]:
        now = self._now()
        return list(
            self.db.execute(
                select(Invitation)
                .where(
                    Invitation.tenant_id == tenant_id,
                    Invitation.used_at.is_(None),
                    Invitation.expires_at > now,
                )
                .order_by(Invitation.created_at.desc())
            ).scalars()
        )

    # ----------------------------------------------------------------- writes

    def issue(
        self,
        tenant_id: str,
        email: str,
        role: object,
        invited_by: Optional[str] = None,
        ttl_days: Optional[int] = None,
        commit: bool = True,
    ) -> Invitation:
        """Create an invitation with a random token.

        Raises:
            InvalidRequest: role not invitable, email empty, tenant unknown
        """
        parsed = parse_role(role)
        if parsed not in INVITABLE_ROLES:
            raise InvalidRequest("Invitations may only grant tenant_admin or user.")

        address = normalize_email(email)
        if "@" not in address:
            raise InvalidRequest("A valid email address is required.")

        if self.db.get(Tenant, tenant_id) is None:
            raise InvalidRequest("Tenant does not exist.")

        lifetime = ttl_days if ttl_days is not None else get_invitation_ttl_days()
        now = self._now()
        invitation = Invitation(
            tenant_id=tenant_id,
            email=address,
            role=parsed.value,
            invited_by=invited_by,
            token=secrets.token_urlsafe(32),
            expires_at=now + timedelta(days=lifetime),
            created_at=now,
        )
        self.db.add(invitation)
        self.db.flush()
        if commit:
            self.db.commit()

        logger.info(
            "Invitation issued",
            extra={
                "event": "invitation.issued",
                "invitation_id": invitation.id,
                "invited_tenant_id": tenant_id,
                "role": parsed.value,
                "invitee_email": address,
                "ttl_days": lifetime,
            },
        )
        return invitation

    def record_delivery(self, invitation: Invitation, auth_user_id: Optional[str]) -> None:
        """Remember the auth account created by the invitation email."""
        if not auth_user_id:
            return
        invitation.auth_user_id = auth_user_id
        self.db.commit()

    def revoke(self, invitation_id: str, tenant_id: Optional[str] = None) -> bool:
        """Expire an unused invitation now. tenant_id restricts the match."""
        now = self._now()
        stmt = (
            update(Invitation)
            .where(
                Invitation.id == invitation_id,
                Invitation.used_at.is_(None),
                Invitation.expires_at > now,
            )
            .values(expires_at=now)
            .execution_options(synchronize_session=False)
        )
        if tenant_id is not None:
            stmt = stmt.where(Invitation.tenant_id == tenant_id)

        result = self.db.execute(stmt)
        self.db.commit()
        revoked = result.rowcount == 1
        logger.info(
            "Invitation revoke requested",
            extra={"event": "invitation.revoked", "invitation_id": invitation_id, "revoked": revoked},
        )
        return revoked

    def accept(
        self,
        token: str,
        identity: Identity,
        requested_role: Optional[str] = None,
        requested_tenant_id: Optional[str] = None,
    ) -> AcceptanceResult:
        """Redeem an invitation and bind the invitee's profile atomically.

        Raises:
            InvitationInvalid: token unknown, used, expired, or issued to another email
            TransportError: database failure (nothing was consumed)
        """
        invitation = self.get_by_token(token)
        failure = self.classify(invitation)
        if failure is not None:
            log_invitation_outcome(failure.value, invitation_id=getattr(invitation, "id", None))
            raise InvitationInvalid(failure)

        if normalize_email(identity.email) != invitation.email:
            logger.warning(
                "Invitation presented by a different account",
                extra={
                    "event": "invitation.email_mismatch",
                    "invitation_id": invitation.id,
                    "identity_id": identity.id,
                },
            )
            log_invitation_outcome(InvitationFailure.INVALID_TOKEN.value, invitation_id=invitation.id)
            raise InvitationInvalid(InvitationFailure.INVALID_TOKEN)

        if (requested_role and requested_role != invitation.role) or (
            requested_tenant_id and requested_tenant_id != invitation.tenant_id
        ):
            logger.warning(
                "Acceptance request tried to override invitation values",
                extra={
                    "event": "invitation.override_ignored",
                    "invitation_id": invitation.id,
                    "requested_role": requested_role,
                    "requested_tenant_id": requested_tenant_id,
                },
            )

        try:
            profile = self._redeem_and_bind(invitation, identity)
            self.db.commit()
        except InvitationInvalid:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Invitation acceptance rolled back",
                exc_info=True,
                extra={"event": "invitation.accept_failed", "invitation_id": invitation.id},
            )
            raise TransportError("invitation.accept") from e

        log_invitation_outcome(InvitationState.PROFILE_BOUND.value, invitation_id=invitation.id)
        logger.info(
            "Invitation accepted",
            extra={
                "event": "invitation.accepted",
                "invitation_id": invitation.id,
                "identity_id": identity.id,
                "bound_tenant_id": profile.tenant_id,
                "role": profile.role,
            },
        )
        return AcceptanceResult(InvitationState.PROFILE_BOUND, profile, invitation)

    def _redeem_and_bind(self, invitation: Invitation, identity: Identity) -> Profile:
        now = self._now()
        result = self.db.execute(
            update(Invitation)
            .where(
                Invitation.id == invitation.id,
                Invitation.used_at.is_(None),
                Invitation.expires_at > now,
            )
            .values(used_at=now, accepted_by=identity.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Lost the race: someone consumed or expired it since classify()
            self.db.rollback()
            self.db.refresh(invitation)
            failure = self.classify(invitation) or InvitationFailure.ALREADY_USED
            log_invitation_outcome(failure.value, invitation_id=invitation.id)
            raise InvitationInvalid(failure)

        return self._upsert_profile(identity, Role(invitation.role), invitation.tenant_id)

    def _upsert_profile(
        self, identity: Identity, role: Role, tenant_id: Optional[str]
    ) -> Profile:
        profile = self.db.get(Profile, identity.id)
        if profile is None:
            profile = Profile(
                id=identity.id,
                email=normalize_email(identity.email),
                role=role.value,
                tenant_id=tenant_id,
            )
            self.db.add(profile)
        else:
            if profile.role != role.value or profile.tenant_id != tenant_id:
                logger.info(
                    "Existing profile rebound by invitation",
                    extra={
                        "event": "profile.rebound",
                        "identity_id": identity.id,
                        "previous_role": profile.role,
                        "previous_tenant_id": profile.tenant_id,
                    },
                )
            profile.role = role.value
            profile.tenant_id = tenant_id
        self.db.flush()
        return profile

    def provision_for_signup(self, identity: Identity) -> Profile:
        """Create the profile for an identity that has none.

        Binds the active invitation for the identity's email if there is
        one, otherwise creates the self-serve default (user, no tenant).
        """
        invitation = self.find_active_for_email(identity.email)
        if invitation is not None:
            try:
                result = self.accept(invitation.token, identity)
            except InvitationInvalid as e:
                logger.info(
                    "Invitation lost before signup binding, using default profile",
                    extra={
                        "event": "profile.invitation_race",
                        "identity_id": identity.id,
                        "reason": e.reason.value,
                    },
                )
            else:
                log_profile_provisioned(identity.id, source="invitation", role=result.profile.role)
                return result.profile

        try:
            existing = self.db.get(Profile, identity.id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransportError("profile.provision") from e
        if existing is not None:
            return existing

        profile = Profile(
            id=identity.id,
            email=normalize_email(identity.email),
            role=Role.USER.value,
            tenant_id=None,
        )
        self.db.add(profile)
        try:
            self.db.commit()
        except IntegrityError as e:
            # Concurrent provisioning for the same identity won
            self.db.rollback()
            try:
                winner = self.db.get(Profile, identity.id)
            except SQLAlchemyError as lookup_error:
                self.db.rollback()
                raise TransportError("profile.provision") from lookup_error
            if winner is None:
                raise TransportError("profile.provision") from e
            return winner
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransportError("profile.provision") from e

        log_profile_provisioned(identity.id, source="default", role=profile.role)
        logger.info(
            "Default profile created",
            extra={"event": "profile.default_created", "identity_id": identity.id, "email": identity.email},
        )
        return profile
