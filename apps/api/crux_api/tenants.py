"""Platform administration: tenants and user role/tenant assignment.

create_tenant_with_admin inserts the tenant and its first tenant_admin
invitation in ONE transaction. The invitation email goes out after commit;
a failed send leaves the tenant in place and is reported to the caller
(resend through POST /v1/invitations/{id}/resend).
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crux_api.auth.invitations import InvitationService, normalize_email
from crux_api.auth.roles import TENANT_ROLES, Role, parse_role
from crux_api.config.env import get_app_base_url
from crux_api.db.models import Invitation, Profile, Tenant, utcnow
from crux_api.db.repo_tenants import PLAN_TYPES, TenantRepository
from crux_api.errors import Conflict, InvalidRequest, ProfileNotFound, TransportError
from crux_api.supabase_client import AuthGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantCreation:
    tenant: Tenant
    invitation: Invitation
    invitation_email_sent: bool


def invitation_link(invitation: Invitation) -> str:
    """Landing URL embedded in the invitation email."""
    query = urlencode({"token": invitation.token, "type": "invite"})
    return f"{get_app_base_url()}/auth/accept?{query}"


class TenantService:
    def __init__(self, db: Session, gateway: Optional[AuthGateway] = None):
        self.db = db
        self.gateway = gateway
        self.tenants = TenantRepository(db)
        self.invitations = InvitationService(db)

    # ------------------------------------------------------------- tenants

    def create_tenant_with_admin(
        self,
        tenant_data: dict[str, Any],
        admin_email: str,
        created_by: Optional[str] = None,
    ) -> TenantCreation:
        """Create a tenant and its tenant_admin invitation atomically.

        Raises:
            InvalidRequest: missing name / unknown plan
            Conflict: domain already taken
        """
        name = (tenant_data.get("name") or "").strip()
        if not name:
            raise InvalidRequest("Tenant name is required.")

        plan_type = tenant_data.get("plan_type") or "basic"
        if plan_type not in PLAN_TYPES:
            raise InvalidRequest(f"plan_type must be one of {', '.join(PLAN_TYPES)}.")

        domain = (tenant_data.get("domain") or "").strip().lower() or None
        if domain and self.tenants.get_by_domain(domain) is not None:
            raise Conflict("A tenant with this domain already exists.")

        tenant = Tenant(
            name=name,
            domain=domain,
            status="active",
            plan_type=plan_type,
            settings=tenant_data.get("settings") or {},
            billing_email=tenant_data.get("billing_email"),
            created_by=created_by,
        )
        try:
            self.db.add(tenant)
            self.db.flush()
            invitation = self.invitations.issue(
                tenant.id,
                admin_email,
                Role.TENANT_ADMIN,
                invited_by=created_by,
                commit=False,
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("A tenant with this domain already exists.") from e
        except InvalidRequest:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransportError("tenant.create") from e

        logger.info(
            "Tenant created with pending admin invitation",
            extra={
                "event": "tenant.created",
                "created_tenant_id": tenant.id,
                "plan_type": plan_type,
                "admin_email": admin_email,
            },
        )

        sent = self.send_invitation(invitation)
        return TenantCreation(tenant, invitation, sent)

    def set_status(self, tenant_id: str, status: str) -> Tenant:
        if not self.tenants.set_status(tenant_id, status):
            raise InvalidRequest("Tenant does not exist.")
        tenant = self.tenants.get(tenant_id)
        self.db.refresh(tenant)
        logger.info(
            "Tenant status changed",
            extra={"event": "tenant.status_changed", "target_tenant_id": tenant_id, "status": status},
        )
        return tenant

    # --------------------------------------------------------- invitations

    def send_invitation(self, invitation: Invitation) -> bool:
        """Send (or resend) the invitation email. Returns False on failure."""
        if self.gateway is None:
            return False
        try:
            auth_user_id = self.gateway.invite_user_by_email(
                invitation.email,
                data={
                    "role": invitation.role,
                    "tenant_id": invitation.tenant_id,
                    "invitation_id": invitation.id,
                },
                redirect_to=invitation_link(invitation),
            )
        except TransportError:
            logger.warning(
                "Invitation email not sent",
                exc_info=True,
                extra={"event": "invitation.email_failed", "invitation_id": invitation.id},
            )
            return False

        self.invitations.record_delivery(invitation, auth_user_id)
        logger.info(
            "Invitation email sent",
            extra={"event": "invitation.email_sent", "invitation_id": invitation.id},
        )
        return True

    # ---------------------------------------------------------------- users

    def _profile(self, user_id: str) -> Profile:
        profile = self.db.get(Profile, user_id)
        if profile is None:
            raise ProfileNotFound(user_id)
        return profile

    def _require_tenant(self, tenant_id: str) -> None:
        if self.tenants.get(tenant_id) is None:
            raise InvalidRequest("Tenant does not exist.")

    def change_role(self, user_id: str, role: object, tenant_id: Optional[str] = None) -> Profile:
        """Promote/demote a user, keeping the role/tenant invariant.

        super_admin → tenant cleared; tenant roles → tenant required.
        """
        new_role = parse_role(role)
        if new_role is None:
            raise InvalidRequest("Unknown role.")

        profile = self._profile(user_id)
        previous_role = profile.role

        if new_role in TENANT_ROLES:
            target_tenant = tenant_id or profile.tenant_id
            if not target_tenant:
                raise InvalidRequest("A tenant_id is required for tenant roles.")
            self._require_tenant(target_tenant)
            profile.tenant_id = target_tenant
        else:
            profile.tenant_id = None
        profile.role = new_role.value
        self.db.commit()
        self.db.refresh(profile)

        logger.info(
            "User role changed",
            extra={
                "event": "user.role_changed",
                "target_user_id": user_id,
                "previous_role": previous_role,
                "role": new_role.value,
            },
        )
        return profile

    def reassign_tenant(self, user_id: str, tenant_id: str) -> Profile:
        profile = self._profile(user_id)
        if parse_role(profile.role) not in TENANT_ROLES:
            raise InvalidRequest("Platform administrators are not bound to a tenant.")
        self._require_tenant(tenant_id)
        previous = profile.tenant_id
        profile.tenant_id = tenant_id
        self.db.commit()
        self.db.refresh(profile)
        logger.info(
            "User tenant reassigned",
            extra={
                "event": "user.tenant_changed",
                "target_user_id": user_id,
                "previous_tenant_id": previous,
                "new_tenant_id": tenant_id,
            },
        )
        return profile

    def suspend_user(self, user_id: str) -> tuple[Profile, bool]:
        """Mark the profile suspended and ban the auth account.

        Returns (profile, banned). The profile suspension alone already
        blocks access through the guard; banned=False means the auth ban
        must be retried.
        """
        profile = self._profile(user_id)
        if profile.suspended_at is None:
            profile.suspended_at = utcnow()
            self.db.commit()
            self.db.refresh(profile)

        banned = False
        if self.gateway is not None:
            try:
                self.gateway.ban_user(user_id)
                banned = True
            except TransportError:
                logger.warning(
                    "Auth ban failed, profile suspension still in effect",
                    exc_info=True,
                    extra={"event": "user.ban_failed", "target_user_id": user_id},
                )
        logger.info(
            "User suspended",
            extra={"event": "user.suspended", "target_user_id": user_id, "banned": banned},
        )
        return profile, banned

    def remove_member(self, tenant_id: str, user_id: str, removed_by: Optional[str] = None) -> Profile:
        """Detach a member from the tenant; they keep a tenant-less user profile.

        Raises:
            ProfileNotFound: no such member in this tenant
            InvalidRequest: a caller removing themselves
        """
        profile = self.db.get(Profile, user_id)
        if profile is None or profile.tenant_id != tenant_id:
            raise ProfileNotFound(user_id)
        if user_id == removed_by:
            raise InvalidRequest("You cannot remove yourself from your tenant.")

        previous_role = profile.role
        profile.tenant_id = None
        profile.role = Role.USER.value
        self.db.commit()
        self.db.refresh(profile)
        logger.info(
            "Member removed from tenant",
            extra={
                "event": "user.removed_from_tenant",
                "target_user_id": user_id,
                "previous_tenant_id": tenant_id,
                "previous_role": previous_role,
            },
        )
        return profile

    def invite_member(
        self, tenant_id: str, email: str, role: object, invited_by: Optional[str]
    ) -> tuple[Invitation, bool]:
        invitation = self.invitations.issue(tenant_id, normalize_email(email), role, invited_by=invited_by)
        return invitation, self.send_invitation(invitation)
