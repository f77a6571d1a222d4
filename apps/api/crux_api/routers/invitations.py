"""Tenant-admin invitation management.

A tenant admin invites into their own tenant only (scope comes from the
profile); super_admin names the tenant with ?tenant_id=.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from crux_api.audit.recorder import AuditAction, AuditRecorder, get_audit_recorder
from crux_api.auth.invitations import InvitationService
from crux_api.auth.roles import Role
from crux_api.auth.route_guard import AccessContext
from crux_api.data.scope import TenantScope, tenant_scope
from crux_api.db.models import Invitation
from crux_api.db.session import get_db
from crux_api.errors import AccessDenied, InvitationInvalid
from crux_api.schemas import InvitationCreate, InvitationCreated, InvitationOut
from crux_api.supabase_client import AuthGateway, get_auth_gateway
from crux_api.tenants import TenantService

router = APIRouter(prefix="/v1/invitations", tags=["invitations"])
logger = logging.getLogger(__name__)

admin_scope = tenant_scope(Role.TENANT_ADMIN)


@router.post("", response_model=InvitationCreated, status_code=status.HTTP_201_CREATED)
def create_invitation(
    body: InvitationCreate,
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(admin_scope),
    db: Session = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> InvitationCreated:
    """Invite an email into the caller's tenant as user or tenant_admin."""
    ctx, scope = access
    invitation, sent = TenantService(db, gateway).invite_member(
        scope.tenant_id, body.email, body.role, invited_by=ctx.user_id
    )
    audit.record(
        AuditAction.USER_INVITED,
        tenant_id=scope.tenant_id,
        user_id=ctx.user_id,
        resource_type="invitation",
        resource_id=invitation.id,
        details={"invitee_email": invitation.email, "role": invitation.role, "email_sent": sent},
        request=request,
    )
    return InvitationCreated(invitation=InvitationOut.model_validate(invitation), invitation_email_sent=sent)


@router.get("", response_model=list[InvitationOut])
def list_invitations(
    access: tuple[AccessContext, TenantScope] = Depends(admin_scope),
    db: Session = Depends(get_db),
) -> list[InvitationOut]:
    """Pending (unused, unexpired) invitations of the tenant."""
    _, scope = access
    return [InvitationOut.model_validate(row) for row in InvitationService(db).list_pending(scope.tenant_id)]


@router.post("/{invitation_id}/resend", response_model=InvitationCreated)
def resend_invitation(
    invitation_id: str,
    access: tuple[AccessContext, TenantScope] = Depends(admin_scope),
    db: Session = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
) -> InvitationCreated:
    _, scope = access
    service = InvitationService(db)
    invitation = db.get(Invitation, invitation_id)
    if invitation is None or invitation.tenant_id != scope.tenant_id:
        raise AccessDenied()
    failure = service.classify(invitation)
    if failure is not None:
        raise InvitationInvalid(failure)

    sent = TenantService(db, gateway).send_invitation(invitation)
    return InvitationCreated(invitation=InvitationOut.model_validate(invitation), invitation_email_sent=sent)


@router.delete("/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_invitation(
    invitation_id: str,
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(admin_scope),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Response:
    """Revoke an unused invitation. Used or foreign invitations answer 404."""
    ctx, scope = access
    if not InvitationService(db).revoke(invitation_id, tenant_id=scope.tenant_id):
        raise AccessDenied()
    audit.record(
        AuditAction.USER_INVITATION_CANCELLED,
        tenant_id=scope.tenant_id,
        user_id=ctx.user_id,
        resource_type="invitation",
        resource_id=invitation_id,
        request=request,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
