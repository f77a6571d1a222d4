"""Platform administration endpoints (super_admin only)."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from crux_api.audit.recorder import AuditAction, AuditRecorder, get_audit_recorder
from crux_api.auth.roles import Role, parse_role
from crux_api.auth.route_guard import AccessContext, require_role
from crux_api.db.repo_audit import PlatformAuditLogQuery
from crux_api.db.repo_metrics import PlatformMetricsQuery
from crux_api.db.repo_profiles import PlatformUserQuery
from crux_api.db.repo_tenants import TENANT_STATUSES, TenantRepository
from crux_api.db.session import get_db
from crux_api.errors import AccessDenied, InvalidRequest
from crux_api.schemas import (
    AuditLogOut,
    PlatformMetrics,
    ProfileOut,
    RoleChangeRequest,
    TenantAssignRequest,
    TenantCreate,
    TenantCreated,
    TenantOut,
    TenantUsage,
    UserOut,
    UserSuspended,
)
from crux_api.supabase_client import AuthGateway, get_auth_gateway
from crux_api.tenants import TenantService

router = APIRouter(prefix="/v1/master", tags=["master"])
logger = logging.getLogger(__name__)

platform_admin = require_role(Role.SUPER_ADMIN)


@router.get("/tenants", response_model=list[TenantOut])
def list_tenants(
    tenant_status: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
) -> list[TenantOut]:
    if tenant_status is not None and tenant_status not in TENANT_STATUSES:
        raise InvalidRequest(f"status must be one of {', '.join(TENANT_STATUSES)}.")
    rows = TenantRepository(db).list(status=tenant_status, limit=limit, offset=offset)
    return [TenantOut.model_validate(row) for row in rows]


@router.post("/tenants", response_model=TenantCreated, status_code=status.HTTP_201_CREATED)
def create_tenant(
    body: TenantCreate,
    request: Request,
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> TenantCreated:
    """Create a tenant together with its first tenant_admin invitation.

    A failed invitation email does not undo the tenant; the response says
    invitation_email_sent=false and the invitation can be resent.
    """
    created = TenantService(db, gateway).create_tenant_with_admin(
        body.model_dump(exclude={"admin_email"}), body.admin_email, created_by=ctx.user_id
    )
    audit.record(
        AuditAction.TENANT_CREATED,
        tenant_id=created.tenant.id,
        user_id=ctx.user_id,
        resource_type="tenant",
        resource_id=created.tenant.id,
        details={
            "name": created.tenant.name,
            "plan_type": created.tenant.plan_type,
            "admin_email": created.invitation.email,
            "invitation_email_sent": created.invitation_email_sent,
        },
        request=request,
    )
    return TenantCreated(
        tenant=TenantOut.model_validate(created.tenant),
        invitation_id=created.invitation.id,
        invitation_email_sent=created.invitation_email_sent,
    )


def _set_tenant_status(
    tenant_id: str, new_status: str, action: str, ctx: AccessContext, request: Request,
    db: Session, audit: AuditRecorder,
) -> TenantOut:
    tenant = TenantService(db).set_status(tenant_id, new_status)
    audit.record(
        action,
        tenant_id=tenant_id,
        user_id=ctx.user_id,
        resource_type="tenant",
        resource_id=tenant_id,
        request=request,
    )
    return TenantOut.model_validate(tenant)


@router.post("/tenants/{tenant_id}/suspend", response_model=TenantOut)
def suspend_tenant(
    tenant_id: str,
    request: Request,
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> TenantOut:
    return _set_tenant_status(tenant_id, "suspended", AuditAction.TENANT_SUSPENDED, ctx, request, db, audit)


@router.post("/tenants/{tenant_id}/activate", response_model=TenantOut)
def activate_tenant(
    tenant_id: str,
    request: Request,
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> TenantOut:
    return _set_tenant_status(tenant_id, "active", AuditAction.TENANT_ACTIVATED, ctx, request, db, audit)


@router.patch("/users/{user_id}/role", response_model=ProfileOut)
def change_user_role(
    user_id: str,
    body: RoleChangeRequest,
    request: Request,
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> ProfileOut:
    profile = TenantService(db).change_role(user_id, body.role, body.tenant_id)
    audit.record(
        AuditAction.USER_ROLE_CHANGED,
        tenant_id=profile.tenant_id,
        user_id=ctx.user_id,
        resource_type="user",
        resource_id=user_id,
        details={"role": profile.role},
        request=request,
    )
    return ProfileOut.model_validate(profile)


@router.patch("/users/{user_id}/tenant", response_model=ProfileOut)
def reassign_user_tenant(
    user_id: str,
    body: TenantAssignRequest,
    request: Request,
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> ProfileOut:
    profile = TenantService(db).reassign_tenant(user_id, body.tenant_id)
    audit.record(
        AuditAction.USER_TENANT_CHANGED,
        tenant_id=profile.tenant_id,
        user_id=ctx.user_id,
        resource_type="user",
        resource_id=user_id,
        request=request,
    )
    return ProfileOut.model_validate(profile)


@router.post("/users/{user_id}/suspend", response_model=UserSuspended)
def suspend_user(
    user_id: str,
    request: Request,
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> UserSuspended:
    if user_id == ctx.user_id:
        raise InvalidRequest("Platform administrators cannot suspend themselves.")
    profile, banned = TenantService(db, gateway).suspend_user(user_id)
    audit.record(
        AuditAction.USER_SUSPENDED,
        tenant_id=profile.tenant_id,
        user_id=ctx.user_id,
        resource_type="user",
        resource_id=user_id,
        details={"auth_banned": banned},
        request=request,
    )
    return UserSuspended(profile=ProfileOut.model_validate(profile), auth_banned=banned)


@router.get("/audit-logs", response_model=list[AuditLogOut])
def platform_audit_logs(
    tenant_id: Optional[str] = None,
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
) -> list[AuditLogOut]:
    rows = PlatformAuditLogQuery(db).search(tenant_id, action, user_id, since, limit, offset)
    return [AuditLogOut.model_validate(row) for row in rows]


@router.get("/users", response_model=list[UserOut])
def list_users(
    role: Optional[str] = None,
    tenant_id: Optional[str] = None,
    email: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
) -> list[UserOut]:
    """Every profile on the platform, newest first, with its tenant's name."""
    parsed = parse_role(role) if role is not None else None
    if role is not None and parsed is None:
        raise InvalidRequest("Unknown role.")
    rows = PlatformUserQuery(db).search(parsed.value if parsed else None, tenant_id, email, limit, offset)
    return [
        UserOut.model_validate(profile).model_copy(update={"tenant_name": tenant_name})
        for profile, tenant_name in rows
    ]


@router.get("/metrics", response_model=PlatformMetrics)
def platform_metrics(
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
) -> PlatformMetrics:
    return PlatformMetrics(**PlatformMetricsQuery(db).summary())


@router.get("/tenants/{tenant_id}/usage", response_model=TenantUsage)
def tenant_usage(
    tenant_id: str,
    ctx: AccessContext = Depends(platform_admin),
    db: Session = Depends(get_db),
) -> TenantUsage:
    if TenantRepository(db).get(tenant_id) is None:
        raise AccessDenied()
    return TenantUsage(tenant_id=tenant_id, **PlatformMetricsQuery(db).tenant_usage(tenant_id))
