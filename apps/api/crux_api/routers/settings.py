"""Business settings endpoints: one row per tenant."""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from crux_api.audit.recorder import AuditAction, AuditRecorder, get_audit_recorder
from crux_api.auth.roles import Role
from crux_api.auth.route_guard import AccessContext
from crux_api.data.scope import TenantScope, tenant_scope
from crux_api.db.repo_settings import DEFAULT_SETTINGS, BusinessSettingsRepository
from crux_api.db.session import get_db
from crux_api.schemas import SettingsIn, SettingsOut

router = APIRouter(prefix="/v1/settings", tags=["settings"])


@router.get("", response_model=SettingsOut)
def get_settings(
    access: tuple[AccessContext, TenantScope] = Depends(tenant_scope(Role.USER)),
    db: Session = Depends(get_db),
) -> SettingsOut:
    """Current settings, or the defaults if the tenant never saved any."""
    _, scope = access
    row = BusinessSettingsRepository(db, scope).current()
    if row is None:
        return SettingsOut(tenant_id=scope.tenant_id, is_default=True, **DEFAULT_SETTINGS)
    return SettingsOut.model_validate(row)


@router.put("", response_model=SettingsOut)
def put_settings(
    body: SettingsIn,
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(tenant_scope(Role.TENANT_ADMIN)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> SettingsOut:
    ctx, scope = access
    row = BusinessSettingsRepository(db, scope).upsert(body.model_dump())
    audit.record(
        AuditAction.SETTINGS_UPDATED,
        tenant_id=scope.tenant_id,
        user_id=ctx.user_id,
        resource_type="business_settings",
        resource_id=row.id,
        request=request,
    )
    return SettingsOut.model_validate(row)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def delete_settings(
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(tenant_scope(Role.TENANT_ADMIN)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Response:
    ctx, scope = access
    if BusinessSettingsRepository(db, scope).clear():
        audit.record(
            AuditAction.SETTINGS_UPDATED,
            tenant_id=scope.tenant_id,
            user_id=ctx.user_id,
            resource_type="business_settings",
            details={"cleared": True},
            request=request,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
