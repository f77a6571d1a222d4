"""Tenant member management (tenant_admin)."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from crux_api.audit.recorder import AuditAction, AuditRecorder, get_audit_recorder
from crux_api.auth.roles import Role, parse_role
from crux_api.auth.route_guard import AccessContext
from crux_api.data.scope import TenantScope, tenant_scope
from crux_api.db.models import Profile
from crux_api.db.repo_profiles import TenantMemberRepository
from crux_api.db.session import get_db
from crux_api.errors import InvalidRequest
from crux_api.schemas import Page, UserOut
from crux_api.tenants import TenantService

router = APIRouter(prefix="/v1/tenant/users", tags=["members"])
logger = logging.getLogger(__name__)

admin_scope = tenant_scope(Role.TENANT_ADMIN)


@router.get("", response_model=Page[UserOut])
def list_members(
    role: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    access: tuple[AccessContext, TenantScope] = Depends(admin_scope),
    db: Session = Depends(get_db),
) -> Page[UserOut]:
    _, scope = access
    role_value = None
    if role is not None:
        parsed = parse_role(role)
        if parsed is None:
            raise InvalidRequest("Unknown role.")
        role_value = parsed.value

    repo = TenantMemberRepository(db, scope)
    rows = repo.search(role=role_value, limit=limit, offset=offset)
    criteria = [Profile.role == role_value] if role_value is not None else []
    return Page[UserOut](
        items=[UserOut.model_validate(row) for row in rows],
        total=repo.count(*criteria),
        limit=limit,
        offset=offset,
    )


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    user_id: str,
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(admin_scope),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Response:
    """Detach a member from the tenant. Unknown or foreign members answer 404."""
    ctx, scope = access
    profile = TenantService(db).remove_member(scope.tenant_id, user_id, removed_by=ctx.user_id)
    audit.record(
        AuditAction.USER_REMOVED_FROM_TENANT,
        tenant_id=scope.tenant_id,
        user_id=ctx.user_id,
        resource_type="user",
        resource_id=profile.id,
        request=request,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
