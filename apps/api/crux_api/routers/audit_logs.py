"""Tenant audit trail (tenant admins, own tenant only)."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crux_api.auth.roles import Role
from crux_api.auth.route_guard import AccessContext
from crux_api.data.scope import TenantScope, tenant_scope
from crux_api.db.repo_audit import AuditLogRepository
from crux_api.db.session import get_db
from crux_api.schemas import AuditLogOut

router = APIRouter(prefix="/v1/audit-logs", tags=["audit"])


@router.get("", response_model=list[AuditLogOut])
def list_audit_logs(
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    access: tuple[AccessContext, TenantScope] = Depends(tenant_scope(Role.TENANT_ADMIN)),
    db: Session = Depends(get_db),
) -> list[AuditLogOut]:
    _, scope = access
    rows = AuditLogRepository(db, scope).search(action, user_id, since, limit, offset)
    return [AuditLogOut.model_validate(row) for row in rows]


@router.get("/stats")
def audit_log_stats(
    access: tuple[AccessContext, TenantScope] = Depends(tenant_scope(Role.TENANT_ADMIN)),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    _, scope = access
    return AuditLogRepository(db, scope).stats()
