"""Tenant scope resolution.

The tenant a request operates on comes from the caller's resolved profile,
never from request parameters. Two exceptions:
- super_admin names the tenant explicitly (?tenant_id=...)
- public, unauthenticated endpoints take tenant_id from the route

Row-level security in Postgres is the real boundary for direct Supabase
access; repositories apply the same filter server-side.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from crux_api.auth.roles import Role
from crux_api.auth.route_guard import AccessContext, require_role
from crux_api.context import tenant_id_var
from crux_api.db.models import Tenant
from crux_api.errors import AccessDenied, InvalidRequest
from crux_api.observability.metrics import log_scope_override_ignored

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantScope:
    tenant_id: str
    actor_id: Optional[str] = None
    is_platform: bool = False
    is_public: bool = False


def resolve_tenant_scope(
    ctx: AccessContext, requested_tenant_id: Optional[str] = None
) -> TenantScope:
    """Scope for an authenticated caller.

    Raises:
        AccessDenied: non-platform caller without a tenant
        InvalidRequest: super_admin without an explicit tenant_id
    """
    if ctx.is_platform_admin:
        if not requested_tenant_id:
            raise InvalidRequest("tenant_id is required for platform administrators.")
        tenant_id_var.set(requested_tenant_id)
        return TenantScope(requested_tenant_id, actor_id=ctx.user_id, is_platform=True)

    if not ctx.tenant_id:
        logger.info(
            "Tenant-less profile requested tenant data",
            extra={"event": "tenant.scope.unassigned", "actor_id": ctx.user_id},
        )
        raise AccessDenied()

    if requested_tenant_id and requested_tenant_id != ctx.tenant_id:
        log_scope_override_ignored(ctx.user_id, ctx.tenant_id, requested_tenant_id)

    return TenantScope(ctx.tenant_id, actor_id=ctx.user_id)


def public_scope(db: Session, tenant_id: str) -> TenantScope:
    """Scope for unauthenticated endpoints that name the tenant in the route.

    Unknown or inactive tenants look the same as missing ones.
    """
    tenant = db.get(Tenant, tenant_id)
    if tenant is None or tenant.status != "active":
        raise AccessDenied()
    tenant_id_var.set(tenant_id)
    return TenantScope(tenant_id, is_public=True)


def tenant_scope(required: Role = Role.USER):
    """Dependency factory: AccessContext + its TenantScope."""

    async def dependency(
        tenant_id: Optional[str] = Query(default=None, description="Platform administrators only"),
        ctx: AccessContext = Depends(require_role(required)),
    ) -> tuple[AccessContext, TenantScope]:
        return ctx, resolve_tenant_scope(ctx, tenant_id)

    return dependency
