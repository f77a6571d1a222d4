"""Profile queries.

TenantMemberRepository is tenant-scoped: a tenant admin sees the members of
their own tenant only. PlatformUserQuery is the super_admin view across
every tenant, with the tenant name joined in.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from crux_api.db.models import Profile, Tenant
from crux_api.db.repo_base import MAX_PAGE_SIZE, TenantScopedRepository


class TenantMemberRepository(TenantScopedRepository[Profile]):
    model = Profile

    def search(self, role: Optional[str] = None, limit: int = 50, offset: int = 0) -> list[Profile]:
        criteria = [Profile.role == role] if role is not None else []
        return self.list(limit, offset, *criteria)


class PlatformUserQuery:
    def __init__(self, db: Session):
        self.db = db

    def search(
        self,
        role: Optional[str] = None,
        tenant_id: Optional[str] = None,
        email: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[tuple[Profile, Optional[str]]]:
        """Profiles newest first, each paired with its tenant's name."""
        stmt = select(Profile, Tenant.name).outerjoin(Tenant, Tenant.id == Profile.tenant_id)
        if role is not None:
            stmt = stmt.where(Profile.role == role)
        if tenant_id is not None:
            stmt = stmt.where(Profile.tenant_id == tenant_id)
        if email:
            stmt = stmt.where(Profile.email.contains(email.strip().lower(), autoescape=True))
        stmt = (
            stmt.order_by(Profile.created_at.desc(), Profile.id.desc())
            .limit(min(max(limit, 1), MAX_PAGE_SIZE))
            .offset(max(offset, 0))
        )
        return [(profile, tenant_name) for profile, tenant_name in self.db.execute(stmt).all()]
