"""Tenant repository (platform level, not tenant-scoped)."""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from crux_api.db.models import Tenant

TENANT_STATUSES = ("active", "suspended", "pending")
PLAN_TYPES = ("basic", "pro", "enterprise")


class TenantRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, tenant_id: str) -> Optional[Tenant]:
        return self.db.get(Tenant, tenant_id)

    def get_by_domain(self, domain: str) -> Optional[Tenant]:
        return self.db.execute(
            select(Tenant).where(Tenant.domain == domain.lower())
        ).scalar_one_or_none()

    def list(self, status: Optional[str] = None, limit: int = 100, offset: int = 0) -> list[Tenant]:
        stmt = select(Tenant)
        if status:
            stmt = stmt.where(Tenant.status == status)
        stmt = stmt.order_by(Tenant.created_at.desc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars())

    def set_status(self, tenant_id: str, status: str) -> bool:
        """Change status; returns False if the tenant does not exist."""
        if status not in TENANT_STATUSES:
            raise ValueError(f"Unknown tenant status: {status}")
        result = self.db.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1
