"""Audit log queries.

AuditLogRepository is tenant-scoped (tenant admins see their own trail);
PlatformAuditLogQuery is for super_admin and spans tenants.
"""

from collections import Counter
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from crux_api.db.models import AuditLog
from crux_api.db.repo_base import MAX_PAGE_SIZE, TenantScopedRepository


def _filters(
    action: Optional[str], user_id: Optional[str], since: Optional[datetime]
) -> list[Any]:
    criteria = []
    if action:
        criteria.append(AuditLog.action == action)
    if user_id:
        criteria.append(AuditLog.user_id == user_id)
    if since is not None:
        criteria.append(AuditLog.created_at >= since)
    return criteria


class AuditLogRepository(TenantScopedRepository[AuditLog]):
    model = AuditLog

    def search(
        self,
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLog]:
        return self.list(limit, offset, *_filters(action, user_id, since))

    def stats(self) -> dict[str, Any]:
        actions = self.db.execute(
            select(AuditLog.action).where(AuditLog.tenant_id == self.scope.tenant_id)
        ).scalars()
        by_action = Counter(actions)
        return {"total": sum(by_action.values()), "by_action": dict(by_action)}


class PlatformAuditLogQuery:
    def __init__(self, db: Session):
        self.db = db

    def search(
        self,
        tenant_id: Optional[str] = None,
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLog]:
        stmt = select(AuditLog)
        criteria = _filters(action, user_id, since)
        if tenant_id:
            criteria.append(AuditLog.tenant_id == tenant_id)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = (
            stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(min(max(limit, 1), MAX_PAGE_SIZE))
            .offset(max(offset, 0))
        )
        return list(self.db.execute(stmt).scalars())
