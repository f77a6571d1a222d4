"""Platform-wide counters for the master dashboard (not tenant-scoped)."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crux_api.db.models import Invitation, Profile, Review, Tenant, utcnow


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """(start of the current month, start of the previous month), UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    this_month = now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_month = (this_month - timedelta(days=1)).replace(day=1)
    return this_month, last_month


class PlatformMetricsQuery:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock

    def _count(self, model: Any, *criteria: Any) -> int:
        stmt = select(func.count()).select_from(model)
        if criteria:
            stmt = stmt.where(*criteria)
        return int(self.db.execute(stmt).scalar_one())

    def summary(self) -> dict[str, Any]:
        this_month, last_month = month_bounds(self._clock())
        average = self.db.execute(select(func.avg(Review.rating))).scalar_one()
        return {
            "total_tenants": self._count(Tenant),
            "active_tenants": self._count(Tenant, Tenant.status == "active"),
            "total_users": self._count(Profile),
            "total_reviews": self._count(Review),
            "reviews_this_month": self._count(Review, Review.created_at >= this_month),
            "reviews_last_month": self._count(
                Review, Review.created_at >= last_month, Review.created_at < this_month
            ),
            "average_rating": round(float(average), 2) if average is not None else None,
        }

    def tenant_usage(self, tenant_id: str) -> dict[str, int]:
        now = self._clock()
        return {
            "users": self._count(Profile, Profile.tenant_id == tenant_id),
            "reviews": self._count(Review, Review.tenant_id == tenant_id),
            "pending_invitations": self._count(
                Invitation,
                Invitation.tenant_id == tenant_id,
                Invitation.used_at.is_(None),
                Invitation.expires_at > now,
            ),
        }
