"""Review repository (tenant-scoped)."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select

from crux_api.db.models import Review
from crux_api.db.repo_base import TenantScopedRepository


def review_filters(rating: Optional[int] = None, since: Optional[datetime] = None) -> list[Any]:
    criteria = []
    if rating is not None:
        criteria.append(Review.rating == rating)
    if since is not None:
        criteria.append(Review.created_at >= since)
    return criteria


class ReviewRepository(TenantScopedRepository[Review]):
    model = Review

    def search(
        self,
        rating: Optional[int] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Review]:
        return self.list(limit, offset, *review_filters(rating, since))

    def stats(self) -> dict[str, Any]:
        """Total, average rating, per-rating histogram, Google redirects."""
        rows = self.db.execute(
            select(Review.rating, func.count())
            .where(Review.tenant_id == self.scope.tenant_id)
            .group_by(Review.rating)
        ).all()
        histogram = {str(star): 0 for star in range(1, 6)}
        total = 0
        weighted = 0
        for rating, count in rows:
            histogram[str(rating)] = int(count)
            total += int(count)
            weighted += int(rating) * int(count)

        google = self.count(Review.google_review.is_(True))
        return {
            "total": total,
            "average_rating": round(weighted / total, 2) if total else None,
            "by_rating": histogram,
            "google_reviews": google,
        }
