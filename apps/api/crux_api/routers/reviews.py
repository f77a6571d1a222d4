"""Review endpoints (tenant members).

Scope always comes from the caller's profile; super_admin passes
?tenant_id= explicitly.
"""

import json
import logging
from datetime import datetime
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from crux_api.audit.recorder import AuditAction, AuditRecorder, get_audit_recorder
from crux_api.auth.roles import Role
from crux_api.auth.route_guard import AccessContext
from crux_api.data.change_feed import ChangeEvent, ChangeFeed, get_change_feed
from crux_api.data.scope import TenantScope, tenant_scope
from crux_api.db.repo_reviews import ReviewRepository, review_filters
from crux_api.db.session import get_db
from crux_api.errors import AccessDenied
from crux_api.schemas import Page, ReviewOut, ReviewStats

router = APIRouter(prefix="/v1/reviews", tags=["reviews"])
logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0

member_scope = tenant_scope(Role.USER)
admin_scope = tenant_scope(Role.TENANT_ADMIN)


@router.get("", response_model=Page[ReviewOut])
def list_reviews(
    rating: Optional[int] = Query(default=None, ge=1, le=5),
    since: Optional[datetime] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    db: Session = Depends(get_db),
) -> Page[ReviewOut]:
    _, scope = access
    repo = ReviewRepository(db, scope)
    rows = repo.search(rating=rating, since=since, limit=limit, offset=offset)
    return Page[ReviewOut](
        items=[ReviewOut.model_validate(row) for row in rows],
        total=repo.count(*review_filters(rating, since)),
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=ReviewStats)
def review_stats(
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    db: Session = Depends(get_db),
) -> ReviewStats:
    _, scope = access
    return ReviewStats(**ReviewRepository(db, scope).stats())


def _sse(event: ChangeEvent) -> str:
    return f"event: {event.table}\ndata: {json.dumps(event.as_dict(), default=str)}\n\n"


@router.get("/stream")
async def stream_reviews(
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    feed: ChangeFeed = Depends(get_change_feed),
) -> StreamingResponse:
    """Server-Sent Events for review changes in the caller's tenant.

    The subscription is released when the client disconnects.
    """
    _, scope = access
    subscription = feed.subscribe(scope, table="reviews")

    async def events() -> AsyncIterator[str]:
        async with subscription:
            yield ": connected\n\n"
            while subscription.active:
                if await request.is_disconnected():
                    break
                event = await subscription.get(timeout=KEEPALIVE_SECONDS)
                if event is None:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(event)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{review_id}", response_model=ReviewOut)
def get_review(
    review_id: str,
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    db: Session = Depends(get_db),
) -> ReviewOut:
    _, scope = access
    row = ReviewRepository(db, scope).get(review_id)
    if row is None:
        raise AccessDenied()
    return ReviewOut.model_validate(row)


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_review(
    review_id: str,
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(admin_scope),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Response:
    ctx, scope = access
    if not ReviewRepository(db, scope).delete(review_id):
        raise AccessDenied()

    feed.publish(ChangeEvent("reviews", "DELETE", scope.tenant_id, review_id))
    audit.record(
        AuditAction.REVIEW_DELETED,
        tenant_id=scope.tenant_id,
        user_id=ctx.user_id,
        resource_type="review",
        resource_id=review_id,
        request=request,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
