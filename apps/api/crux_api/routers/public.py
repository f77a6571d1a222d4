"""Unauthenticated endpoints behind a tenant's public review form.

The tenant comes from the route. Unknown and inactive tenants both answer
404.

Submission outcome is decided here, never by the client:
- rating >= GOOGLE_REVIEW_MIN_RATING → google_review=true, redirect to the
  tenant's Google business page (feedback page if none is configured)
- lower ratings → redirect to the private feedback page
"""

import logging
import re
from typing import Any, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from crux_api.audit.recorder import AuditAction, AuditRecorder, get_audit_recorder
from crux_api.config.env import get_app_base_url
from crux_api.data.change_feed import ChangeEvent, ChangeFeed, get_change_feed
from crux_api.data.scope import public_scope
from crux_api.db.models import utcnow
from crux_api.db.repo_reviews import ReviewRepository
from crux_api.db.repo_settings import BusinessSettingsRepository
from crux_api.db.session import get_db
from crux_api.schemas import ReviewCreate, ReviewFormOut, ReviewOut, ReviewSubmitted, ReviewTracking

router = APIRouter(prefix="/v1/public/tenants/{tenant_id}", tags=["public"])
logger = logging.getLogger(__name__)

GOOGLE_REVIEW_MIN_RATING = 4

_MARKUP = re.compile(r"[<>]")
_SCRIPT_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+=", re.IGNORECASE)


def clean_tracking_value(value: Optional[str]) -> Optional[str]:
    """Strip markup, script protocols and inline handlers from a link parameter."""
    if not value:
        return None
    cleaned = _EVENT_HANDLER.sub("", _SCRIPT_PROTOCOL.sub("", _MARKUP.sub("", value))).strip()
    return cleaned or None


def tracking_metadata(tracking: Optional[ReviewTracking]) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "source": "public_form",
        "submitted_at": utcnow().isoformat(),
        "utm_source": "direct",
    }
    if tracking is None:
        return metadata
    for key, value in tracking.model_dump().items():
        cleaned = clean_tracking_value(value)
        if cleaned is not None:
            metadata[key] = cleaned
    return metadata


def _is_web_url(url: Optional[str]) -> bool:
    return bool(url) and url.lower().startswith(("https://", "http://"))


def feedback_url(tenant_id: str, review_id: str) -> str:
    query = urlencode({"tenant_id": tenant_id, "review_id": review_id})
    return f"{get_app_base_url()}/review/feedback?{query}"


@router.get("/review-form", response_model=ReviewFormOut)
def review_form(tenant_id: str, db: Session = Depends(get_db)) -> ReviewFormOut:
    scope = public_scope(db, tenant_id)
    settings = BusinessSettingsRepository(db, scope).current()
    return ReviewFormOut(
        tenant_id=tenant_id,
        business_name=settings.business_name if settings is not None else None,
        google_business_url=settings.google_business_url if settings is not None else None,
    )


@router.post("/reviews", response_model=ReviewSubmitted, status_code=status.HTTP_201_CREATED)
def submit_review(
    tenant_id: str,
    body: ReviewCreate,
    request: Request,
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> ReviewSubmitted:
    """Store a customer review for the tenant named in the route."""
    scope = public_scope(db, tenant_id)
    values = body.model_dump(exclude={"tracking"})
    values["customer_name"] = values["customer_name"].strip()
    values["google_review"] = body.rating >= GOOGLE_REVIEW_MIN_RATING
    values["redirect_opened"] = False
    values["metadata_json"] = tracking_metadata(body.tracking)
    row = ReviewRepository(db, scope).create(values)

    google_url = None
    if row.google_review:
        settings = BusinessSettingsRepository(db, scope).current()
        if settings is not None and _is_web_url(settings.google_business_url):
            google_url = settings.google_business_url
    if google_url is not None:
        redirect_target, redirect_url = "google", google_url
    else:
        redirect_target, redirect_url = "feedback", feedback_url(scope.tenant_id, row.id)

    out = ReviewOut.model_validate(row)
    feed.publish(ChangeEvent("reviews", "INSERT", scope.tenant_id, row.id, out.model_dump(mode="json")))
    audit.record(
        AuditAction.REVIEW_CREATED,
        tenant_id=scope.tenant_id,
        resource_type="review",
        resource_id=row.id,
        details={
            "rating": row.rating,
            "google_review": row.google_review,
            "redirect_target": redirect_target,
            "utm_source": row.metadata_json.get("utm_source"),
        },
        request=request,
    )
    logger.info("review.submitted", extra={"rating": row.rating, "redirect_target": redirect_target})
    return ReviewSubmitted(review=out, redirect_target=redirect_target, redirect_url=redirect_url)
