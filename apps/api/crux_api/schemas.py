"""Pydantic schemas for API requests/responses."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

T = TypeVar("T")


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    RFC 9457: detail can be either a string or a structured object (dict).
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation or structured error details")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    reason: Optional[str] = Field(None, description="Machine-readable failure reason (invitations)")


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    limit: int
    offset: int


# ============================================================================
# Sessions and profiles
# ============================================================================


class SessionRequest(BaseModel):
    """Request body for POST /v1/auth/session."""

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: Optional[str] = None
    role: str
    tenant_id: Optional[str] = None
    suspended_at: Optional[datetime] = None


class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    domain: Optional[str] = None
    status: str
    plan_type: str
    billing_email: Optional[str] = None
    created_at: datetime


class SessionResponse(BaseModel):
    """Response for POST /v1/auth/session and GET /v1/auth/me."""

    profile: ProfileOut
    tenant: Optional[TenantOut] = None
    landing_path: str = Field(..., description="Path the client should navigate to")


class PasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


# ============================================================================
# Invitations
# ============================================================================


class InvitationPreview(BaseModel):
    """Response for GET /v1/auth/invitations/{token}."""

    email: str
    role: str
    tenant_id: str
    tenant_name: Optional[str] = None
    expires_at: datetime


class AcceptInvitationRequest(BaseModel):
    """Request body for POST /v1/auth/invitations/accept.

    role and tenant_id are accepted only so override attempts can be logged;
    the bound values always come from the invitation row.
    """

    token: str = Field(..., min_length=1)
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    tenant_id: Optional[str] = None


class AcceptInvitationResponse(BaseModel):
    profile: ProfileOut
    landing_path: str
    password_set: bool


class InvitationCreate(BaseModel):
    email: str = Field(..., min_length=3)
    role: str = "user"


class InvitationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    email: str
    role: str
    invited_by: Optional[str] = None
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime


class InvitationCreated(BaseModel):
    invitation: InvitationOut
    invitation_email_sent: bool


# ============================================================================
# Platform administration
# ============================================================================


class TenantCreate(BaseModel):
    name: str = Field(..., min_length=1)
    domain: Optional[str] = None
    plan_type: str = "basic"
    billing_email: Optional[str] = None
    settings: dict[str, Any] = Field(default_factory=dict)
    admin_email: str = Field(..., min_length=3)


class TenantCreated(BaseModel):
    tenant: TenantOut
    invitation_id: str
    invitation_email_sent: bool


class RoleChangeRequest(BaseModel):
    role: str
    tenant_id: Optional[str] = None


class TenantAssignRequest(BaseModel):
    tenant_id: str


class UserSuspended(BaseModel):
    profile: ProfileOut
    auth_banned: bool


class UserOut(ProfileOut):
    """Profile as listed by the platform and tenant user views."""

    tenant_name: Optional[str] = None
    created_at: datetime


class PlatformMetrics(BaseModel):
    total_tenants: int
    active_tenants: int
    total_users: int
    total_reviews: int
    reviews_this_month: int
    reviews_last_month: int
    average_rating: Optional[float] = None


class TenantUsage(BaseModel):
    tenant_id: str
    users: int
    reviews: int
    pending_invitations: int


# ============================================================================
# Tenant data
# ============================================================================


class ReviewTracking(BaseModel):
    """Campaign parameters carried on the review link (?tracking_id=&utm_source=...)."""

    tracking_id: Optional[str] = Field(None, max_length=200)
    utm_source: Optional[str] = Field(None, max_length=200)
    utm_campaign: Optional[str] = Field(None, max_length=200)
    utm_medium: Optional[str] = Field(None, max_length=200)
    utm_term: Optional[str] = Field(None, max_length=200)
    utm_content: Optional[str] = Field(None, max_length=200)


class ReviewCreate(BaseModel):
    """Public review form submission.

    google_review is derived from the rating server-side; a value sent by
    the client is ignored.
    """

    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    country_code: str = "+1"
    rating: int = Field(..., ge=1, le=5)
    review_text: Optional[str] = Field(None, max_length=5000)
    tracking: Optional[ReviewTracking] = None


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    country_code: str
    rating: int
    review_text: Optional[str] = None
    google_review: bool
    redirect_opened: bool
    metadata: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    created_at: datetime


class ReviewSubmitted(BaseModel):
    """Public submit response: the stored review and where to send the customer next."""

    review: ReviewOut
    redirect_target: str
    redirect_url: str


class ReviewStats(BaseModel):
    total: int
    average_rating: Optional[float] = None
    by_rating: dict[str, int]
    google_reviews: int


class InvoiceCreate(BaseModel):
    customer_name: str = Field(..., min_length=1)
    customer_email: Optional[str] = None
    invoice_number: Optional[str] = None
    total: Decimal = Field(default=Decimal("0"), ge=0)
    status: str = "draft"
    due_date: Optional[date] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class InvoiceUpdate(BaseModel):
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    invoice_number: Optional[str] = None
    total: Optional[Decimal] = Field(default=None, ge=0)
    status: Optional[str] = None
    due_date: Optional[date] = None
    metadata: Optional[dict[str, Any]] = None


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    invoice_number: Optional[str] = None
    customer_name: str
    customer_email: Optional[str] = None
    total: Decimal
    status: str
    due_date: Optional[date] = None
    metadata: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    created_at: datetime
    updated_at: datetime


class SettingsIn(BaseModel):
    business_name: Optional[str] = None
    business_email: Optional[str] = None
    business_phone: Optional[str] = None
    business_address: Optional[str] = None
    google_business_url: Optional[str] = None
    review_form_url: Optional[str] = None
    settings: dict[str, Any] = Field(default_factory=dict)


class SettingsOut(SettingsIn):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    is_default: bool = False


class ReviewFormOut(BaseModel):
    """Public data needed to render a tenant's review form."""

    tenant_id: str
    business_name: Optional[str] = None
    google_business_url: Optional[str] = None


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
