"""SQLAlchemy ORM Models for Crux."""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BOOLEAN,
    DATE,
    INTEGER,
    JSON,
    NUMERIC,
    TEXT,
    TIMESTAMP,
    CheckConstraint,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Tenant(Base):
    """Customer organization. Owns profiles and every domain row."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    domain: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="active")
    plan_type: Mapped[str] = mapped_column(TEXT, nullable=False, default="basic")
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    billing_email: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("status IN ('active', 'suspended', 'pending')", name="ck_tenants_status"),
        CheckConstraint("plan_type IN ('basic', 'pro', 'enterprise')", name="ck_tenants_plan_type"),
    )


class Profile(Base):
    """Authorization record: identity id → role + tenant.

    id equals the Supabase auth user id.
    """

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    email: Mapped[str] = mapped_column(TEXT, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    role: Mapped[str] = mapped_column(TEXT, nullable=False, default="user")
    tenant_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)  # FK to tenants
    avatar_url: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    preferences: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    suspended_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('super_admin', 'tenant_admin', 'user')", name="ck_profiles_role"
        ),
        CheckConstraint(
            "role <> 'super_admin' OR tenant_id IS NULL", name="ck_profiles_super_admin_no_tenant"
        ),
        Index("idx_profiles_tenant", "tenant_id"),
        Index("idx_profiles_email", "email"),
    )


class Invitation(Base):
    """One-time token granting an email a role in a tenant."""

    __tablename__ = "user_invitations"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)  # FK to tenants
    email: Mapped[str] = mapped_column(TEXT, nullable=False)
    role: Mapped[str] = mapped_column(TEXT, nullable=False)
    invited_by: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    token: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    accepted_by: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    # Supabase auth user created by invite_user_by_email
    auth_user_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("role IN ('tenant_admin', 'user')", name="ck_invitations_role"),
        Index("idx_invitations_email_active", "email", "used_at", "expires_at"),
        Index("idx_invitations_tenant", "tenant_id"),
    )


class Review(Base):
    """Customer review submitted through a tenant's public form."""

    __tablename__ = "reviews"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    customer_name: Mapped[str] = mapped_column(TEXT, nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    country_code: Mapped[str] = mapped_column(TEXT, nullable=False, default="+1")
    rating: Mapped[int] = mapped_column(INTEGER, nullable=False)
    review_text: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    google_review: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    redirect_opened: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),
        Index("idx_reviews_tenant_created", "tenant_id", "created_at"),
    )


class Invoice(Base):
    """Invoice record. Amounts are stored as provided."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    invoice_number: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    customer_name: Mapped[str] = mapped_column(TEXT, nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    total: Mapped[Decimal] = mapped_column(NUMERIC(12, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="draft")
    due_date: Mapped[Optional[date]] = mapped_column(DATE, nullable=True)
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'sent', 'paid', 'overdue', 'cancelled')",
            name="ck_invoices_status",
        ),
        Index("idx_invoices_tenant_created", "tenant_id", "created_at"),
    )


class BusinessSettings(Base):
    """Per-tenant business profile shown on the public review form."""

    __tablename__ = "business_settings"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    business_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    business_email: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    business_phone: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    business_address: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    google_business_url: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    review_form_url: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (UniqueConstraint("tenant_id", name="uq_business_settings_tenant"),)


class AuditLog(Base):
    """Append-only record of security-relevant actions."""

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    tenant_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    action: Mapped[str] = mapped_column(TEXT, nullable=False)
    resource_type: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    ip_address: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_audit_logs_tenant_created", "tenant_id", "created_at"),
        Index("idx_audit_logs_action", "action"),
    )
