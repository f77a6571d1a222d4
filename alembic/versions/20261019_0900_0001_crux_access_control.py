"""crux_access_control

Tenants, profiles, invitations and tenant data tables, plus row-level
security for direct Supabase access:
- get_current_tenant_id(): tenant of auth.uid()'s profile
- is_super_admin() / is_tenant_admin(): role checks used by policies
- every tenant table: members read their own tenant's rows only

Server-side connections (owner role) bypass RLS; crux_api repositories apply
the same tenant filter.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

TENANT_TABLES = ("reviews", "invoices", "business_settings")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.TEXT(), primary_key=True),
        sa.Column("name", sa.TEXT(), nullable=False),
        sa.Column("domain", sa.TEXT(), nullable=True, unique=True),
        sa.Column("status", sa.TEXT(), nullable=False, server_default="active"),
        sa.Column("plan_type", sa.TEXT(), nullable=False, server_default="basic"),
        sa.Column("settings", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("billing_email", sa.TEXT(), nullable=True),
        sa.Column("created_by", sa.TEXT(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('active', 'suspended', 'pending')", name="ck_tenants_status"),
        sa.CheckConstraint("plan_type IN ('basic', 'pro', 'enterprise')", name="ck_tenants_plan_type"),
    )

    op.create_table(
        "profiles",
        sa.Column("id", sa.TEXT(), primary_key=True),
        sa.Column("email", sa.TEXT(), nullable=False),
        sa.Column("full_name", sa.TEXT(), nullable=True),
        sa.Column("role", sa.TEXT(), nullable=False, server_default="user"),
        sa.Column("tenant_id", sa.TEXT(), nullable=True),
        sa.Column("avatar_url", sa.TEXT(), nullable=True),
        sa.Column("preferences", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("suspended_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("role IN ('super_admin', 'tenant_admin', 'user')", name="ck_profiles_role"),
        sa.CheckConstraint(
            "role <> 'super_admin' OR tenant_id IS NULL", name="ck_profiles_super_admin_no_tenant"
        ),
    )
    op.create_index("idx_profiles_tenant", "profiles", ["tenant_id"])
    op.create_index("idx_profiles_email", "profiles", ["email"])

    op.create_table(
        "user_invitations",
        sa.Column("id", sa.TEXT(), primary_key=True),
        sa.Column("tenant_id", sa.TEXT(), nullable=False),
        sa.Column("email", sa.TEXT(), nullable=False),
        sa.Column("role", sa.TEXT(), nullable=False),
        sa.Column("invited_by", sa.TEXT(), nullable=True),
        sa.Column("token", sa.TEXT(), nullable=False, unique=True),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("accepted_by", sa.TEXT(), nullable=True),
        sa.Column("auth_user_id", sa.TEXT(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('tenant_admin', 'user')", name="ck_invitations_role"),
    )
    op.create_index("idx_invitations_email_active", "user_invitations", ["email", "used_at", "expires_at"])
    op.create_index("idx_invitations_tenant", "user_invitations", ["tenant_id"])

    op.create_table(
        "reviews",
        sa.Column("id", sa.TEXT(), primary_key=True),
        sa.Column("tenant_id", sa.TEXT(), nullable=False),
        sa.Column("user_id", sa.TEXT(), nullable=True),
        sa.Column("customer_name", sa.TEXT(), nullable=False),
        sa.Column("customer_email", sa.TEXT(), nullable=True),
        sa.Column("customer_phone", sa.TEXT(), nullable=True),
        sa.Column("country_code", sa.TEXT(), nullable=False, server_default="+1"),
        sa.Column("rating", sa.INTEGER(), nullable=False),
        sa.Column("review_text", sa.TEXT(), nullable=True),
        sa.Column("google_review", sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        sa.Column("redirect_opened", sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default="{}"),
        *_timestamps(),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),
    )
    op.create_index("idx_reviews_tenant_created", "reviews", ["tenant_id", "created_at"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.TEXT(), primary_key=True),
        sa.Column("tenant_id", sa.TEXT(), nullable=False),
        sa.Column("user_id", sa.TEXT(), nullable=True),
        sa.Column("invoice_number", sa.TEXT(), nullable=True),
        sa.Column("customer_name", sa.TEXT(), nullable=False),
        sa.Column("customer_email", sa.TEXT(), nullable=True),
        sa.Column("total", sa.NUMERIC(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.TEXT(), nullable=False, server_default="draft"),
        sa.Column("due_date", sa.DATE(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default="{}"),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('draft', 'sent', 'paid', 'overdue', 'cancelled')", name="ck_invoices_status"
        ),
    )
    op.create_index("idx_invoices_tenant_created", "invoices", ["tenant_id", "created_at"])

    op.create_table(
        "business_settings",
        sa.Column("id", sa.TEXT(), primary_key=True),
        sa.Column("tenant_id", sa.TEXT(), nullable=False),
        sa.Column("user_id", sa.TEXT(), nullable=True),
        sa.Column("business_name", sa.TEXT(), nullable=True),
        sa.Column("business_email", sa.TEXT(), nullable=True),
        sa.Column("business_phone", sa.TEXT(), nullable=True),
        sa.Column("business_address", sa.TEXT(), nullable=True),
        sa.Column("google_business_url", sa.TEXT(), nullable=True),
        sa.Column("review_form_url", sa.TEXT(), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=False, server_default="{}"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", name="uq_business_settings_tenant"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.TEXT(), primary_key=True),
        sa.Column("tenant_id", sa.TEXT(), nullable=True),
        sa.Column("user_id", sa.TEXT(), nullable=True),
        sa.Column("action", sa.TEXT(), nullable=False),
        sa.Column("resource_type", sa.TEXT(), nullable=True),
        sa.Column("resource_id", sa.TEXT(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("ip_address", sa.TEXT(), nullable=True),
        sa.Column("user_agent", sa.TEXT(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_audit_logs_tenant_created", "audit_logs", ["tenant_id", "created_at"])
    op.create_index("idx_audit_logs_action", "audit_logs", ["action"])

    if op.get_bind().dialect.name != "postgresql":
        return

    # ====================================================================
    # Row-level security (Supabase roles: anon, authenticated)
    # ====================================================================
    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.get_current_tenant_id()
        RETURNS TEXT
        LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public
        AS $$
          SELECT tenant_id FROM public.profiles
          WHERE id = auth.uid()::text AND suspended_at IS NULL
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.is_super_admin()
        RETURNS BOOLEAN
        LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public
        AS $$
          SELECT EXISTS (
            SELECT 1 FROM public.profiles
            WHERE id = auth.uid()::text AND role = 'super_admin' AND suspended_at IS NULL
          )
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION public.is_tenant_admin()
        RETURNS BOOLEAN
        LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public
        AS $$
          SELECT EXISTS (
            SELECT 1 FROM public.profiles
            WHERE id = auth.uid()::text AND role IN ('super_admin', 'tenant_admin')
              AND suspended_at IS NULL
          )
        $$;
        """
    )

    for table in ("tenants", "profiles", "user_invitations", "audit_logs", *TENANT_TABLES):
        op.execute(f"ALTER TABLE public.{table} ENABLE ROW LEVEL SECURITY;")

    op.execute(
        'CREATE POLICY "tenant members read own tenant" ON public.tenants '
        "FOR SELECT TO authenticated USING (id = public.get_current_tenant_id() OR public.is_super_admin());"
    )
    op.execute(
        'CREATE POLICY "super admins manage tenants" ON public.tenants '
        "FOR ALL TO authenticated USING (public.is_super_admin()) WITH CHECK (public.is_super_admin());"
    )

    op.execute(
        'CREATE POLICY "users read own profile" ON public.profiles '
        "FOR SELECT TO authenticated USING (id = auth.uid()::text);"
    )
    op.execute(
        'CREATE POLICY "tenant admins read tenant profiles" ON public.profiles '
        "FOR SELECT TO authenticated USING ("
        "(tenant_id = public.get_current_tenant_id() AND public.is_tenant_admin()) OR public.is_super_admin());"
    )

    op.execute(
        'CREATE POLICY "tenant admins manage tenant invitations" ON public.user_invitations '
        "FOR ALL TO authenticated USING ("
        "(tenant_id = public.get_current_tenant_id() AND public.is_tenant_admin()) OR public.is_super_admin()"
        ") WITH CHECK ("
        "(tenant_id = public.get_current_tenant_id() AND public.is_tenant_admin()) OR public.is_super_admin());"
    )

    op.execute(
        'CREATE POLICY "tenant admins read tenant audit logs" ON public.audit_logs '
        "FOR SELECT TO authenticated USING ("
        "(tenant_id = public.get_current_tenant_id() AND public.is_tenant_admin()) OR public.is_super_admin());"
    )

    for table in TENANT_TABLES:
        op.execute(
            f'CREATE POLICY "tenant members read {table}" ON public.{table} '
            "FOR SELECT TO authenticated USING ("
            "tenant_id = public.get_current_tenant_id() OR public.is_super_admin());"
        )
        op.execute(
            f'CREATE POLICY "tenant members write {table}" ON public.{table} '
            "FOR ALL TO authenticated USING (tenant_id = public.get_current_tenant_id()) "
            "WITH CHECK (tenant_id = public.get_current_tenant_id());"
        )

    # Public review form: anonymous inserts into active tenants only
    op.execute(
        'CREATE POLICY "public review submission" ON public.reviews '
        "FOR INSERT TO anon WITH CHECK ("
        "EXISTS (SELECT 1 FROM public.tenants t WHERE t.id = tenant_id AND t.status = 'active'));"
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("business_settings")
    op.drop_table("invoices")
    op.drop_table("reviews")
    op.drop_table("user_invitations")
    op.drop_table("profiles")
    op.drop_table("tenants")

    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP FUNCTION IF EXISTS public.is_tenant_admin();")
        op.execute("DROP FUNCTION IF EXISTS public.is_super_admin();")
        op.execute("DROP FUNCTION IF EXISTS public.get_current_tenant_id();")
