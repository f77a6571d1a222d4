#!/usr/bin/env python3
"""
Crux operator CLI.

Operator tasks that must work without a super_admin session (bootstrapping
the first platform admin, checking a user's role during an incident).

Usage:
    python scripts/crux_admin.py check-role owner@example.com
    python scripts/crux_admin.py promote owner@example.com --role super_admin
    python scripts/crux_admin.py promote jane@biz.com --role tenant_admin --tenant-id <uuid>
    python scripts/crux_admin.py create-tenant --name "Acme" --admin-email boss@acme.com
    python scripts/crux_admin.py sweep-invitations --retention-days 30

Exit Codes:
    0: success
    1: failure (unknown user, invalid role/tenant, backend error)

Environment Variables:
    DATABASE_URL: database connection string (or --database-url)
    SUPABASE_URL / SB_SECRET_KEY: required by create-tenant unless --no-email
"""

import argparse
import sys
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from crux_api.auth.invitations import normalize_email
from crux_api.auth.roles import Role
from crux_api.auth.route_guard import landing_for
from crux_api.config.env import get_database_url, get_public_entry_path
from crux_api.db.engine import build_engine, build_sessionmaker
from crux_api.db.models import Profile
from crux_api.errors import CruxError
from crux_api.supabase_client import AuthGateway
from crux_api.tenants import TenantService
from crux_reaper.loops.invitation_sweep import run_invitation_sweep


def _profile_by_email(db: Session, email: str) -> Optional[Profile]:
    return db.execute(
        select(Profile).where(Profile.email == normalize_email(email)).limit(1)
    ).scalar_one_or_none()


def cmd_check_role(db: Session, args: argparse.Namespace) -> int:
    profile = _profile_by_email(db, args.email)
    if profile is None:
        print(f"FAIL: no profile for {args.email}")
        return 1
    print(f"id:        {profile.id}")
    print(f"role:      {profile.role}")
    print(f"tenant_id: {profile.tenant_id or '-'}")
    print(f"suspended: {'yes' if profile.suspended_at else 'no'}")
    print(f"landing:   {landing_for(profile, get_public_entry_path())}")
    return 0


def cmd_promote(db: Session, args: argparse.Namespace) -> int:
    profile = _profile_by_email(db, args.email)
    if profile is None:
        print(f"FAIL: no profile for {args.email} (the user must sign in once first)")
        return 1
    updated = TenantService(db).change_role(profile.id, args.role, args.tenant_id)
    print(f"OK: {args.email} is now {updated.role} (tenant_id={updated.tenant_id or '-'})")
    return 0


def cmd_create_tenant(db: Session, args: argparse.Namespace) -> int:
    gateway = None if args.no_email else AuthGateway()
    created = TenantService(db, gateway).create_tenant_with_admin(
        {"name": args.name, "domain": args.domain, "plan_type": args.plan},
        args.admin_email,
    )
    print(f"OK: tenant {created.tenant.id} ({created.tenant.name})")
    print(f"    invitation {created.invitation.id} for {created.invitation.email}")
    if not created.invitation_email_sent:
        print("    WARNING: invitation email not sent; resend via POST /v1/invitations/{id}/resend")
    return 0


def cmd_sweep_invitations(db: Session, args: argparse.Namespace) -> int:
    deleted = run_invitation_sweep(db, args.retention_days)
    print(f"OK: deleted {deleted} expired invitations")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crux operator CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--database-url", help="Overrides DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check-role", help="Show a user's role, tenant and landing page")
    check.add_argument("email")
    check.set_defaults(handler=cmd_check_role)

    promote = sub.add_parser("promote", help="Change a user's role")
    promote.add_argument("email")
    promote.add_argument("--role", required=True, choices=[role.value for role in Role])
    promote.add_argument("--tenant-id", help="Required for tenant roles if the user has no tenant")
    promote.set_defaults(handler=cmd_promote)

    create = sub.add_parser("create-tenant", help="Create a tenant and invite its admin")
    create.add_argument("--name", required=True)
    create.add_argument("--admin-email", required=True)
    create.add_argument("--domain")
    create.add_argument("--plan", default="basic", choices=["basic", "pro", "enterprise"])
    create.add_argument("--no-email", action="store_true", help="Create the invitation without emailing it")
    create.set_defaults(handler=cmd_create_tenant)

    sweep = sub.add_parser("sweep-invitations", help="Delete long-expired unused invitations")
    sweep.add_argument("--retention-days", type=int, default=30)
    sweep.set_defaults(handler=cmd_sweep_invitations)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    engine = build_engine(args.database_url or get_database_url())
    SessionLocal = build_sessionmaker(engine)
    try:
        with SessionLocal() as db:
            return args.handler(db, args)
    except CruxError as e:
        print(f"FAIL: {e.detail}")
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
