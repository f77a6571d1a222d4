"""Orphan profile loop.

- Profiles pointing at a tenant that no longer exists are detached
  (tenant_id=NULL, role=user) so they can never read another tenant's rows
  if the id were reused.
- Tenant-less non-admin profiles older than CRUX_ORPHAN_GRACE_DAYS
  (default: 7) are reported for follow-up; they are left untouched.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from crux_api.auth.roles import Role
from crux_api.config.env import get_int_setting
from crux_api.db.models import Profile, Tenant, utcnow

logger = logging.getLogger(__name__)

REPORT_SAMPLE_SIZE = 20


@dataclass(frozen=True)
class OrphanReport:
    detached: int
    tenantless: int


def get_orphan_grace_days() -> int:
    return get_int_setting("CRUX_ORPHAN_GRACE_DAYS", 7, minimum=0)


def get_orphan_sweep_interval_seconds() -> int:
    return get_int_setting("CRUX_ORPHAN_SWEEP_INTERVAL_SECONDS", 3600, minimum=1)


def run_orphan_sweep(session: Session, grace_days: int) -> OrphanReport:
    existing_tenants = select(Tenant.id)
    detached = session.execute(
        update(Profile)
        .where(
            Profile.tenant_id.is_not(None),
            Profile.tenant_id.not_in(existing_tenants),
        )
        .values(tenant_id=None, role=Role.USER.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    session.commit()

    cutoff = utcnow() - timedelta(days=grace_days)
    tenantless = list(
        session.execute(
            select(Profile.id)
            .where(
                Profile.tenant_id.is_(None),
                Profile.role != Role.SUPER_ADMIN.value,
                Profile.created_at < cutoff,
            )
            .order_by(Profile.created_at)
        ).scalars()
    )

    if detached:
        logger.warning(
            "Profiles detached from deleted tenants",
            extra={"event": "reaper.orphan_detached", "detached": detached},
        )
    if tenantless:
        logger.warning(
            "Profiles without a tenant past the grace period",
            extra={
                "event": "reaper.tenantless_profiles",
                "count": len(tenantless),
                "profile_ids": tenantless[:REPORT_SAMPLE_SIZE],
                "grace_days": grace_days,
            },
        )
    return OrphanReport(detached=detached, tenantless=len(tenantless))


def orphan_profile_loop(
    session_factory,
    interval_seconds: Optional[int] = None,
    grace_days: Optional[int] = None,
    stop_event: Optional[threading.Event] = None,
) -> None:
    if interval_seconds is None:
        interval_seconds = get_orphan_sweep_interval_seconds()
    if grace_days is None:
        grace_days = get_orphan_grace_days()

    logger.info(
        "Starting orphan profile loop",
        extra={"interval_seconds": interval_seconds, "grace_days": grace_days},
    )

    while stop_event is None or not stop_event.is_set():
        try:
            with session_factory() as session:
                run_orphan_sweep(session, grace_days)
        except Exception:
            logger.error("Orphan profile loop error", exc_info=True, extra={"event": "reaper.orphan_sweep_failed"})

        if stop_event is not None:
            stop_event.wait(interval_seconds)
        else:
            time.sleep(interval_seconds)
