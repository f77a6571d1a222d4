"""Invitation sweep loop.

Deletes invitations that were never used and expired more than
CRUX_INVITATION_RETENTION_DAYS (default: 30) ago. Used invitations are kept
as the record of who bound which profile.
"""

import logging
import threading
import time
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from crux_api.config.env import get_int_setting
from crux_api.db.models import Invitation, utcnow

logger = logging.getLogger(__name__)


def get_invitation_retention_days() -> int:
    return get_int_setting("CRUX_INVITATION_RETENTION_DAYS", 30, minimum=1)


def get_invitation_sweep_interval_seconds() -> int:
    return get_int_setting("CRUX_INVITATION_SWEEP_INTERVAL_SECONDS", 3600, minimum=1)


def run_invitation_sweep(session: Session, retention_days: int) -> int:
    """Delete unused invitations expired before the retention window.

    Returns:
        Number of invitations deleted
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    result = session.execute(
        delete(Invitation).where(
            Invitation.used_at.is_(None),
            Invitation.expires_at < cutoff,
        )
    )
    session.commit()
    deleted = result.rowcount or 0
    logger.info(
        "Invitation sweep completed",
        extra={"event": "reaper.invitation_sweep", "deleted": deleted, "retention_days": retention_days},
    )
    return deleted


def invitation_sweep_loop(
    session_factory,
    interval_seconds: Optional[int] = None,
    retention_days: Optional[int] = None,
    stop_event: Optional[threading.Event] = None,
) -> None:
    """Runs in a background thread; each iteration opens its own session."""
    if interval_seconds is None:
        interval_seconds = get_invitation_sweep_interval_seconds()
    if retention_days is None:
        retention_days = get_invitation_retention_days()

    logger.info(
        "Starting invitation sweep loop",
        extra={"interval_seconds": interval_seconds, "retention_days": retention_days},
    )

    while stop_event is None or not stop_event.is_set():
        try:
            with session_factory() as session:
                run_invitation_sweep(session, retention_days)
        except Exception:
            logger.error("Invitation sweep loop error", exc_info=True, extra={"event": "reaper.invitation_sweep_failed"})

        if stop_event is not None:
            stop_event.wait(interval_seconds)
        else:
            time.sleep(interval_seconds)
