"""Crux Reaper main entry point.

Two independent loops for access-control housekeeping, each in its own
thread with its own sessions:

1. Invitation Sweep:
   - Delete: used_at IS NULL AND expires_at < NOW - CRUX_INVITATION_RETENTION_DAYS
   - Interval: CRUX_INVITATION_SWEEP_INTERVAL_SECONDS (default 3600)

2. Orphan Profiles:
   - Detach profiles whose tenant was deleted (role -> user)
   - Report tenant-less profiles past CRUX_ORPHAN_GRACE_DAYS
   - Interval: CRUX_ORPHAN_SWEEP_INTERVAL_SECONDS (default 3600)
"""

import logging
import os
import signal
import threading
from pathlib import Path

from crux_api.config.env import get_database_url, get_log_level
from crux_api.db.engine import build_engine, build_sessionmaker, mask_password
from crux_api.utils import configure_json_logging
from crux_reaper.loops.invitation_sweep import invitation_sweep_loop
from crux_reaper.loops.orphan_profiles import orphan_profile_loop

configure_json_logging(log_level=get_log_level())
logger = logging.getLogger(__name__)

READY_FILE_PATH = Path(os.getenv("CRUX_REAPER_READY_FILE", "/tmp/crux-reaper-ready"))


def main() -> None:
    READY_FILE_PATH.unlink(missing_ok=True)

    database_url = get_database_url()
    logger.info("Reaper database configured", extra={"database_url": mask_password(database_url)})

    engine = build_engine(database_url)
    SessionLocal = build_sessionmaker(engine)

    stop_event = threading.Event()

    def _stop(signum, frame) -> None:
        logger.info("Reaper stop requested", extra={"signal": signum})
        stop_event.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    threads = [
        threading.Thread(
            target=invitation_sweep_loop,
            kwargs={"session_factory": SessionLocal, "stop_event": stop_event},
            name="InvitationSweepLoop",
            daemon=False,
        ),
        threading.Thread(
            target=orphan_profile_loop,
            kwargs={"session_factory": SessionLocal, "stop_event": stop_event},
            name="OrphanProfileLoop",
            daemon=False,
        ),
    ]

    try:
        for thread in threads:
            logger.info("Starting reaper thread", extra={"thread": thread.name})
            thread.start()

        READY_FILE_PATH.write_text("ready\n")
        logger.info("Readiness file created", extra={"path": str(READY_FILE_PATH)})

        for thread in threads:
            thread.join()
    finally:
        READY_FILE_PATH.unlink(missing_ok=True)
        engine.dispose()
        logger.info("Reaper shutdown complete")


if __name__ == "__main__":
    main()
