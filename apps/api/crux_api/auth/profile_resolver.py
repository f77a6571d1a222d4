"""Profile Resolver: identity → {role, tenant_id}.

The zero-row case is a normal result (None), never an error: lookups use
scalar_one_or_none(). Database failures surface as TransportError, a
different kind, after at most one automatic retry (reads only).
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from crux_api.auth.invitations import InvitationService
from crux_api.auth.session_store import Identity
from crux_api.db.models import Profile, Tenant
from crux_api.errors import ProfileNotFound, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

READ_ATTEMPTS = 2


class ProfileResolver:
    def __init__(self, db: Session, invitations: Optional[InvitationService] = None):
        self.db = db
        self.invitations = invitations or InvitationService(db)

    def _read(self, operation: str, query: Callable[[], T]) -> T:
        attempt = 1
        while True:
            try:
                return query()
            except SQLAlchemyError as e:
                self.db.rollback()
                if attempt >= READ_ATTEMPTS:
                    logger.error(
                        "Read failed after retry",
                        extra={"event": "db.read_failed", "operation": operation, "attempts": attempt},
                    )
                    raise TransportError(operation) from e
                logger.warning(
                    "Read failed, retrying once",
                    extra={"event": "db.read_retry", "operation": operation},
                )
                attempt += 1

    def resolve(self, identity_id: str) -> Optional[Profile]:
        """Return the profile for identity_id, or None when none exists yet."""
        return self._read(
            "profile.resolve",
            lambda: self.db.execute(
                select(Profile).where(Profile.id == identity_id)
            ).scalar_one_or_none(),
        )

    def require(self, identity_id: str) -> Profile:
        """Like resolve() but for paths that must not provision.

        Raises:
            ProfileNotFound: no profile exists
        """
        profile = self.resolve(identity_id)
        if profile is None:
            raise ProfileNotFound(identity_id)
        return profile

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return self._read(
            "tenant.resolve",
            lambda: self.db.execute(
                select(Tenant).where(Tenant.id == tenant_id)
            ).scalar_one_or_none(),
        )

    def resolve_or_provision(self, identity: Identity) -> Profile:
        """Resolve, creating the first-sign-in profile when absent."""
        profile = self.resolve(identity.id)
        if profile is not None:
            return profile

        logger.info(
            "No profile yet, provisioning",
            extra={"event": "profile.not_found", "identity_id": identity.id},
        )
        return self.invitations.provision_for_signup(identity)


def async_resolver(session_factory: sessionmaker) -> Callable[[Identity], Awaitable[Profile]]:
    """Build an async resolve function for ProfileState.

    Each call opens its own session and runs the blocking lookup in a
    worker thread, so the event loop keeps processing auth changes.
    """

    def _resolve_blocking(identity: Identity) -> Profile:
        with session_factory() as db:
            profile = ProfileResolver(db).resolve_or_provision(identity)
            try:
                db.refresh(profile)
                db.expunge(profile)
            except SQLAlchemyError as e:
                db.rollback()
                raise TransportError("profile.load") from e
            return profile

    async def resolve(identity: Identity) -> Profile:
        return await asyncio.to_thread(_resolve_blocking, identity)

    return resolve
