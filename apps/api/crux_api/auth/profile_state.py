"""Current-profile tracker driven by Session Store notifications.

Each identity change bumps a generation counter and cancels the in-flight
lookup. A lookup that completes for an older generation is discarded, so
A → B → C always commits C's profile, never a late result for A or B.

Views register with watch(); the returned handle's release() stops
delivery to that view, so a lookup finishing after the view went away is
never applied to it.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from crux_api.auth.session_store import AuthEvent, Identity, Session, SessionStore
from crux_api.errors import TransportError

logger = logging.getLogger(__name__)

Resolve = Callable[[Identity], Awaitable[Any]]


class ProfileStatus(str, Enum):
    SIGNED_OUT = "SIGNED_OUT"
    LOADING = "LOADING"
    READY = "READY"
    ERROR = "ERROR"


class Watch:
    """Liveness handle for one consuming view."""

    def __init__(self, owner: "ProfileState", callback: Callable[["ProfileState"], None]):
        self._owner = owner
        self._callback = callback
        self.active = True

    def release(self) -> None:
        if self.active:
            self.active = False
            self._owner._watches.discard(self)

    def _deliver(self) -> None:
        if self.active:
            self._callback(self._owner)


class ProfileState:
    def __init__(self, store: SessionStore, resolve: Resolve):
        self._resolve = resolve
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._watches: set[Watch] = set()

        self.status = ProfileStatus.SIGNED_OUT
        self.identity: Optional[Identity] = None
        self.profile: Any = None
        self.error: Optional[Exception] = None

        self._unsubscribe = store.on_change(self._on_auth_change)
        if store.session is not None:
            self._on_auth_change(AuthEvent.INITIAL_SESSION, store.session)

    @property
    def generation(self) -> int:
        return self._generation

    def watch(self, callback: Callable[["ProfileState"], None]) -> Watch:
        handle = Watch(self, callback)
        self._watches.add(handle)
        return handle

    def _notify(self) -> None:
        for handle in list(self._watches):
            handle._deliver()

    def _on_auth_change(self, event: AuthEvent, session: Optional[Session]) -> None:
        identity = session.identity if session is not None else None

        if event == AuthEvent.TOKEN_REFRESHED and identity == self.identity:
            return

        self._generation += 1
        generation = self._generation

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

        self.identity = identity
        self.profile = None
        self.error = None

        if identity is None:
            self.status = ProfileStatus.SIGNED_OUT
            self._notify()
            return

        self.status = ProfileStatus.LOADING
        self._notify()
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation, identity), name=f"profile-resolve-{generation}"
        )

    async def _run(self, generation: int, identity: Identity) -> None:
        try:
            profile = await self._resolve(identity)
        except Exception as e:
            if generation != self._generation:
                return
            error = e
            if not isinstance(e, TransportError):
                logger.error(
                    "Profile resolution failed unexpectedly",
                    exc_info=True,
                    extra={"event": "profile.resolve_failed", "generation": generation},
                )
                error = TransportError("profile.resolve")
                error.__cause__ = e
            self.status = ProfileStatus.ERROR
            self.error = error
            self._notify()
            return

        if generation != self._generation:
            logger.info(
                "Discarding stale profile resolution",
                extra={
                    "event": "profile.stale_discarded",
                    "stale_generation": generation,
                    "current_generation": self._generation,
                },
            )
            return

        self.profile = profile
        self.status = ProfileStatus.READY
        self._notify()

    async def wait_settled(self) -> None:
        """Wait until the current generation's lookup has finished."""
        while self._task is not None and not self._task.done():
            task = self._task
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    def close(self) -> None:
        self._unsubscribe()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._watches.clear()
