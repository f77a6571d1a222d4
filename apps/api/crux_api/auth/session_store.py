"""Session Store: the authenticated identity and its session tokens.

Lifecycle: init() → on_change(subscriber) → set_session()/sign_out() → teardown().

- Single writer: only set_session/sign_in_with_tokens/sign_out mutate state.
- Subscribers are passive; notifications are delivered in arrival order.
  A change raised from inside a subscriber is queued behind the one being
  delivered, never dispatched re-entrantly.
- There is no bypass path: a test identity is installed with set_session()
  exactly like a real one.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from crux_api.supabase_client import AuthGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """External-auth-issued identity. Never persisted by this service."""

    id: str
    email: str


@dataclass(frozen=True)
class Session:
    identity: Identity
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    SIGNED_OUT = "SIGNED_OUT"


Subscriber = Callable[[AuthEvent, Optional[Session]], None]


class SessionStore:
    """Process-wide holder of the current session."""

    def __init__(self, gateway: Optional["AuthGateway"] = None):
        self._gateway = gateway
        self._session: Optional[Session] = None
        self._subscribers: list[Subscriber] = []
        self._pending: deque[tuple[AuthEvent, Optional[Session]]] = deque()
        self._dispatching = False
        self._initialized = False
        self._closed = False

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def identity(self) -> Optional[Identity]:
        return self._session.identity if self._session else None

    def init(self, session: Optional[Session] = None) -> None:
        """Load the initial session (or none) and emit INITIAL_SESSION."""
        self._ensure_open()
        if self._initialized:
            raise RuntimeError("SessionStore.init() called twice")
        self._initialized = True
        self._session = session
        self._emit(AuthEvent.INITIAL_SESSION, session)

    def on_change(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a callable that unsubscribes it."""
        self._ensure_open()
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def set_session(self, session: Session) -> None:
        """Install a session. Same identity → TOKEN_REFRESHED, else SIGNED_IN."""
        self._ensure_open()
        previous = self._session
        self._session = session
        if previous is not None and previous.identity == session.identity:
            self._emit(AuthEvent.TOKEN_REFRESHED, session)
        else:
            self._emit(AuthEvent.SIGNED_IN, session)

    def sign_in_with_tokens(self, access_token: str, refresh_token: str) -> Session:
        """Bootstrap a session from a token pair delivered by an emailed link."""
        if self._gateway is None:
            raise RuntimeError("SessionStore has no auth gateway")
        session = self._gateway.set_session(access_token, refresh_token)
        self.set_session(session)
        return session

    def sign_out(self) -> None:
        """Clear the local session, then revoke it remotely."""
        self._ensure_open()
        previous = self._session
        if previous is None:
            return
        self._session = None
        self._emit(AuthEvent.SIGNED_OUT, None)

        if self._gateway is not None:
            self._gateway.sign_out(previous.access_token)

    def teardown(self) -> None:
        """Drop all subscribers and the session. The store is unusable afterwards."""
        self._subscribers.clear()
        self._pending.clear()
        self._session = None
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("SessionStore used after teardown()")

    def _emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        self._pending.append((event, session))
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._pending:
                next_event, next_session = self._pending.popleft()
                for subscriber in list(self._subscribers):
                    try:
                        subscriber(next_event, next_session)
                    except Exception:
                        # One failing subscriber must not starve the others
                        logger.error(
                            "Session subscriber failed",
                            exc_info=True,
                            extra={"event": "session.subscriber_failed", "auth_event": next_event.value},
                        )
        finally:
            self._dispatching = False
