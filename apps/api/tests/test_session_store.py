"""Session Store lifecycle and notification ordering."""

import pytest

from crux_api.auth.session_store import AuthEvent, Identity, Session, SessionStore

ALICE = Identity(id="u-alice", email="alice@example.com")
BOB = Identity(id="u-bob", email="bob@example.com")


def _session(identity: Identity, token: str = "at") -> Session:
    return Session(identity=identity, access_token=token, refresh_token="rt")


def test_init_emits_initial_session() -> None:
    store = SessionStore()
    events = []
    store.on_change(lambda event, session: events.append((event, session)))

    store.init(_session(ALICE))

    assert events == [(AuthEvent.INITIAL_SESSION, _session(ALICE))]
    assert store.identity == ALICE


def test_init_twice_is_rejected() -> None:
    store = SessionStore()
    store.init()
    with pytest.raises(RuntimeError):
        store.init()


def test_same_identity_is_token_refresh() -> None:
    store = SessionStore()
    store.init(_session(ALICE, "at-1"))
    events = []
    store.on_change(lambda event, session: events.append(event))

    store.set_session(_session(ALICE, "at-2"))
    store.set_session(_session(BOB))

    assert events == [AuthEvent.TOKEN_REFRESHED, AuthEvent.SIGNED_IN]
    assert store.session.access_token == "at"


def test_change_from_subscriber_is_queued_not_reentrant() -> None:
    """A subscriber that signs out while handling SIGNED_IN does not interleave."""
    store = SessionStore()
    store.init()
    seen = []

    def first(event, session):
        seen.append(("first", event))
        if event == AuthEvent.SIGNED_IN:
            store.sign_out()

    def second(event, session):
        seen.append(("second", event))

    store.on_change(first)
    store.on_change(second)
    store.set_session(_session(ALICE))

    assert seen == [
        ("first", AuthEvent.SIGNED_IN),
        ("second", AuthEvent.SIGNED_IN),
        ("first", AuthEvent.SIGNED_OUT),
        ("second", AuthEvent.SIGNED_OUT),
    ]
    assert store.session is None


def test_failing_subscriber_does_not_starve_others() -> None:
    store = SessionStore()
    store.init()
    received = []

    def broken(event, session):
        raise ValueError("boom")

    store.on_change(broken)
    store.on_change(lambda event, session: received.append(event))
    store.set_session(_session(ALICE))

    assert received == [AuthEvent.SIGNED_IN]


def test_unsubscribe_stops_delivery() -> None:
    store = SessionStore()
    store.init()
    received = []
    unsubscribe = store.on_change(lambda event, session: received.append(event))

    unsubscribe()
    unsubscribe()
    store.set_session(_session(ALICE))

    assert received == []


def test_sign_out_revokes_remotely(gateway) -> None:
    identity, token = gateway.add_user("carol@example.com")
    store = SessionStore(gateway)
    store.init(Session(identity, token))

    store.sign_out()
    store.sign_out()

    assert store.identity is None
    assert gateway.signed_out == [token]


def test_sign_in_with_tokens_uses_gateway(gateway) -> None:
    identity, token = gateway.add_user("dave@example.com")
    store = SessionStore(gateway)
    store.init()
    events = []
    store.on_change(lambda event, session: events.append(event))

    session = store.sign_in_with_tokens(token, "refresh")

    assert session.identity == identity
    assert events == [AuthEvent.SIGNED_IN]


def test_teardown_makes_store_unusable() -> None:
    store = SessionStore()
    store.init(_session(ALICE))
    store.teardown()

    assert store.session is None
    with pytest.raises(RuntimeError):
        store.set_session(_session(BOB))
