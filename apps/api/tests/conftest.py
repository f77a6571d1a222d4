"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
# Inject sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "reaper"))  # => .../apps/reaper

import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crux_api.audit.recorder import AuditRecorder, get_audit_recorder
from crux_api.auth.session_store import Identity
from crux_api.auth.session_store import Session as AuthSession
from crux_api.db.models import Base, Profile, Tenant
from crux_api.db.session import get_db
from crux_api.errors import TransportError, Unauthenticated
from crux_api.main import app
from crux_api.supabase_client import get_auth_gateway


class FakeAuthGateway:
    """In-memory stand-in for AuthGateway.

    Tokens map to identities; operations listed in `failing` raise
    TransportError, as the real gateway does when Supabase is unreachable.
    """

    def __init__(self):
        self.tokens: dict[str, Identity] = {}
        self.failing: set[str] = set()
        self.signed_out: list[str] = []
        self.invites: list[dict] = []
        self.passwords: dict[str, str] = {}
        self.banned: list[str] = []
        self.get_user_calls = 0

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise TransportError(f"auth.{operation}")

    def add_user(self, email: str, user_id: Optional[str] = None) -> tuple[Identity, str]:
        identity = Identity(id=user_id or str(uuid.uuid4()), email=email.lower())
        token = f"token-{uuid.uuid4().hex}"
        self.tokens[token] = identity
        return identity, token

    def token_for(self, identity: Identity) -> str:
        token = f"token-{uuid.uuid4().hex}"
        self.tokens[token] = identity
        return token

    def get_user(self, access_token: str) -> Identity:
        self.get_user_calls += 1
        self._check("get_user")
        identity = self.tokens.get(access_token)
        if identity is None:
            raise Unauthenticated("Session is invalid or expired.")
        return identity

    def set_session(self, access_token: str, refresh_token: str) -> AuthSession:
        self._check("set_session")
        return AuthSession(self.get_user(access_token), access_token, refresh_token)

    def sign_out(self, access_token: str) -> None:
        self._check("sign_out")
        self.signed_out.append(access_token)
        self.tokens.pop(access_token, None)

    def invite_user_by_email(self, email: str, data: dict, redirect_to: str) -> str:
        self._check("invite_user_by_email")
        identity, _ = self.add_user(email)
        self.invites.append({"email": email, "data": data, "redirect_to": redirect_to, "user_id": identity.id})
        return identity.id

    def set_password(self, user_id: str, password: str) -> None:
        self._check("set_password")
        self.passwords[user_id] = password

    def ban_user(self, user_id: str) -> None:
        self._check("ban_user")
        self.banned.append(user_id)


@pytest.fixture(scope="function")
def engine() -> Engine:
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory: sessionmaker) -> Session:
    session = session_factory()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture
def gateway() -> FakeAuthGateway:
    return FakeAuthGateway()


@pytest.fixture
def audit_recorder(session_factory: sessionmaker) -> AuditRecorder:
    return AuditRecorder(session_factory)


@pytest.fixture
def test_client(db_session: Session, gateway: FakeAuthGateway, audit_recorder: AuditRecorder):
    """TestClient with DB, auth gateway and audit recorder overridden."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # conftest closes the session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_auth_gateway] = lambda: gateway
    app.dependency_overrides[get_audit_recorder] = lambda: audit_recorder
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_tenant(db_session: Session) -> Callable[..., Tenant]:
    def _make(name: str = "Acme", status: str = "active", domain: Optional[str] = None) -> Tenant:
        tenant = Tenant(name=name, status=status, domain=domain)
        db_session.add(tenant)
        db_session.commit()
        db_session.refresh(tenant)
        return tenant

    return _make


@pytest.fixture
def make_user(db_session: Session, gateway: FakeAuthGateway) -> Callable[..., tuple[Profile, dict]]:
    """Profile + auth identity. Returns (profile, Authorization headers)."""

    def _make(
        role: str = "user",
        tenant: Optional[Tenant] = None,
        email: Optional[str] = None,
        suspended: bool = False,
    ) -> tuple[Profile, dict]:
        identity, token = gateway.add_user(email or f"{uuid.uuid4().hex[:8]}@example.com")
        profile = Profile(
            id=identity.id,
            email=identity.email,
            role=role,
            tenant_id=tenant.id if tenant is not None else None,
            suspended_at=datetime.now(timezone.utc) if suspended else None,
        )
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(profile)
        return profile, {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    return _make
