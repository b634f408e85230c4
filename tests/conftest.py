"""
tests/conftest.py -- Shared test fixtures for the E-Tax auth core.

This module provides:
  - FakeClock: a settable UTC clock for lockout-window and expiry tests
  - store / hasher / tokens / service: isolated unit-level components
  - api_client: TestClient over the real app with a patched lifespan and an
    isolated shared-memory store per test module
  - make_user / bearer: factory fixtures for users and Authorization headers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit fixtures run in one thread and use plain :memory:.

Environment must be set before any api/ or core/ import: get_settings() is
cached on first call and api.limiter reads it at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any api/core import.
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789abcdef")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
# Cheap Argon2 parameters keep the suite fast; production defaults are 64 MiB / 3 / 2.
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_PARALLELISM", "1")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_auth_components
from auth.lockout import LoginAttemptTracker
from auth.models import Role, User
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import AuthStore
from auth.tokens import TokenService
from core.config import get_settings

ADMIN_PASSWORD = "Adm1n!Passw0rd"
USER_PASSWORD = "Str0ng!Pw"


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(memory_cost=1024, time_cost=1, parallelism=1)


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(get_settings().secret_key)


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def tracker(store: AuthStore, clock: FakeClock) -> LoginAttemptTracker:
    return LoginAttemptTracker(store, clock=clock)


@pytest.fixture
def service(
    store: AuthStore,
    hasher: PasswordHasher,
    tokens: TokenService,
    tracker: LoginAttemptTracker,
    clock: FakeClock,
) -> AuthService:
    return AuthService(store, hasher, tokens, SessionManager(store, clock=clock), tracker, clock=clock)


def _create_user(
    store: AuthStore,
    hasher: PasswordHasher,
    username: str,
    role: Role = Role.user,
    password: str = USER_PASSWORD,
    is_active: bool = True,
) -> int:
    """Insert a user directly through the store and return its id."""
    return store.create_user(
        User(
            username=username,
            email=f"{username}@example.com",
            password_hash=hasher.hash(password),
            first_name=username.title(),
            last_name="Tester",
            role=role,
            is_active=is_active,
        )
    )


@pytest.fixture
def make_user():
    """Factory fixture: make_user(store, hasher, username, role=..., password=..., is_active=...) -> id."""
    return _create_user


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore):
    """Return a lifespan that wires the pre-created test store into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        build_auth_components(app, store, get_settings())
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, AuthStore, int], None, None]:
    """Yield (client, store, admin_id) for API integration tests.

    One isolated store per test module. An admin "testadmin" with
    ADMIN_PASSWORD exists before the client starts.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    store = AuthStore(f"sqlite:///file:etax_{suffix}?mode=memory&cache=shared&uri=true")
    admin_id = _create_user(
        store,
        PasswordHasher.from_settings(get_settings()),
        "testadmin",
        role=Role.admin,
        password=ADMIN_PASSWORD,
    )

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store, admin_id

    store.close()


def _bearer(client: TestClient, user_id: int, username: str, role: str) -> dict[str, str]:
    token = client.app.state.tokens.issue_access_token(user_id, username, role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def bearer():
    """Factory fixture: bearer(client, user_id, username, role) -> Authorization header."""
    return _bearer
