"""
tests/conftest.py -- Shared test fixtures for SiteGuard unit and integration tests.

This module provides:
  - FakeClock / clock: a controllable epoch clock for expiry tests
  - hasher, engine, principal_store, session_store, reset_registry,
    authenticator: unit-level fixtures on a private in-memory database
  - _make_test_authenticator(): Authenticator on a named shared-memory DB
  - _patch_lifespan(): wires the test Authenticator into app.state, bypassing real startup
  - api_client: TestClient plus an admin session id for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API fixtures because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit fixtures run on one thread, so plain :memory: is fine.

Environment must be set before any auth/core/api import:
  DEBUG=true        get_settings() auto-generates SECRET_KEY instead of raising.
  ARGON2_*          a low work factor keeps the suite fast.
  ALLOWED_HOSTS     TestClient sends Host: testserver.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core/api import -- get_settings() is cached
# on first use and api.main reads it at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_PARALLELISM", "1")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.authenticator import Authenticator
from auth.hashing import CredentialHasher
from auth.models import Principal
from auth.reset_tokens import ResetTokenRegistry
from auth.sessions import SessionStore
from auth.store import PrincipalStore, create_auth_engine
from core.config import Settings, get_settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
TEST_SESSION_TTL = 3600
TEST_RESET_TTL = 600

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"

# Rate limits are exercised by one dedicated test that switches this back on.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Clock and collaborators
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable epoch clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """ResetNotifier that keeps every (principal, token) it is handed."""

    def __init__(self) -> None:
        self.sent: list[tuple[Principal, str]] = []

    def send_reset(self, principal: Principal, token: str) -> None:
        self.sent.append((principal, token))


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh private database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def engine():
    eng = create_auth_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def principal_store(engine) -> PrincipalStore:
    return PrincipalStore(engine)


@pytest.fixture
def session_store(engine, principal_store, clock) -> SessionStore:
    return SessionStore(engine, principal_store, secret_key=TEST_SECRET, ttl_seconds=TEST_SESSION_TTL, clock=clock)


@pytest.fixture
def reset_registry(engine, principal_store, hasher, clock) -> ResetTokenRegistry:
    return ResetTokenRegistry(
        engine,
        principal_store,
        hasher,
        secret_key=TEST_SECRET,
        ttl_seconds=TEST_RESET_TTL,
        clock=clock,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def authenticator(engine, principal_store, session_store, reset_registry, hasher, notifier) -> Authenticator:
    return Authenticator(principal_store, session_store, reset_registry, hasher, notifier=notifier, engine=engine)


@pytest.fixture
def admin(authenticator) -> Principal:
    return authenticator.create_admin(ADMIN_EMAIL, ADMIN_PASSWORD)


# ---------------------------------------------------------------------------
# API helpers
# ---------------------------------------------------------------------------


def _make_test_authenticator(db_suffix: str) -> tuple[Authenticator, Settings]:
    """Build an Authenticator on an isolated named shared-memory SQLite DB.

    Named URIs allow multiple connections (from different threads in TestClient)
    to access the same in-memory database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules don't
                   share state (e.g. 'test_api_auth', 'test_api_admin').
    """
    db_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    settings = get_settings().model_copy(update={"database_url": db_url})
    return Authenticator.from_settings(settings), settings


def _patch_lifespan(authenticator: Authenticator, settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.authenticator = authenticator
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_session_id, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory store. The admin is
    created before the client starts; its session id goes in Authorization
    headers.
    """
    authenticator, settings = _make_test_authenticator(request.module.__name__.rsplit(".", 1)[-1])

    admin = authenticator.create_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
    admin_sid = authenticator.sessions.create(admin.id)

    app.router.lifespan_context = _patch_lifespan(authenticator, settings)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, admin_sid, admin.id

    authenticator.close()


@pytest.fixture(autouse=True)
def _empty_cookie_jar(request):
    """Start every API test without cookies left over by an earlier login."""
    if "api_client" in request.fixturenames:
        client, _, _ = request.getfixturevalue("api_client")
        client.cookies.clear()
    yield