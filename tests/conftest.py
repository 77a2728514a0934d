"""
tests/conftest.py -- Shared test fixtures for keyward.

This module provides:
  - FrozenClock / RecordingNotifier: deterministic collaborators
  - engine / stores / service: an isolated in-memory AuthService per test
  - api_client: TestClient running the real app against a shared-memory DB

Design: unit fixtures use plain in-memory SQLite (one thread, one connection).
The api_client fixture needs a named shared-memory URI because TestClient runs
sync route handlers in a thread pool, and a plain :memory: DB is per
connection.

DEBUG, BCRYPT_ROUNDS and the rate limits must be set before any core/auth
import so get_settings() generates a dev SECRET_KEY, hashes stay fast, and the
rate limiter never trips during the suite.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SIGN_IN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("FORGOT_PASSWORD_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import SingletonThreadPool

from api.main import app
from auth.otp import OtpManager
from auth.passwords import PasswordHasher
from auth.policy import PasswordPolicy, PasswordPolicyConfig
from auth.service import AuthService, create_auth_service
from auth.sessions import SessionRegistry
from auth.store import OtpStore, SessionStore, UserStore, create_auth_engine
from auth.tokens import TokenIssuer
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"
STRONG_PASSWORD = "Strong#123"


# ---------------------------------------------------------------------------
# Deterministic collaborators
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    """Notifier that keeps every (email, code) pair instead of sending mail."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_otp(self, email: str, code: str) -> None:
        self.sent.append((email, code))

    def last_code(self, email: str) -> str:
        return [code for addr, code in self.sent if addr == email][-1]


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine():
    eng = create_auth_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def session_store(engine) -> SessionStore:
    return SessionStore(engine)


@pytest.fixture
def otp_store(engine) -> OtpStore:
    return OtpStore(engine)


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, expire_seconds=3600)


def build_service(
    user_store,
    session_store: SessionStore,
    otp_store: OtpStore,
    hasher: PasswordHasher,
    notifier: RecordingNotifier,
    clock: FrozenClock,
    **overrides,
) -> AuthService:
    """Assemble an AuthService from test collaborators; keyword overrides win."""
    kwargs = dict(
        users=user_store,
        sessions=SessionRegistry(session_store, ttl_seconds=3600, clock=clock),
        tokens=TokenIssuer(TEST_SECRET, expire_seconds=3600),
        otp=OtpManager(otp_store, TEST_SECRET, ttl_seconds=600, clock=clock),
        hasher=hasher,
        policy=PasswordPolicy(PasswordPolicyConfig()),
        notifier=notifier,
    )
    kwargs.update(overrides)
    return AuthService(**kwargs)


@pytest.fixture
def service(user_store, session_store, otp_store, hasher, notifier, clock) -> AuthService:
    return build_service(user_store, session_store, otp_store, hasher, notifier, clock)


@pytest.fixture
def make_service(user_store, session_store, otp_store, hasher, notifier, clock):
    """Factory for services that differ from the default in a few collaborators."""

    def factory(**overrides) -> AuthService:
        return build_service(user_store, session_store, otp_store, hasher, notifier, clock, **overrides)

    return factory


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine, notifier: RecordingNotifier):
    """Return a lifespan that wires a test engine and notifier into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.auth_service = create_auth_service(get_settings(), engine, notifier=notifier)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) for HTTP integration tests.

    One TestClient per test module; tests use distinct usernames and emails
    so they can share the database.
    """
    engine = create_auth_engine(
        "sqlite:///file:test_auth_api?mode=memory&cache=shared&uri=true",
        poolclass=SingletonThreadPool,
    )
    notifier = RecordingNotifier()
    app.router.lifespan_context = _patch_lifespan(engine, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier

    engine.dispose()
