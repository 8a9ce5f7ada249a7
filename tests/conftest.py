"""
tests/conftest.py -- Shared test fixtures for the token auth tests.

This module provides:
  - FakeClock: a controllable clock for the token codec (no sleeping)
  - settings / hasher / codec / db / service fixtures wired like production,
    but with bcrypt cost 4 and a file-backed SQLite database per test
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: SQLite databases live in tmp_path rather than in memory. Plain
':memory:' gives every pooled connection its own blank database, and shared-
cache memory databases fail fast with "table is locked" under concurrent
writers. A file with WAL mode and a busy timeout behaves like a real server
for the concurrent-signup test.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates signing keys instead of raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any core/auth import so get_settings() can
# auto-generate signing keys in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.passwords import BcryptPasswordHasher
from auth.service import AuthService
from auth.store import Database, RefreshTokenStore, UserStore
from auth.tokens import JoseTokenCodec
from core.config import AccessTokenSettings, RefreshTokenSettings, Settings

ACCESS_KEY = "test-access-signing-key-0123456789abcdef"
REFRESH_KEY = "test-refresh-signing-key-0123456789abcdef"
ISSUER = "tokenauth-test"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        issuer=ISSUER,
        bcrypt_cost=4,
        access_token=AccessTokenSettings(duration_seconds=900, signing_key=ACCESS_KEY),
        refresh_token=RefreshTokenSettings(duration_seconds=7 * 24 * 3600, signing_key=REFRESH_KEY),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hasher() -> BcryptPasswordHasher:
    return BcryptPasswordHasher(cost=4)


@pytest.fixture
def codec(settings: Settings, clock: FakeClock) -> JoseTokenCodec:
    return JoseTokenCodec.from_settings(settings, clock=clock)


@pytest.fixture
def db(tmp_path) -> Generator[Database, None, None]:
    database = Database(f"sqlite:///{tmp_path / 'auth.db'}")
    yield database
    database.close()


@pytest.fixture
def users() -> UserStore:
    return UserStore()


@pytest.fixture
def refresh_tokens() -> RefreshTokenStore:
    return RefreshTokenStore()


@pytest.fixture
def service(
    hasher: BcryptPasswordHasher,
    codec: JoseTokenCodec,
    users: UserStore,
    refresh_tokens: RefreshTokenStore,
) -> AuthService:
    return AuthService(hasher, codec, users, refresh_tokens)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(db: Database, codec: JoseTokenCodec, service: AuthService, users, refresh_tokens):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated database and the test clock. The purge_task is a long-sleeping
    coroutine (a real asyncio.Task is required; MagicMock would fail on
    .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.db = db
        app.state.codec = codec
        app.state.user_store = users
        app.state.refresh_token_store = refresh_tokens
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(db, codec, service, users, refresh_tokens) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with test stores and clock."""
    app.router.lifespan_context = _patch_lifespan(db, codec, service, users, refresh_tokens)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
