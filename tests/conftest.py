"""
tests/conftest.py -- Shared test fixtures for the Inkwell auth tests.

This module provides:
  - FakeClock: a settable UTC clock for codec/store expiry tests
  - make_settings(): Settings for tests (debug, fixed key, bcrypt rounds=4)
  - component fixtures: user_store, refresh_store, codec, token_service, auth_service
  - api_client / limited_client: TestClient with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture gets its own name so tests never see each other's rows.

DEBUG must be set before any api/core import: api/main.py reads
get_settings() at import time for the CORS origins and allowed hosts.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
# TestClient sends "Host: testserver".
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, close_app_state, wire_app_state
from auth.passwords import PasswordHasher
from auth.refresh_store import RefreshTokenStore
from auth.service import AuthService
from auth.store import UserStore
from auth.token_service import TokenService
from auth.tokens import TokenCodec
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def memory_db_url(prefix: str = "auth") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "database_url": memory_db_url(),
        "bcrypt_rounds": 4,
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_url() -> str:
    return memory_db_url()


@pytest.fixture
def user_store(db_url: str) -> Generator[UserStore, None, None]:
    store = UserStore(db_url=db_url)
    yield store
    store.close()


@pytest.fixture
def refresh_store(db_url: str, clock: FakeClock) -> Generator[RefreshTokenStore, None, None]:
    store = RefreshTokenStore(db_url, secret_key=TEST_SECRET, ttl_seconds=3600, clock=clock)
    yield store
    store.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, ttl_seconds=900, clock=clock)


@pytest.fixture
def token_service(codec: TokenCodec, refresh_store: RefreshTokenStore, user_store: UserStore) -> TokenService:
    return TokenService(codec, refresh_store, user_store)


@pytest.fixture
def auth_service(user_store: UserStore, hasher: PasswordHasher, token_service: TokenService) -> AuthService:
    return AuthService(user_store, hasher, token_service)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    Wires components built from the given test Settings into app.state.
    The purge_task is a long-sleeping coroutine (a real asyncio.Task is
    required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_app_state(app, settings)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        close_app_state(app)

    return test_lifespan


def _client(settings: Settings) -> Generator[TestClient, None, None]:
    app.router.lifespan_context = _patch_lifespan(settings)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def api_client() -> Generator[TestClient, None, None]:
    """TestClient with rate limiting off and a fresh database."""
    yield from _client(make_settings())


@pytest.fixture
def limited_client() -> Generator[TestClient, None, None]:
    """TestClient with the default rate limits switched on."""
    yield from _client(make_settings(rate_limit_enabled=True))


def register_and_login(
    client: TestClient,
    username: str = "alice",
    email: str = "a@x.com",
    password: str = "pw12345678",
) -> dict:
    """Register an account and return the login response body."""
    resp = client.post("/api/v1/auth/register", json={"username": username, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
