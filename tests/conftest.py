"""
tests/conftest.py -- Shared test fixtures for tokengate tests.

This module provides:
  - FakeClock: injectable clock so expiry tests move time without sleeping
  - store: SQLStore on a throwaway SQLite file under tmp_path
  - service: AuthService on that store, driven by the fake clock
  - alice: a registered user with a known password
  - api_client: TestClient with a patched lifespan and a seeded user

Design: each test gets its own database file rather than a shared in-memory
URI. aiosqlite connections belong to the event loop that opened them, and
pytest-asyncio gives every test a fresh loop.

Environment variables must be set before any auth/core/api import:
get_settings() is cached at first call, passwords.py hashes its timing dummy
at import time, and api/limiter.py reads the login limit at import time.
BCRYPT_ROUNDS=4 keeps hashing fast.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("OAUTH_CLIENTS", '{"alexa": "alexa-secret", "tv": "tv-secret"}')
os.environ.setdefault("OAUTH_REDIRECT_URIS", '{"alexa": ["https://alexa.example/callback"], "tv": ["https://tv.example/callback"]}')

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import User
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import SQLStore
from core.config import get_settings

ALICE_EMAIL = "alice@example.com"
ALICE_USERNAME = "alice"
ALICE_PASSWORD = "correct horse battery staple"


class FakeClock:
    """Callable clock that only moves when a test tells it to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'tokengate_test.db'}"


# ---------------------------------------------------------------------------
# Engine-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path):
    """An SQLStore with the schema created, disposed after the test."""
    sql_store = await SQLStore.connect(_db_url(tmp_path))
    yield sql_store
    await sql_store.close()


@pytest.fixture
def service(store, clock) -> AuthService:
    return AuthService(store, store, settings=get_settings(), clock=clock)


@pytest_asyncio.fixture
async def alice(store, clock) -> User:
    """A user inserted straight into the store, bypassing registration rules."""
    user = User(
        email=ALICE_EMAIL,
        username=ALICE_USERNAME,
        password_hash=hash_password(ALICE_PASSWORD),
        birthdate=date(1990, 5, 17),
        created=clock(),
    )
    user.id = await store.insert_user(user)
    return user


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str):
    """Return an async context manager that replaces the real lifespan.

    The store is opened inside the TestClient's event loop, and Alice is
    registered through the service so the API tests can log in as her.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = await SQLStore.connect(db_url)
        app.state.auth_service = AuthService(app.state.store, app.state.store)
        await app.state.auth_service.register_user(
            ALICE_EMAIL, ALICE_USERNAME, ALICE_PASSWORD, date(1990, 5, 17)
        )
        yield
        await app.state.store.close()

    return test_lifespan


@pytest.fixture
def api_client(tmp_path) -> Generator[TestClient, None, None]:
    """Yield a TestClient against the real app with an isolated database.

    follow_redirects=False so OAuth tests can assert on the 303 Location
    header. The rate limiter's counters are reset so login-heavy tests do
    not trip the limit set up by an earlier test.
    """
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(_db_url(tmp_path))

    with TestClient(app, follow_redirects=False, raise_server_exceptions=False) as client:
        yield client
