"""
tests/conftest.py -- Shared test fixtures for AccountGate.

This module provides:
  - FrozenClock: a controllable clock for TokenIssuer (no sleeping in tests)
  - account_store / refresh_store / issuer / service: unit-level components
    on private in-memory SQLite databases
  - file_stores: both stores on one SQLite file, for threaded tests
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG and RATE_LIMIT_ENABLED must be set before any api/core import so
get_settings() auto-generates SECRET_KEY and the limiter is built disabled.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any api/core import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.store import AccountStore, RefreshTokenStore
from auth.tokens import TokenIssuer

TEST_SECRET = "test-signing-key-0123456789abcdef0123456789abcdef"
TEST_TTL = 900


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture
def issuer(clock: FrozenClock, secret_key: str) -> TokenIssuer:
    return TokenIssuer(secret_key=secret_key, ttl_seconds=TEST_TTL, clock=clock)


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    store = AccountStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def refresh_store() -> Generator[RefreshTokenStore, None, None]:
    store = RefreshTokenStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def service(account_store: AccountStore, issuer: TokenIssuer, refresh_store: RefreshTokenStore) -> AuthService:
    return AuthService(account_store, issuer, refresh_store)


@pytest.fixture
def file_stores(tmp_path) -> Generator[tuple[AccountStore, RefreshTokenStore], None, None]:
    """Both stores on one SQLite file. Safe to hit from many threads at once."""
    db_url = f"sqlite:///{tmp_path / 'accountgate_test.db'}"
    accounts = AccountStore(db_url)
    refresh_tokens = RefreshTokenStore(db_url)
    yield accounts, refresh_tokens
    accounts.close()
    refresh_tokens.close()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service and its collaborators into app.state so
    TestClient routes see isolated test DBs and a known signing key.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = service.accounts
        app.state.refresh_store = service.refresh_tokens
        app.state.token_issuer = service.issuer
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for API integration tests.

    One TestClient per test module for speed; the DB name is derived from the
    module so modules never share accounts. Tests use distinct emails.
    """
    suffix = request.module.__name__.replace(".", "_")
    accounts = AccountStore(f"sqlite:///file:test_accounts_{suffix}?mode=memory&cache=shared&uri=true")
    refresh_tokens = RefreshTokenStore(f"sqlite:///file:test_refresh_{suffix}?mode=memory&cache=shared&uri=true")
    issuer = TokenIssuer(secret_key=TEST_SECRET, ttl_seconds=TEST_TTL)
    service = AuthService(accounts, issuer, refresh_tokens)

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    accounts.close()
    refresh_tokens.close()
