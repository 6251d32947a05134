"""
tests/conftest.py -- Shared test fixtures for Connect integration tests.

This module provides:
  - _make_user_store(): creates an isolated in-memory DB for user accounts
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus a pre-created user and a valid JWT for that user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any auth/core import:
  DEBUG=true              -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4         -- bcrypt's minimum cost; keeps the suite fast
  RATE_LIMIT_ENABLED=false -- slowapi would otherwise throttle repeated registers
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import -- settings are read at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.attempts import InMemoryAttemptStore
from auth.governor import LoginAttemptGovernor
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import create_access_token

# Host header must pass TrustedHostMiddleware (localhost is in the default list).
BASE_URL = "http://localhost"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_user_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite user store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true")


def fresh_governor(max_attempts: int = 5, window: float = 900) -> LoginAttemptGovernor:
    return LoginAttemptGovernor(InMemoryAttemptStore(), max_attempts=max_attempts, window=window)


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine standing in for the real
    sweep loop (a real asyncio.Task is required for .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.login_governor = fresh_governor()
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The user "testmember" / "testpass123" exists before the client starts.
    """
    user_store = _make_user_store("api")
    uid = user_store.create_user(
        User(
            username="testmember",
            hashed_password=hash_password("testpass123"),
            display_name="Test Member",
        )
    )
    token = create_access_token(uid)

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, base_url=BASE_URL, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()


@pytest.fixture(autouse=True)
def _reset_governor(request) -> None:
    """Give every API test a clean attempt table.

    TestClient always reports the same client address ("testclient"), so one
    test's failed logins would otherwise lock out the next test.
    """
    if "api_client" in request.fixturenames:
        client, _token, _uid = request.getfixturevalue("api_client")
        client.app.state.login_governor = fresh_governor()
