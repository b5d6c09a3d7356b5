"""
tests/conftest.py -- Shared test fixtures for DevScripts integration tests.

This module provides:
  - make_test_stores(): isolated in-memory DBs for users + marketplace
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - stores / client: a fresh database and TestClient per test
  - create_account(), login(): helpers for putting principals in place

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The name carries a uuid so no two tests share rows.

DEBUG must be set before any core/auth import so get_settings()
auto-generates SECRET_KEY instead of raising ValueError. LOGIN_RATE_LIMIT
is raised so the suite's many logins do not trip the limiter.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any core/auth import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.credentials import register_user
from auth.models import Role, User
from auth.sessions import MemorySessionStore, SessionManager
from auth.store import UserStore
from core.config import get_settings
from market.store import MarketStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@dataclass
class TestStores:
    __test__ = False  # not a test class, despite the name

    user_store: UserStore
    market_store: MarketStore
    session_manager: SessionManager


def make_test_stores(db_suffix: str) -> TestStores:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so tests don't
                   share state.
    """
    url = f"sqlite:///file:test_devscripts_{db_suffix}?mode=memory&cache=shared&uri=true"
    settings = get_settings()
    return TestStores(
        user_store=UserStore(db_url=url),
        market_store=MarketStore(db_url=url),
        session_manager=SessionManager(
            MemorySessionStore(),
            secret_key=settings.secret_key,
            max_age_seconds=settings.session_max_age_seconds,
        ),
    )


def _patch_lifespan(stores: TestStores):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine: a real asyncio.Task is
    required because shutdown calls .cancel() on it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = stores.user_store
        app.state.market_store = stores.market_store
        app.state.session_manager = stores.session_manager
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Principal helpers
# ---------------------------------------------------------------------------


def create_account(user_store: UserStore, username: str, password: str = "secret1", role: Role = Role.user) -> User:
    """Insert a principal directly, bypassing the HTTP layer."""
    return register_user(user_store, username, password, role=role)


def login(client: TestClient, username: str, password: str = "secret1"):
    """POST /api/login; the client's cookie jar keeps the session on success."""
    return client.post("/api/login", json={"username": username, "password": password})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def stores() -> Generator[TestStores, None, None]:
    test_stores = make_test_stores(uuid.uuid4().hex)
    yield test_stores
    test_stores.user_store.close()
    test_stores.market_store.close()


@pytest.fixture()
def client(stores: TestStores) -> Generator[TestClient, None, None]:
    """TestClient against the real app with isolated stores.

    follow_redirects=False so affiliate tests can assert on the 302 itself.
    """
    app.router.lifespan_context = _patch_lifespan(stores)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture()
def admin_client(client: TestClient, stores: TestStores) -> TestClient:
    """The client, logged in as an admin named 'root'."""
    create_account(stores.user_store, "root", "rootpass1", Role.admin)
    assert login(client, "root", "rootpass1").status_code == 200
    return client


@pytest.fixture()
def moderator_client(client: TestClient, stores: TestStores) -> TestClient:
    """The client, logged in as a moderator named 'mod'."""
    create_account(stores.user_store, "mod", "modpass1", Role.moderator)
    assert login(client, "mod", "modpass1").status_code == 200
    return client
