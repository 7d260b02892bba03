"""
tests/conftest.py -- Shared test fixtures for Shelfnote.

This module provides:
  - make_stores(): isolated in-memory library store, identity adapter and
    session manager sharing one database
  - stores: function-scoped Stores for unit tests
  - api_client / web_client: module-scoped TestClients wired to isolated
    stores through a patched lifespan
  - Harness helpers that create users and issue session tokens directly
    through the session manager

Named shared-memory SQLite URIs (not plain :memory:) are required because the
library store and the session manager open separate engines, and TestClient
runs sync handlers in a thread pool. Plain :memory: databases are
per-connection and would each present a blank schema.

DEBUG must be set before any auth/core import so get_settings() generates a
SECRET_KEY instead of raising. BCRYPT_ROUNDS is lowered to keep the suite fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from unittest.mock import MagicMock

# Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.sessions import SessionManager
from auth.store import IdentityStore
from auth.tokens import SESSION_COOKIE, hash_password
from library.store import LibraryStore

# Rate limits would trip on the number of logins a test module performs.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@dataclass
class Stores:
    db_url: str
    library: LibraryStore
    identities: IdentityStore
    sessions: SessionManager

    def session_manager(self, clock: Callable[[], datetime]) -> SessionManager:
        """A second manager on the same database with its own clock."""
        return SessionManager(self.identities, db_url=self.db_url, clock=clock)

    def close(self) -> None:
        self.sessions.close()
        self.library.close()


def make_stores(db_suffix: str) -> Stores:
    """Create isolated stores on a named shared-memory database.

    A random suffix keeps function-scoped fixtures from seeing each other's
    rows.
    """
    db_url = f"sqlite:///file:test_{db_suffix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    library = LibraryStore(db_url=db_url)
    identities = IdentityStore(library)
    sessions = SessionManager(identities, db_url=db_url)
    return Stores(db_url=db_url, library=library, identities=identities, sessions=sessions)


def _patch_lifespan(stores: Stores):
    """Return a lifespan that wires the test stores into app.state.

    The OAuth registry is mocked so no test can reach a real provider.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.library = stores.library
        app.state.identities = stores.identities
        app.state.sessions = stores.sessions
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[Stores, None, None]:
    s = make_stores("unit")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Integration fixtures -- one TestClient per test module
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    stores: Stores

    def add_user(self, username: str, password: str, name: str = "") -> int:
        user = self.stores.identities.create(name or username.title(), username, hash_password(password))
        return user.id

    def token_for(self, username: str) -> str:
        """Issue a session token directly through the session manager."""
        user = self.stores.identities.find_by_username(username)
        _session, token = self.stores.sessions.login(user)
        return token

    def cookies(self, token: str) -> dict[str, str]:
        return {SESSION_COOKIE: token}


@pytest.fixture(scope="module")
def api_client() -> Generator[Harness, None, None]:
    """Harness for /api/v1 tests. Pre-creates user "testreader" / "testpass123"."""
    stores = make_stores("api")
    app.router.lifespan_context = _patch_lifespan(stores)
    with TestClient(app, raise_server_exceptions=True) as client:
        harness = Harness(client=client, stores=stores)
        harness.add_user("testreader", "testpass123", name="Test Reader")
        yield harness
    stores.close()


@pytest.fixture(scope="module")
def web_client() -> Generator[Harness, None, None]:
    """Harness for HTML route tests.

    follow_redirects=False is essential: the tests assert on redirect
    locations, which disappear once the client follows them.
    """
    stores = make_stores("web")
    app.router.lifespan_context = _patch_lifespan(stores)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Harness(client=client, stores=stores)
    stores.close()
