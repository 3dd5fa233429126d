"""
tests/conftest.py -- Shared test fixtures for localauth.

This module provides:
  - store / hasher / lifecycle: a fresh in-memory credential stack per test
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

BCRYPT_ROUNDS must be set before any core/api import so get_settings()
picks up the minimum cost factor and bcrypt stays fast under test.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.hashing import PasswordHasher
from auth.lifecycle import CredentialLifecycle
from auth.store import CredentialStore
from auth.tokens import TokenIssuer

# ---------------------------------------------------------------------------
# Core fixtures -- one isolated in-memory database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def lifecycle(store: CredentialStore, hasher: PasswordHasher) -> CredentialLifecycle:
    return CredentialLifecycle(store, hasher, TokenIssuer())


class FixedTokenIssuer(TokenIssuer):
    """Issues the same token every time, forcing an access_token collision
    on the second credential write."""

    def issue(self) -> str:
        return "fixed-token-" + "x" * 52


@pytest.fixture
def fixed_token_issuer() -> FixedTokenIssuer:
    return FixedTokenIssuer()


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, lifecycle: CredentialLifecycle):
    """Return an async context manager that replaces the real lifespan,
    wiring the pre-built test store into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.lifecycle = lifecycle
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by an isolated shared-memory credential store.

    Module-scoped for speed: tests in one module share the database, so each
    test registers its own uniquely named accounts.
    """
    test_store = CredentialStore("sqlite:///file:test_localauth_api?mode=memory&cache=shared&uri=true")
    test_lifecycle = CredentialLifecycle(test_store, PasswordHasher(rounds=4), TokenIssuer())

    app.router.lifespan_context = _patch_lifespan(test_store, test_lifecycle)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    test_store.close()
