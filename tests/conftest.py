"""
tests/conftest.py -- Shared test fixtures for RoleGate.

This module provides:
  - store / resolver: an isolated in-memory IdentityStore per test
  - _patch_lifespan(): wires test objects into app.state, bypassing real startup
  - api_client: TestClient over the real FastAPI app with the sample accounts
    plus a disabled account seeded

Design: the HTTP fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync dependencies in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import:
get_settings() is cached on first call and auth.hashing reads the cost
factor at module load. Cost 4 keeps the suite fast.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.hashing import hash_secret
from auth.policy import DEFAULT_POLICY, AccessPolicy
from auth.resolver import PrincipalResolver
from auth.seed import SAMPLE_ACCOUNTS, seed_identities
from auth.store import IdentityStore

# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    """Fresh in-memory IdentityStore, empty."""
    s = IdentityStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def resolver(store: IdentityStore) -> PrincipalResolver:
    return PrincipalResolver(store)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: IdentityStore, policy: AccessPolicy):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-seeded test store into app.state so routes see an isolated
    database rather than the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.resolver = PrincipalResolver(store)
        app.state.policy = policy
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, IdentityStore], None, None]:
    """Yield (client, store) with user/password, admin/admin and a disabled account.

    The disabled account "ghost" has password "ghostpass" and ROLE_ADMIN, so
    any 200 for it would be a real bug, not a missing role.
    """
    store = IdentityStore("sqlite:///file:test_rolegate_api?mode=memory&cache=shared&uri=true")
    seed_identities(store, SAMPLE_ACCOUNTS)
    store.upsert_user_with_roles("ghost", hash_secret("ghostpass"), False, ["ROLE_ADMIN"])

    app.router.lifespan_context = _patch_lifespan(store, DEFAULT_POLICY)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store

    store.close()
