"""
tests/conftest.py -- Shared test fixtures for portal gateway tests.

This module provides:
  - make_documents(): isolated in-memory document store per test module
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - tokens: one local session credential per role
  - api_client: TestClient over the real app with seeded test updates

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import: get_settings() is read
once and cached, and auth.tokens hashes ADMIN_PASSWORD at import time.
"""

from __future__ import annotations

import asyncio
import copy
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ADMIN_PASSWORD", "test-admin-password")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("TOOL_URLS", '{"notion": "https://notion.example.com/sso?team=core"}')

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_state
from auth.models import Role
from auth.tokens import create_session_token
from cache.store import IntegrationCache
from core.config import get_settings
from portal.documents import DocumentStore
from portal.seed import UPDATES_KEY

TEST_UPDATES: list[dict] = [
    {
        "id": "u1",
        "title": "Internal staffing plan",
        "content": "Associate-only planning notes.",
        "date": "2024-01-10",
        "type": "decision",
        "confidence": "high",
        "visibility": "associate",
        "priority": "high",
        "author": "Admin",
        "tags": ["Staffing"],
        "comments": [],
    },
    {
        "id": "u2",
        "title": "Client kickoff complete",
        "content": "Kickoff workshop held with the client team.",
        "date": "2024-01-11",
        "type": "progress",
        "confidence": "medium",
        "visibility": "client",
        "priority": "medium",
        "author": "Sunyata",
        "tags": ["Milestone"],
        "comments": [],
    },
    {
        "id": "u3",
        "title": "Migration risk review",
        "content": "Shared risk log for the data migration.",
        "date": "2024-01-12",
        "type": "risk",
        "confidence": "low",
        "visibility": "both",
        "priority": "critical",
        "author": "SecOps",
        "tags": ["Migration"],
        "comments": [],
    },
]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_documents(db_suffix: str | None = None) -> DocumentStore:
    """Create an isolated named shared-memory document store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state. Random when omitted.
    """
    name = db_suffix or uuid.uuid4().hex[:12]
    return DocumentStore(f"sqlite:///file:test_docs_{name}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(documents: DocumentStore, cache: IntegrationCache):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, get_settings(), documents, cache)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def tokens() -> dict[str, str]:
    """One valid local credential per role, keyed by role name."""
    return {
        "client": create_session_token("client-user", Role.client),
        "associate": create_session_token("associate-user", Role.associate),
        "admin": create_session_token("Sunyata", Role.admin),
    }


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with isolated stores.

    UPDATES_LIST is pre-seeded with TEST_UPDATES before startup, so the demo
    seed only fills in goals and the org matrix.
    """
    documents = make_documents(request.module.__name__.rsplit(".", 1)[-1])
    documents.seed(UPDATES_KEY, TEST_UPDATES)
    cache = IntegrationCache(":memory:")

    app.router.lifespan_context = _patch_lifespan(documents, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    cache.close()
    documents.close()


@pytest.fixture()
def documents() -> Generator[DocumentStore, None, None]:
    """A fresh, empty document store for one test."""
    store = make_documents()
    yield store
    store.close()


@pytest.fixture()
def test_updates() -> list[dict]:
    return copy.deepcopy(TEST_UPDATES)
