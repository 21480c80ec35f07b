"""
tests/conftest.py -- Shared test fixtures for the platform's test suite.

This module provides:
  - make_documents(): an isolated in-memory DocumentStore per caller
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - documents: function-scoped DocumentStore for repository tests
  - file_documents / race: a file-backed store plus a two-thread runner that
    lines both threads up after the same read, for upsert race tests
  - api_ctx: TestClient plus one seeded user (and access token) per role

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG and RATE_LIMIT_ENABLED must be set before any core/auth import so
get_settings() auto-generates signing keys and the limiter starts disabled.
"""

from __future__ import annotations

import os
import threading
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set env before any core/auth import so get_settings() sees it.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, attach_stores
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.documents import Collection, DocumentStore
from tracker.models import Application, Team
from tracker.store import ApplicationStore, TeamStore

TEST_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_documents(db_suffix: str) -> DocumentStore:
    """Create an isolated named shared-memory DocumentStore.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   (and individual tests) never share state.
    """
    return DocumentStore(f"sqlite:///file:test_docs_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(documents: DocumentStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test DocumentStore into app.state so TestClient
    routes see an isolated database rather than the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_stores(app, documents)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def documents() -> Generator[DocumentStore, None, None]:
    """Fresh empty DocumentStore for a single test."""
    docs = make_documents(uuid.uuid4().hex[:12])
    yield docs
    docs.close()


@pytest.fixture
def file_documents(tmp_path) -> Generator[DocumentStore, None, None]:
    """DocumentStore on a SQLite file, so each thread gets its own connection."""
    docs = DocumentStore(f"sqlite:///{tmp_path / 'docs.db'}")
    yield docs
    docs.close()


@pytest.fixture
def race(monkeypatch):
    """Run callables in threads that meet after their Nth Collection._load.

    Both threads have then read the same state before either writes, which is
    the interleaving behind read-then-insert races. Returns (results, errors).
    """

    def run(on_load: int, *targets):
        barrier = threading.Barrier(len(targets))
        calls = threading.local()
        original = Collection._load

        def load(self, conn, filter):
            found = original(self, conn, filter)
            calls.count = getattr(calls, "count", 0) + 1
            if calls.count == on_load:
                barrier.wait(timeout=10)
            return found

        monkeypatch.setattr(Collection, "_load", load)
        results, errors = [], []

        def call(target):
            try:
                results.append(target())
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=call, args=(t,)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        monkeypatch.setattr(Collection, "_load", original)
        return results, errors

    return run


@dataclass
class ApiContext:
    """Everything an API test needs: the client and the seeded identities.

    users/tokens are keyed by label: admin, security, dev, dev_other, po.
    dev and po belong to team_a; dev_other belongs to team_b.
    app_a is owned by team_a and app_b by team_b.
    """

    client: TestClient
    documents: DocumentStore
    users: dict[str, User] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)
    team_a: str = ""
    team_b: str = ""
    app_a: str = ""
    app_b: str = ""

    def auth(self, who: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[who]}"}


def _seed_identities(documents: DocumentStore, ctx: ApiContext) -> None:
    teams = TeamStore(documents)
    apps = ApplicationStore(documents)
    team_a = teams.create(Team(name="Web Team", platform="Web"))
    team_b = teams.create(Team(name="iOS Team", platform="iOS"))
    app_a = apps.create(Application(name="Customer Portal", platform="Web", team_id=team_a.id))
    app_b = apps.create(Application(name="iOS Banking", platform="iOS", team_id=team_b.id))
    teams.update(team_a.id, {"application_ids": [app_a.id]})
    teams.update(team_b.id, {"application_ids": [app_b.id]})
    ctx.team_a, ctx.team_b, ctx.app_a, ctx.app_b = team_a.id, team_b.id, app_a.id, app_b.id

    password_hash = hash_password(TEST_PASSWORD)
    user_store = UserStore(documents)
    for label, role, team_ids in (
        ("admin", "Admin", []),
        ("security", "Security", []),
        ("dev", "Dev", [team_a.id]),
        ("dev_other", "Dev", [team_b.id]),
        ("po", "ProductOwner", [team_a.id]),
    ):
        user = User(
            email=f"{label}@example.com",
            name=label.replace("_", " ").title(),
            role=role,
            team_ids=team_ids,
            password_hash=password_hash,
        )
        user_store.create_user(user)
        ctx.users[label] = user
        ctx.tokens[label] = create_access_token(user, expire_seconds=3600)


@pytest.fixture(scope="module")
def api_ctx() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers against an isolated in-memory store.
    """
    documents = make_documents(f"api_{uuid.uuid4().hex[:8]}")
    app.router.lifespan_context = _patch_lifespan(documents)

    with TestClient(app, raise_server_exceptions=True) as client:
        ctx = ApiContext(client=client, documents=documents)
        _seed_identities(documents, ctx)
        yield ctx

    documents.close()
