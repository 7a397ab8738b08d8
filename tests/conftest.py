"""
tests/conftest.py -- Shared test fixtures for Gatehouse unit and integration tests.

This module provides:
  - make_settings(): a valid Settings instance with fixed test secrets
  - make_services(): a full engine over an isolated in-memory DB
  - services / directory: function-scoped engine for unit tests
  - file_services / client_for: an on-disk store and a TestClient over any Services
  - api_client: TestClient with an ADMIN bearer token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/ import so get_settings()
auto-generates JWT_SECRET and HASH_SALT in dev mode rather than raising.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import ExitStack, asynccontextmanager

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# The login limit is shared by every test module in the session.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, install_services
from auth import bootstrap
from auth.bootstrap import ADMIN_ROLE
from auth.directory import IdentityDirectory
from auth.passwords import HashCost
from auth.services import Services, build_services
from auth.store import DirectoryStore
from core.config import Settings

TEST_JWT_SECRET = "test-secret-" + "x" * 40
TEST_HASH_SALT = "test-salt"

# argon2id at its minimum cost keeps the suite fast. Production uses DEFAULT_COST.
TEST_HASH_COST = HashCost(time_cost=1, memory_cost=8, parallelism=1)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "jwt_secret": TEST_JWT_SECRET,
        "hash_salt": TEST_HASH_SALT,
        "generate_default_user": False,
    }
    values.update(overrides)
    return Settings(**values)


def memory_db_url(db_suffix: str) -> str:
    return f"sqlite:///file:test_gatehouse_{db_suffix}?mode=memory&cache=shared&uri=true"


def make_services(db_suffix: str | None = None, **overrides) -> Services:
    """Build every component over an isolated named in-memory store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules don't
                   share state. A random one is used when omitted.
        overrides: Settings fields to change, e.g. audit_enabled=True.
    """
    settings = make_settings(**overrides)
    store = DirectoryStore(memory_db_url(db_suffix or uuid.uuid4().hex))
    return build_services(settings, store=store, hash_cost=TEST_HASH_COST)


def _patch_lifespan(services: Services):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test services into app.state so TestClient routes see
    the isolated test DB rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, services)
        yield

    return test_lifespan


class FakeClock:
    """Callable clock for TokenService / AuditTrail. Advance it by assigning .now."""

    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_700_000_000)


@pytest.fixture
def services_factory() -> Generator:
    """Call with Settings overrides to get an extra engine; closed at teardown."""
    built: list[Services] = []

    def _factory(**overrides) -> Services:
        svc = make_services(**overrides)
        built.append(svc)
        return svc

    yield _factory
    for svc in built:
        svc.close()


@pytest.fixture
def services() -> Generator[Services, None, None]:
    built = make_services()
    yield built
    built.close()


@pytest.fixture
def directory(services: Services) -> IdentityDirectory:
    return services.directory


@pytest.fixture
def file_services(tmp_path) -> Generator[Services, None, None]:
    """Services over an on-disk SQLite file in tmp_path/data.

    Deleting that folder after store.close() makes the database unreachable,
    which in-memory stores cannot simulate.
    """
    folder = tmp_path / "data"
    folder.mkdir()
    store = DirectoryStore(f"sqlite:///{folder / 'gatehouse.db'}", timeout_seconds=0.1)
    built = build_services(make_settings(), store=store, hash_cost=TEST_HASH_COST)
    yield built
    built.close()


@pytest.fixture
def client_for() -> Generator:
    """Call with a Services to get a TestClient wired to it; closed at teardown."""
    stack = ExitStack()

    def _client(services: Services) -> TestClient:
        app.router.lifespan_context = _patch_lifespan(services)
        return stack.enter_context(TestClient(app, raise_server_exceptions=True))

    yield _client
    stack.close()


@pytest.fixture
def seeded(services: Services) -> Services:
    """Services with the built-in permissions and roles already created."""
    bootstrap.initialize(services.directory, services.settings)
    return services


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    Built-ins are seeded and an ADMIN user (testadmin / testpass123) is
    created before the client starts.
    """
    services = make_services(request.module.__name__.rsplit(".", 1)[-1], audit_enabled=True)
    bootstrap.initialize(services.directory, services.settings)

    admin_role = services.directory.get_role_by_name(ADMIN_ROLE)
    admin = services.directory.create_user(
        "testadmin",
        "testadmin@example.com",
        "testpass123",
        roles=[admin_role.id],
    )
    token = services.tokens.issue(admin.id)

    app.router.lifespan_context = _patch_lifespan(services)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    services.close()
