"""
tests/conftest.py -- Shared test fixtures for RoleGate.

This module provides:
  - make_stores(): isolated named in-memory credential store + seeded roles
  - make_service(): CredentialService wired the same way api.main does it
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient + admin/user tokens for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment variables below must be set before any api/core import:
DEBUG lets get_settings() generate a SECRET_KEY, "testserver" is the Host
header TestClient sends, and a low bcrypt cost keeps the suite fast.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, install_auth
from auth.bootstrap import seed_roles
from auth.models import Role
from auth.passwords import PasswordHasher
from auth.resolver import IdentityResolver
from auth.service import CredentialService
from auth.store import AccountStore, RoleStore
from auth.tickets import ResetTicketStore
from auth.tokens import TokenCodec
from core.config import get_settings

TEST_SECRET = "s" * 48
ADMIN_PASSWORD = "Admin123!"
USER_PASSWORD = "User1234!"


# ---------------------------------------------------------------------------
# Store / service helpers
# ---------------------------------------------------------------------------


def make_stores() -> tuple[AccountStore, RoleStore]:
    """Create an isolated named shared-memory store with the roles table seeded."""
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    accounts = AccountStore(url)
    roles = RoleStore(accounts.engine)
    seed_roles(roles)
    return accounts, roles


def make_service(
    accounts: AccountStore,
    roles: RoleStore,
    codec: TokenCodec | None = None,
    tickets: ResetTicketStore | None = None,
) -> CredentialService:
    return CredentialService(
        accounts,
        roles,
        PasswordHasher(rounds=4),
        codec if codec is not None else TokenCodec(TEST_SECRET, 3600),
        IdentityResolver(accounts),
        tickets if tickets is not None else ResetTicketStore(),
    )


class FakeClock:
    """Manually advanced clock for TTL and expiry tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def stores() -> Generator[tuple[AccountStore, RoleStore], None, None]:
    accounts, roles = make_stores()
    yield accounts, roles
    accounts.close()


@pytest.fixture()
def service(stores) -> CredentialService:
    accounts, roles = stores
    return make_service(accounts, roles)


@pytest.fixture()
def service_factory(stores):
    """Build a CredentialService on the test store with a custom codec or ticket store."""
    accounts, roles = stores

    def factory(codec: TokenCodec | None = None, tickets: ResetTicketStore | None = None) -> CredentialService:
        return make_service(accounts, roles, codec, tickets)

    return factory


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(accounts: AccountStore, roles: RoleStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine; a real asyncio.Task is
    required because shutdown calls .cancel() on it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_auth(app, accounts, roles, get_settings())
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    accounts: AccountStore
    admin_token: str
    user_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real middleware and route handlers against an isolated store. One
    ADMIN (root) and one USER (alice) exist before the client starts.
    """
    accounts, roles = make_stores()
    app.router.lifespan_context = _patch_lifespan(accounts, roles)
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        service: CredentialService = app.state.credential_service
        service.create_account("root", "root@example.com", ADMIN_PASSWORD, Role.ADMIN)
        service.create_account("alice", "alice@example.com", USER_PASSWORD, Role.USER)
        admin_token = service.authenticate("root", ADMIN_PASSWORD).token
        user_token = service.authenticate("alice", USER_PASSWORD).token
        yield ApiContext(client, accounts, admin_token, user_token)

    accounts.close()
