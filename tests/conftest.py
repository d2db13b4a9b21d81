"""
tests/conftest.py -- Shared test fixtures for the helpdesk auth tests.

This module provides:
  - settings / token_service / hasher / cache / user_store: unit-level objects
  - make_user(): insert a user with a known password into a UserStore
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Async test functions are run by the pytest_pyfunc_call hook below, so no
asyncio plugin is needed.

JWT secrets must be in the environment before api.main is imported:
get_settings() is read at import time for the CORS origins.
"""

from __future__ import annotations

import asyncio
import inspect
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789-abcdefghijkl")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-9876543210-zyxwvutsrq")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from api.limiter import limiter  # noqa: E402
from api.main import app, wire_services  # noqa: E402
from auth.models import Role, User  # noqa: E402
from auth.passwords import PasswordHasher  # noqa: E402
from auth.revocation import RevocationStore  # noqa: E402
from auth.store import UserStore  # noqa: E402
from auth.tokens import TokenService  # noqa: E402
from cache.store import CacheUnavailableError, MemoryCacheStore  # noqa: E402
from core.config import Settings  # noqa: E402

ACCESS_SECRET = "unit-access-secret-abcdefghijklmnopqrstuvwxyz"
REFRESH_SECRET = "unit-refresh-secret-zyxwvutsrqponmlkjihgfedcba"

# Low iteration count keeps route tests fast; digests still carry their count.
FAST_ITERATIONS = 1_000

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Adm1n!Passw0rd-x"
TECH_EMAIL = "tech@example.com"
TECH_PASSWORD = "T3ch!Secure-pass"


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


class BrokenCache:
    """CacheStore whose backend is always unreachable."""

    async def get(self, key):
        raise CacheUnavailableError("connection refused")

    async def set(self, key, value, ttl):
        raise CacheUnavailableError("connection refused")

    async def ping(self):
        return False

    async def close(self):
        return None


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret": ACCESS_SECRET,
        "jwt_refresh_secret": REFRESH_SECRET,
        "jwt_expiration": "8h",
        "jwt_refresh_expiration": "7d",
        "database_url": _memory_db_url("settings"),
    }
    values.update(overrides)
    return Settings(**values)


def _memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:test_{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_user(
    store: UserStore,
    hasher: PasswordHasher,
    email: str,
    password: str,
    role: Role = Role.USUARIO,
    **fields,
) -> User:
    user = User(email=email, role=role.value, name=email.split("@")[0], hashed_password=hasher.hash(password), **fields)
    user.id = store.create_user(user)
    return user


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def token_service(settings: Settings) -> TokenService:
    return TokenService(settings)


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(iterations=FAST_ITERATIONS)


@pytest.fixture
def cache() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=_memory_db_url("users"))
    yield store
    store.close()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    user_store: UserStore
    cache: MemoryCacheStore
    hasher: PasswordHasher
    settings: Settings
    admin: User
    tech: User

    def login(self, email: str, password: str):
        return self.client.post("/api/v1/auth/login", json={"email": email, "password": password})

    def bearer(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def break_blacklist(self, fail_open: bool) -> None:
        """Point the gate and the service at a blacklist whose cache is down."""
        revocation = RevocationStore(BrokenCache(), fail_open=fail_open)
        state = self.client.app.state
        state.revocation = revocation
        state.auth_gate.revocation = revocation
        state.auth_service.revocation = revocation


def _patch_lifespan(settings: Settings, cache: MemoryCacheStore, user_store: UserStore, hasher: PasswordHasher):
    """Return a lifespan that wires test stores into app.state.

    Uses the same wire_services() as production so routes see the real
    object graph, only over isolated in-memory backends.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, settings, cache, user_store, hasher=hasher)
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext with an ADMIN and a TECNICO user already created.

    Function-scoped: the login throttle and the blacklist live in the cache,
    so every test starts from a clean cache and a clean user table.
    """
    settings = make_settings(database_url=_memory_db_url("api"))
    cache = MemoryCacheStore()
    hasher = PasswordHasher(iterations=FAST_ITERATIONS)
    user_store = UserStore(db_url=settings.database_url)

    admin = make_user(user_store, hasher, ADMIN_EMAIL, ADMIN_PASSWORD, Role.ADMIN)
    tech = make_user(user_store, hasher, TECH_EMAIL, TECH_PASSWORD, Role.TECNICO)

    app.router.lifespan_context = _patch_lifespan(settings, cache, user_store, hasher)
    # Per-IP limit would trip during lockout tests; LoginThrottle is under test instead.
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            user_store=user_store,
            cache=cache,
            hasher=hasher,
            settings=settings,
            admin=admin,
            tech=tech,
        )

    limiter.enabled = True
    user_store.close()
