"""
tests/conftest.py -- Shared test fixtures for DevGuild Access.

This module provides:
  - make_store(): isolated UserStore with the default roles seeded
  - make_verifier(): CredentialVerifier with fixed secrets and an injectable clock
  - _patch_lifespan(): wires a test store and engine into app.state
  - api: module-scoped TestClient plus one principal (and token) per role

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit tests that stay on one thread use plain :memory:.

DEBUG, LOGIN_RATE_LIMIT and ALLOWED_HOSTS must be set before any api/auth/core
import: get_settings() is cached on first call, and api.main reads it at
import time to configure middleware.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"
os.environ["ALLOWED_HOSTS"] = '["testserver", "localhost"]'
os.environ["SEED_ROLES_ON_STARTUP"] = "false"

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_engine
from auth.engine import AuthorizationEngine
from auth.models import Principal
from auth.roles import DEFAULT_ROLES
from auth.store import UserStore
from auth.tokens import CredentialVerifier, TokenConfig, hash_password

ACCESS_SECRET = "a" * 40
REFRESH_SECRET = "r" * 40
PASSWORD = "correct-horse-battery"

# Hashed once per session; bcrypt is slow.
PASSWORD_HASH = hash_password(PASSWORD)


# ---------------------------------------------------------------------------
# Unit-test helpers
# ---------------------------------------------------------------------------


class FixedClock:
    """Callable clock for CredentialVerifier; advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        from datetime import timedelta

        self.now = self.now + timedelta(seconds=seconds)


def make_verifier(
    clock: Callable[[], datetime] | None = None,
    access_secret: str = ACCESS_SECRET,
    refresh_secret: str = REFRESH_SECRET,
    access_expire: int = 3600,
    refresh_expire: int = 7 * 86400,
) -> CredentialVerifier:
    kwargs = {"clock": clock} if clock is not None else {}
    return CredentialVerifier(
        access=TokenConfig(access_secret, access_expire),
        refresh=TokenConfig(refresh_secret, refresh_expire),
        **kwargs,
    )


def make_store(db_url: str = "sqlite:///:memory:") -> UserStore:
    store = UserStore(db_url)
    store.seed_roles(DEFAULT_ROLES)
    return store


def add_principal(
    store: UserStore,
    email: str,
    role: str | None = None,
    is_active: bool = True,
    experience_level: str | None = None,
) -> Principal:
    """Create a principal holding the named role (None = no role) and return it."""
    role_id = store.get_role_by_name(role).id if role else None
    user_id = store.create_user(
        Principal(
            email=email,
            full_name=email.split("@")[0].title(),
            hashed_password=PASSWORD_HASH,
            role_id=role_id,
            experience_level=experience_level,
            is_active=is_active,
        )
    )
    return store.get_by_id(user_id)


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    store: UserStore
    engine: AuthorizationEngine
    principals: dict[str, Principal] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)

    def headers(self, who: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[who]}"}


def _patch_lifespan(user_store: UserStore, engine: AuthorizationEngine):
    """Return a lifespan that installs pre-built test objects on app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.auth_engine = engine
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    One principal per default role (keyed by role name) plus "norole", a
    principal with no role assigned. Each has a valid access token in
    ctx.tokens and the password PASSWORD. Per-module DB names keep test
    modules isolated from each other.
    """
    db_name = request.module.__name__.replace(".", "_")
    user_store = make_store(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    engine = build_engine(user_store)
    ctx = ApiContext(client=None, store=user_store, engine=engine)  # type: ignore[arg-type]

    for role_name, _ in DEFAULT_ROLES:
        ctx.principals[role_name] = add_principal(user_store, f"{role_name}@example.com", role_name)
    ctx.principals["norole"] = add_principal(user_store, "norole@example.com", None)
    for key, principal in ctx.principals.items():
        ctx.tokens[key] = engine.verifier.issue(principal.id, principal.email, principal.role_id)

    app.router.lifespan_context = _patch_lifespan(user_store, engine)
    with TestClient(app, raise_server_exceptions=True) as client:
        ctx.client = client
        yield ctx

    user_store.close()
