"""
tests/conftest.py -- Shared fixtures for CourseGate unit and integration tests.

This module provides:
  - settings / user_store / session_cache / token_codec / mailer / credentials:
    the same handles the real lifespan builds, backed by isolated in-memory
    stores and a recording mailer.
  - client: TestClient on the real FastAPI app with a patched lifespan that
    wires the fixtures above into app.state.
  - new_user / login_as: factory fixtures that create users and plant session
    cookies without going through the HTTP login flow.

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each fixture instance gets a uuid-suffixed name so tests never share
rows.

ENVIRONMENT must be set before any api/ import: api.main reads get_settings()
at import time for the CORS origins, and production mode refuses to start
without explicit secrets.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any core/auth/api import.
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.cookies import ACCESS_COOKIE, REFRESH_COOKIE
from auth.errors import DeliveryError
from auth.models import ROLE_USER, User
from auth.service import CredentialService
from auth.store import UserStore
from auth.tokens import TokenCodec
from cache.store import MemorySessionCache
from core.config import Settings

# Rate limits are covered by slowapi itself; with them on, the register and
# login tests would trip each other's per-IP counters.
limiter.enabled = False

TEST_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Mailer double: records every send; raises DeliveryError when fail=True."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail = False

    def send(self, to: str, subject: str, template: str, data: dict) -> None:
        if self.fail:
            raise DeliveryError()
        self.sent.append({"to": to, "subject": subject, "template": template, "data": data})

    @property
    def last_code(self) -> str:
        return self.sent[-1]["data"]["activation_code"]


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "development",
        "access_token_secret": "a" * 40,
        "refresh_token_secret": "r" * 40,
        "activation_secret": "v" * 40,
        "database_url": "sqlite://",
        "redis_url": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    url = f"sqlite:///file:test_users_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    store = UserStore(url)
    yield store
    store.close()


@pytest.fixture
def session_cache(settings: Settings) -> MemorySessionCache:
    return MemorySessionCache(default_ttl=settings.refresh_token_ttl_seconds)


@pytest.fixture
def token_codec(settings: Settings) -> TokenCodec:
    return TokenCodec(settings)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def credentials(user_store, session_cache, token_codec, mailer) -> CredentialService:
    return CredentialService(user_store, session_cache, token_codec, mailer)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_user(
    store: UserStore,
    email: str = "ada@example.com",
    *,
    name: str = "Ada",
    role: str = ROLE_USER,
    password: str | None = TEST_PASSWORD,
) -> User:
    return store.create_user(User(email=email, name=name, role=role), password=password)


def sign_in(client: TestClient, codec: TokenCodec, user: User, *, access: bool = True, refresh: bool = True) -> None:
    """Plant session cookies for user directly, skipping the login endpoint."""
    client.cookies.clear()
    if access:
        client.cookies.set(ACCESS_COOKIE, codec.issue_access(user.id))
    if refresh:
        client.cookies.set(REFRESH_COOKIE, codec.issue_refresh(user.id))


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings, user_store, session_cache, token_codec, mailer, credentials):
    """Return an async context manager that replaces the real lifespan.

    Skips connect_with_retry, Redis and SMTP entirely; routes see the test
    fixtures through app.state exactly as they would see the real handles.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.session_cache = session_cache
        app.state.token_codec = token_codec
        app.state.mailer = mailer
        app.state.credentials = credentials
        yield

    return test_lifespan


@pytest.fixture
def client(settings, user_store, session_cache, token_codec, mailer, credentials) -> Generator[TestClient, None, None]:
    """TestClient on the real app; function-scoped so cookie jars never leak."""
    app.router.lifespan_context = _patch_lifespan(
        settings, user_store, session_cache, token_codec, mailer, credentials
    )
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Helper fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def new_user(user_store):
    """Factory: new_user(email=..., role=..., password=...) -> stored User."""

    def factory(email: str = "ada@example.com", **kwargs) -> User:
        return make_user(user_store, email, **kwargs)

    return factory


@pytest.fixture
def login_as(client, token_codec):
    """Factory: login_as(user, access=True, refresh=True) plants session cookies."""

    def factory(user: User, **kwargs) -> None:
        sign_in(client, token_codec, user, **kwargs)

    return factory
