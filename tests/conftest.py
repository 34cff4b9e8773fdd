"""
tests/conftest.py -- Shared test fixtures for Stallmarket.

This module provides:
  - RecordingNotifier: a Notifier that keeps every message so tests can read
    the OTP a user "received"
  - store / tokens / notifier / service: unit-level fixtures over an
    in-memory SQLite UserStore
  - api: module-scoped TestClient harness with a seeded MAIN_ADMIN and a
    verified CUSTOMER, wired in through a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API harness because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.errors import DeliveryError
from auth.guards import ACCESS_POLICY
from auth.models import Claims, Role, User
from auth.notifications import NotificationKind, Notifier
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenConfig, TokenService

TEST_SECRET = "test-secret-key-0123456789abcdef-0123456789abcdef"

# Off by default so request counts across a module never matter.
# tests/test_rate_limits.py switches it back on around each test.
limiter.enabled = False


class RecordingNotifier(Notifier):
    """Keeps every message in memory. fail=True makes every send raise DeliveryError."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[NotificationKind, str, dict[str, Any]]] = []

    def send(self, kind: NotificationKind, recipient: str, template_data: dict[str, Any]) -> None:
        if self.fail:
            raise DeliveryError("mail relay unavailable")
        self.sent.append((kind, recipient, dict(template_data)))

    def last_code(self, recipient: str) -> str:
        for _kind, to, data in reversed(self.sent):
            if to == recipient:
                return data["code"]
        raise AssertionError(f"no message sent to {recipient}")

    def kinds_for(self, recipient: str) -> list[NotificationKind]:
        return [kind for kind, to, _data in self.sent if to == recipient]


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(TokenConfig(secret_key=TEST_SECRET))


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store: UserStore, tokens: TokenService, notifier: RecordingNotifier) -> AuthService:
    return AuthService(store, tokens, notifier)


@pytest.fixture
def offline_service(store: UserStore, tokens: TokenService) -> AuthService:
    """An AuthService whose notifier fails every send."""
    return AuthService(store, tokens, RecordingNotifier(fail=True))


def _insert_user(
    store: UserStore, email: str, role: Role = Role.CUSTOMER, password: str = "pw123456", **kw: Any
) -> User:
    """Insert a user directly, bypassing registration."""
    return store.create(
        User(email=email, name=email.split("@")[0], hashed_password=hash_password(password), role=role, **kw)
    )


@pytest.fixture
def make_user(store: UserStore):
    """Return a factory that inserts users into the unit-level store."""

    def _make(email: str, role: Role = Role.CUSTOMER, password: str = "pw123456", **kw: Any) -> User:
        return _insert_user(store, email, role, password, **kw)

    return _make


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


# ---------------------------------------------------------------------------
# API harness
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: UserStore
    notifier: RecordingNotifier
    tokens: TokenService
    admin: User
    admin_token: str
    customer: User
    customer_token: str

    def bearer(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(store: UserStore, tokens: TokenService, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test collaborators into app.state so TestClient routes see
    an isolated database and a recording notifier instead of real mail.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.token_service = tokens
        app.state.notifier = notifier
        app.state.auth_service = AuthService(store, tokens, notifier)
        app.state.access_policy = ACCESS_POLICY
        app.state.dev_endpoints_enabled = False
        await asyncio.sleep(0)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    One database per test module, named after the module, so modules never
    share state. Seeds a verified MAIN_ADMIN (admin@market.test / adminpass123)
    and a verified CUSTOMER (shopper@market.test / shopperpass1).
    """
    db_name = request.module.__name__.replace(".", "_")
    user_store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    token_service = TokenService(TokenConfig(secret_key=TEST_SECRET))
    recorder = RecordingNotifier()

    admin = _insert_user(user_store, "admin@market.test", Role.MAIN_ADMIN, "adminpass123", is_verified=True)
    customer = _insert_user(user_store, "shopper@market.test", Role.CUSTOMER, "shopperpass1", is_verified=True)

    app.router.lifespan_context = _patch_lifespan(user_store, token_service, recorder)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(
            client=client,
            store=user_store,
            notifier=recorder,
            tokens=token_service,
            admin=admin,
            admin_token=token_service.issue(Claims.for_user(admin)),
            customer=customer,
            customer_token=token_service.issue(Claims.for_user(customer)),
        )

    user_store.close()
