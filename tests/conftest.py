"""
tests/conftest.py -- Shared test fixtures for CampusAuth.

This module provides:
  - FakeClock / RecordingMailer: deterministic time and an in-memory email channel
  - store / service: an AuthService over a private in-memory SQLite store
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: unit tests use plain sqlite:///:memory: (single thread, SQLAlchemy
keeps one connection per thread). TestClient runs sync route handlers in a
thread pool, so the API fixture uses a named shared-memory URI
(file:name?mode=memory&cache=shared&uri=true) that every pooled connection
sees.

DEBUG and a low BCRYPT_ROUNDS must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY and hashing stays fast.
"""

from __future__ import annotations

import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
# TestClient sends Host: testserver, which production never allows.
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.errors import Unavailable
from auth.mailer import MailKind
from auth.service import AuthService
from auth.store import AccountStore
from core.config import get_settings

_CODE_IN_LINK = re.compile(r"/auth/reset/([A-Za-z0-9_\-]+)$")


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMailer:
    """Email channel that keeps messages in memory instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, MailKind, dict]] = []
        self.fail = False

    def send(self, to_email: str, kind: MailKind, payload: dict) -> None:
        if self.fail:
            raise Unavailable()
        self.sent.append((to_email, kind, payload))

    def last_passcode(self, email: str) -> str:
        for to, kind, payload in reversed(self.sent):
            if to == email and kind is MailKind.OTP:
                return payload["passcode"]
        raise AssertionError(f"no passcode mailed to {email}")

    def last_reset_code(self, email: str) -> str:
        for to, kind, payload in reversed(self.sent):
            if to == email and kind is MailKind.PASSWORD_RESET:
                match = _CODE_IN_LINK.search(payload["link"])
                assert match is not None, payload["link"]
                return match.group(1)
        raise AssertionError(f"no reset link mailed to {email}")


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: AccountStore, mailer: RecordingMailer, clock: FakeClock) -> AuthService:
    return AuthService(store, mailer, get_settings(), clock=clock)


# ---------------------------------------------------------------------------
# API fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, mailer: RecordingMailer):
    """Return a lifespan that wires the test store and mailer into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.mailer = mailer
        app.state.auth_service = AuthService(store, mailer, get_settings())
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingMailer], None, None]:
    """Yield (client, mailer) for API integration tests.

    The shared-memory DB name includes the test module name so modules do not
    see each other's accounts. Rate limiting is switched off; tests hammer
    the same endpoints from one address.
    """
    db_name = request.module.__name__.replace(".", "_")
    store = AccountStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    mailer = RecordingMailer()

    app.router.lifespan_context = _patch_lifespan(store, mailer)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer

    limiter.enabled = True
    store.close()


@pytest.fixture
def client(api_client: tuple[TestClient, RecordingMailer]) -> TestClient:
    """The module TestClient with cookies cleared so tests do not leak sessions."""
    test_client, _mailer = api_client
    test_client.cookies.clear()
    return test_client
