"""
tests/conftest.py -- Shared test fixtures for Notekeeper auth tests.

This module provides:
  - store / clock / mailer / verifier: building blocks for unit tests
  - otp / service: real OtpIssuer and AuthService around those building blocks
  - api: TestClient over the real FastAPI app with a patched lifespan

Design: API tests use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs the app in a separate thread. Plain :memory: DBs are
per-connection and would present a blank schema to that thread. Unit tests run
on one thread and use plain :memory:.

The DEBUG env var must be set before any api/ or core/ import so
get_settings() auto-generates SECRET_KEY in dev mode rather than raising.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.errors import DeliveryFailed, InvalidAssertion
from auth.models import FederatedIdentity
from auth.oauth import build_oauth
from auth.otp import OtpIssuer
from auth.resolver import AccountResolver
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import SessionIssuer

SECRET = "test-secret-key-that-is-long-enough-0123456789"
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@dataclass
class RecordingMailer:
    """In-memory mailer. Records every (to, subject, code); fails on demand."""

    sent: list[tuple[str, str, str]] = field(default_factory=list)
    fail: bool = False

    async def send(self, to: str, subject: str, code: str) -> None:
        if self.fail:
            raise DeliveryFailed()
        self.sent.append((to, subject, code))

    def last_code(self, to: str) -> str:
        codes = [code for recipient, _subject, code in self.sent if recipient == to]
        assert codes, f"no OTP was sent to {to}"
        return codes[-1]


@dataclass
class FakeVerifier:
    """Maps opaque assertion strings to identities; anything else is rejected."""

    identities: dict[str, FederatedIdentity] = field(default_factory=dict)

    async def verify(self, assertion: str) -> FederatedIdentity:
        try:
            return self.identities[assertion]
        except KeyError:
            raise InvalidAssertion() from None


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def otp(store: AccountStore, mailer: RecordingMailer, clock: FrozenClock) -> OtpIssuer:
    return OtpIssuer(store, mailer, SECRET, clock=clock)


@pytest.fixture
def service(
    store: AccountStore, otp: OtpIssuer, verifier: FakeVerifier, clock: FrozenClock
) -> AuthService:
    # SessionIssuer keeps the real clock: python-jose checks exp against wall time.
    return AuthService(store, AccountResolver(store), otp, SessionIssuer(SECRET), verifier, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: AccountStore
    mailer: RecordingMailer
    verifier: FakeVerifier
    clock: FrozenClock


def _patch_lifespan(store: AccountStore, service: AuthService, oauth):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and service into app.state so routes hit real
    handlers against an isolated database, with no SMTP or Google traffic.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.auth_service = service
        app.state.oauth = oauth
        app.state.client_url = "http://client.test"
        yield

    return test_lifespan


def make_api(oauth=None) -> tuple[ApiHarness, AccountStore]:
    store = AccountStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    mailer, verifier, clock = RecordingMailer(), FakeVerifier(), FrozenClock(datetime.now(timezone.utc))
    service = AuthService(
        store,
        AccountResolver(store),
        OtpIssuer(store, mailer, SECRET, clock=clock),
        SessionIssuer(SECRET),
        verifier,
        clock=clock,
    )
    app.router.lifespan_context = _patch_lifespan(store, service, oauth or build_oauth("", ""))
    client = TestClient(app, raise_server_exceptions=False)
    return ApiHarness(client, store, mailer, verifier, clock), store


@pytest.fixture
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a started TestClient with a fresh database."""
    harness, store = make_api()
    with harness.client:
        yield harness
    store.close()
