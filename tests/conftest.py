"""Test configuration and fixtures for events-checkin-svc."""

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

# settings are read once at import time, so the environment goes first
_DB_DIR = tempfile.mkdtemp(prefix="events-checkin-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["AUTH_JWKS_URL"] = "http://idp.invalid/.well-known/jwks.json"
os.environ["APP_BASE_URL"] = "https://events.example.com"
os.environ["QR_TOKEN_SECRET"] = "unused-in-tests-the-service-is-overridden"
os.environ["QUOTA_ENABLED"] = "false"
os.environ["RL_ENABLED"] = "false"
os.environ["NATS_ENABLED"] = "false"

import pytest
import pytest_asyncio
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from events_checkin.core.qr import QRTokenService
from events_checkin.db import engine, init_db
from events_checkin.deps import get_claims, get_optional_claims, get_qr_service
from events_checkin.main import app
from events_checkin.models import Base

SECRET_A = "a" * 16 + "-test-signing-secret-0123456789"
SECRET_B = "b" * 16 + "-test-signing-secret-0123456789"
BASE_URL = "https://events.example.com"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class AuthState:
    """Stands in for the identity provider: whoever is logged in is the bearer."""

    def __init__(self):
        self.user_id: uuid.UUID | None = None

    def login(self, user_id: uuid.UUID) -> None:
        self.user_id = user_id

    def logout(self) -> None:
        self.user_id = None

    async def claims(self):
        if self.user_id is None:
            raise HTTPException(status_code=401, detail="Missing token")
        return {"sub": str(self.user_id), "role": "authenticated"}

    async def optional_claims(self):
        if self.user_id is None:
            return None
        return {"sub": str(self.user_id), "role": "authenticated"}


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def qr_service(clock):
    return QRTokenService(secret=SECRET_A, base_url=BASE_URL, clock=clock)


@pytest.fixture
def auth():
    return AuthState()


@pytest.fixture
def organizer():
    return uuid.uuid4()


@pytest.fixture
def attendee():
    return uuid.uuid4()


@pytest_asyncio.fixture
async def db_ready():
    await init_db()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # pooled aiosqlite connections must not outlive this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_ready, auth, qr_service):
    app.dependency_overrides[get_claims] = auth.claims
    app.dependency_overrides[get_optional_claims] = auth.optional_claims
    app.dependency_overrides[get_qr_service] = lambda: qr_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_event(client, auth):
    """POST /api/events as `organizer`; returns the raw response."""
    async def _make(organizer, **overrides):
        body = {
            "title": "AI Hackathon 2026",
            "location": "San Francisco, CA",
            "start_at": "2026-06-15T09:00:00Z",
            "end_at": "2026-06-15T18:00:00Z",
        }
        body.update(overrides)
        auth.login(organizer)
        return await client.post("/api/events", json=body)
    return _make


@pytest.fixture
def register(client, auth):
    """Register `user` (or a guest when user is None) for an event; returns the raw response."""
    async def _register(event_id, user=None, **body):
        if user is None:
            auth.logout()
        else:
            auth.login(user)
        return await client.post(f"/api/events/{event_id}/registrations", json=body)
    return _register
