"""Shared fixtures for ConsentIQ API tests.

The application runs against a file-backed SQLite database in ``tmp_path``
with the oracle, media store and clock replaced through FastAPI dependency
overrides.  ``ASGITransport`` does not run the lifespan, so no global engine,
Gemini client or background sweep is ever started.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import time
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from api.config import APISettings
from api.dependencies import (
    get_clock,
    get_db_session,
    get_engine_settings,
    get_media_store,
    get_oracle,
    get_settings,
    get_store,
)
from api.main import create_app
from consent_engine.config import EngineSettings
from consent_engine.errors import StorageFailureError
from consent_engine.models.mutations import BillingWrite
from consent_engine.models.user import SubscriptionStatus, UserCreate
from consent_engine.state.database import create_tables, get_session_factory
from consent_engine.state.sqlite_adapter import get_local_engine
from consent_engine.state.store import EntityStore
from httpx import ASGITransport, AsyncClient

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

WEBHOOK_SECRET = "whsec_test_consentiq"


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a valid ``Stripe-Signature`` header for *payload*."""
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeOracle:
    """Scriptable oracle double."""

    def __init__(self) -> None:
        self.transcription: Any = {"transcript": "My name is Jordan and I consent.", "confidence": 0.92}
        self.analysis: Any = {"decision": "CONSENT_GRANTED", "confidence": 0.88, "reasoning": "Clear verbal consent"}
        self.error: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    async def transcribe(self, media: bytes, mime_type: str) -> Mapping[str, Any]:
        self.calls.append(("transcribe", mime_type))
        if self.error is not None:
            raise self.error
        return self.transcription

    async def analyze(self, media: bytes, mime_type: str) -> Mapping[str, Any]:
        self.calls.append(("analyze", mime_type))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.analysis


class MemoryMediaStore:
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_deletes: set[str] = set()

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.blobs[key] = data
        self.content_types[key] = content_type
        return key

    async def get_signed_read_url(self, key: str, ttl_seconds: int) -> str:
        return f"https://media.test/{key}?ttl={ttl_seconds}"

    async def delete(self, key: str) -> None:
        if key in self.fail_deletes:
            raise StorageFailureError(f"simulated delete failure for {key}")
        self.blobs.pop(key, None)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings(tmp_path: Path) -> APISettings:
    """Return a settings object suitable for testing."""
    return APISettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        platform_env="dev",
        cors_origins=["http://localhost:5173"],
        billing_enabled=True,
        stripe_secret_key="sk_test_consentiq",
        stripe_webhook_secret=WEBHOOK_SECRET,
        sweeps_enabled=False,
    )


@pytest.fixture()
def engine_settings() -> EngineSettings:
    return EngineSettings(max_upload_bytes=1024)


# ---------------------------------------------------------------------------
# Engine-side doubles
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db_engine(tmp_path: Path):
    engine = get_local_engine(tmp_path / "api.db")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def store(db_engine) -> EntityStore:
    return EntityStore(get_session_factory(db_engine))


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture()
def media() -> MemoryMediaStore:
    return MemoryMediaStore()


# ---------------------------------------------------------------------------
# FastAPI client (async httpx)
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(
    test_settings: APISettings,
    engine_settings: EngineSettings,
    db_engine,
    store: EntityStore,
    oracle: FakeOracle,
    media: MemoryMediaStore,
    clock: FakeClock,
):
    """Create a FastAPI app wired to the test doubles."""
    application = create_app()

    async def _override_db_session():
        async with get_session_factory(db_engine)() as session:
            yield session

    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_engine_settings] = lambda: engine_settings
    application.dependency_overrides[get_db_session] = _override_db_session
    application.dependency_overrides[get_store] = lambda: store
    application.dependency_overrides[get_oracle] = lambda: oracle
    application.dependency_overrides[get_media_store] = lambda: media
    application.dependency_overrides[get_clock] = lambda: clock
    return application


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def subscriber(store: EntityStore, clock: FakeClock):
    """A user with an active subscription."""
    user = await store.create_user(
        UserCreate(username="alex", password="s3cret-pass", full_name="Alex Initiator"),
        created_at=clock(),
    )
    return await store.apply_billing(
        user.id,
        BillingWrite(subscription_status=SubscriptionStatus.ACTIVE, stripe_subscription_id="sub_alex"),
    )


@pytest.fixture()
def auth_headers(subscriber) -> dict[str, str]:
    return {"X-Authenticated-User": subscriber.id}


@pytest.fixture()
def sign_stripe_payload():
    """Return a helper producing valid ``Stripe-Signature`` headers."""
    return stripe_signature
