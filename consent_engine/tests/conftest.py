"""Shared fixtures for consent engine tests.

Tests run against a file-backed SQLite database in ``tmp_path`` so that every
per-operation transaction opened by :class:`EntityStore` sees the same data.
The AI oracle and media store are replaced by in-process doubles.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from consent_engine.errors import StorageFailureError
from consent_engine.lifecycle.state_machine import ConsentLifecycle, ConsentStateMachine
from consent_engine.models.user import UserCreate
from consent_engine.models.video import VideoAssetCreate
from consent_engine.retention.scheduler import RetentionScheduler
from consent_engine.state.database import create_tables, get_session_factory
from consent_engine.state.sqlite_adapter import get_local_engine
from consent_engine.state.store import EntityStore
from consent_engine.verification.pipeline import VerificationPipeline

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeOracle:
    """Scriptable oracle double recording every call."""

    def __init__(self) -> None:
        self.transcription: Any = {"transcript": "Yes, I consent.", "confidence": 0.9}
        self.analysis: Any = {"decision": "CONSENT_GRANTED", "confidence": 0.9, "reasoning": "Clear verbal yes"}
        self.transcribe_error: Exception | None = None
        self.analyze_error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str]] = []

    async def transcribe(self, media: bytes, mime_type: str) -> Mapping[str, Any]:
        self.calls.append(("transcribe", mime_type))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return self.transcription

    async def analyze(self, media: bytes, mime_type: str) -> Mapping[str, Any]:
        self.calls.append(("analyze", mime_type))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.analyze_error is not None:
            raise self.analyze_error
        return self.analysis


class MemoryMediaStore:
    """Dict-backed media store; keys in ``fail_deletes`` raise on delete."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_deletes: set[str] = set()

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.blobs[key] = data
        return key

    async def get_signed_read_url(self, key: str, ttl_seconds: int) -> str:
        return f"memory://{key}?ttl={ttl_seconds}"

    async def delete(self, key: str) -> None:
        if key in self.fail_deletes:
            raise StorageFailureError(f"simulated delete failure for {key}")
        self.blobs.pop(key, None)
        self.deleted.append(key)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path: Path):
    engine = get_local_engine(tmp_path / "state.db")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine) -> EntityStore:
    return EntityStore(get_session_factory(engine))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def media() -> MemoryMediaStore:
    return MemoryMediaStore()


@pytest.fixture
def lifecycle(store: EntityStore, clock: FakeClock) -> ConsentLifecycle:
    return ConsentLifecycle(store, ConsentStateMachine(), clock=clock)


@pytest.fixture
def pipeline(store: EntityStore, oracle: FakeOracle, lifecycle: ConsentLifecycle, clock: FakeClock) -> VerificationPipeline:
    return VerificationPipeline(store, oracle, lifecycle, oracle_timeout_seconds=1.0, clock=clock)


@pytest.fixture
def retention(store: EntityStore, media: MemoryMediaStore, clock: FakeClock) -> RetentionScheduler:
    return RetentionScheduler(store, media, clock=clock)


@pytest_asyncio.fixture
async def initiator(store: EntityStore, clock: FakeClock):
    return await store.create_user(
        UserCreate(username="alex", password="s3cret-pass", full_name="Alex Initiator"),
        created_at=clock(),
    )


@pytest.fixture
def make_asset(store: EntityStore, media: MemoryMediaStore, clock: FakeClock):
    """Factory that stores a blob and registers its video asset."""

    async def _make(owner_user_id: str | None = None, key: str | None = None, mime_type: str = "video/webm"):
        storage_key = key or f"consent-videos/{uuid.uuid4().hex}.webm"
        await media.put(storage_key, b"\x1aE\xdf\xa3fake-webm", mime_type)
        return await store.create_video_asset(
            VideoAssetCreate(
                owner_user_id=owner_user_id,
                filename=storage_key.rsplit("/", 1)[-1],
                mime_type=mime_type,
                file_size=14,
                storage_key=storage_key,
            ),
            uploaded_at=clock(),
        )

    return _make
