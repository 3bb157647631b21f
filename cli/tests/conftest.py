"""Shared fixtures for CLI tests.

Every command reads the ``API_*`` environment, so each test points the
database and the local media store at ``tmp_path``.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from consent_engine.models.session import SessionCreate
from consent_engine.models.user import UserCreate
from consent_engine.state.database import create_tables, get_session_factory
from consent_engine.state.sqlite_adapter import get_local_engine
from consent_engine.state.store import EntityStore


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at a temporary SQLite database and media root."""
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("API_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("API_MEDIA_BACKEND", "local")
    monkeypatch.setenv("API_MEDIA_LOCAL_ROOT", str(tmp_path / "media"))
    return db_path


@pytest.fixture()
def seeded_sessions(cli_env: Path) -> dict[str, str]:
    """Create one expired and one held session; return their ids."""

    async def _seed() -> dict[str, str]:
        engine = get_local_engine(cli_env)
        try:
            await create_tables(engine)
            store = EntityStore(get_session_factory(engine))
            created = datetime.now(UTC) - timedelta(days=30)
            user = await store.create_user(UserCreate(username="alex", password="s3cret-pass"), created_at=created)
            ids = {}
            for label in ("expired", "held"):
                session = await store.create_session(
                    SessionCreate(recipient_full_name=f"Recipient {label}", delete_after_days=1),
                    initiator_user_id=user.id,
                    created_at=created,
                    delete_after_days=1,
                    retention_until=created + timedelta(days=1),
                )
                ids[label] = session.id
            await store.set_retention_exempt(ids["held"], True)
            return ids
        finally:
            await engine.dispose()

    return asyncio.run(_seed())
