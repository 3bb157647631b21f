"""SQLite engine for development, the CLI and the test suites.

Production runs on PostgreSQL; this engine lets ``consentiq serve`` and the
sweep commands work against a local file with the same ORM tables.  Two
connection settings matter for correctness rather than speed:

* ``foreign_keys=ON`` so that deleting a video asset nulls
  ``consent_sessions.video_asset_id`` exactly as PostgreSQL does.
* WAL journaling so that a sweep run from the CLI can read while the API
  process holds a write transaction on the same file.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

_MEMORY = ":memory:"


def get_local_engine(db_path: Path | str = ".consentiq/state.db") -> AsyncEngine:
    """Return an aiosqlite engine for *db_path*, creating parent directories.

    ``":memory:"`` gives a private in-memory database per connection.
    """
    if str(db_path) == _MEMORY:
        url = f"sqlite+aiosqlite:///{_MEMORY}"
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not url.endswith(_MEMORY):
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    logger.debug("SQLite engine at %s", url)
    return engine
