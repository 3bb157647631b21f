"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from consent_engine.state.database import create_tables, get_engine, get_session, get_session_factory
from consent_engine.state.repository import (
    ConsentSessionRepository,
    UserRepository,
    VideoAssetRepository,
)
from consent_engine.state.store import EntityStore

__all__ = [
    "ConsentSessionRepository",
    "EntityStore",
    "UserRepository",
    "VideoAssetRepository",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
]
