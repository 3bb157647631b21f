"""API router modules for the ConsentIQ service."""

from __future__ import annotations

from api.routers import billing, health, sessions, users, verification, videos

__all__ = [
    "billing",
    "health",
    "sessions",
    "users",
    "verification",
    "videos",
]
