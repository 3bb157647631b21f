"""Middleware components for the ConsentIQ API."""

from __future__ import annotations

from api.middleware.identity import IdentityMiddleware
from api.middleware.json_formatter import JSONFormatter
from api.middleware.logging import RequestLoggingMiddleware

__all__ = [
    "IdentityMiddleware",
    "JSONFormatter",
    "RequestLoggingMiddleware",
]
