"""Trusted-gateway identity middleware.

ConsentIQ runs behind an authenticating gateway that verifies the browser
session and forwards the user id in a trusted header (default
``X-Authenticated-User``).  This middleware copies that id onto
``request.state.user_id``; dependencies that need an identity raise 401
when it is absent.  Requests without the header continue anonymously so
that the public endpoints (QR lookup, recipient status updates, Stripe
webhooks, health) keep working.
"""

from __future__ import annotations

import logging
import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

_DEFAULT_HEADER = "X-Authenticated-User"

# User ids are server-generated UUIDs; anything else is a forged or broken header.
_USER_ID_RE = re.compile(r"^[A-Za-z0-9-]{1,64}$")


class IdentityMiddleware(BaseHTTPMiddleware):
    """Populate ``request.state.user_id`` from the gateway identity header."""

    def __init__(self, app: ASGIApp, header_name: str = _DEFAULT_HEADER) -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        raw = request.headers.get(self._header_name, "").strip()
        if raw and not _USER_ID_RE.match(raw):
            logger.warning("Rejected malformed %s header on %s", self._header_name, request.url.path)
            return JSONResponse(status_code=401, content={"detail": "Invalid identity header"})
        request.state.user_id = raw or None
        return await call_next(request)
