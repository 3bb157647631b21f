"""Access logging for the ConsentIQ API.

One ``api.access`` record per request.  Paths are logged as their route
template so that QR correlation tokens and session ids in the URL never
reach the logs.  Query strings, headers and bodies (recordings, names,
phone numbers) are not logged at all.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("api.access")

_CORRELATION_HEADER: str = "X-Correlation-ID"


def _content_length(request: Request) -> int:
    value = request.headers.get("content-length", "")
    return int(value) if value.isdigit() else 0


def _route_template(request: Request) -> str:
    """Return the matched route's path template, or ``"<unmatched>"``."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "<unmatched>"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, route template, status and duration for every request.

    The correlation id comes from ``X-Correlation-ID`` or is generated, and
    is echoed on the response.  ``user_id`` is whatever
    :class:`~api.middleware.identity.IdentityMiddleware` resolved.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(_CORRELATION_HEADER) or str(uuid.uuid4())

        start = time.monotonic()
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers[_CORRELATION_HEADER] = correlation_id
            return response
        finally:
            status_code = response.status_code if response is not None else 500
            log_payload: dict[str, Any] = {
                "method": request.method,
                "route": _route_template(request),
                "status_code": status_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
                "content_length": _content_length(request),
                "correlation_id": correlation_id,
                "user_id": getattr(request.state, "user_id", None) or "anonymous",
            }
            level = logging.ERROR if status_code >= 500 else logging.WARNING if status_code >= 400 else logging.INFO
            logger.log(level, "request completed", extra={"request": log_payload})
