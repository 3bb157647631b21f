"""JSON log formatter for log aggregation.

Emits each log record as a single-line JSON object so that aggregators
(Datadog, CloudWatch Logs, ELK, etc.) can index fields without regex
parsing.  Activate with ``API_STRUCTURED_LOGGING=true``; the application
then replaces the root handlers with a ``StreamHandler`` using this
formatter.

Output schema per line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "api.access",
        "message": "request completed",
        "request": { ... },       // present when emitted by RequestLoggingMiddleware
        "sweep": { ... },         // present when emitted by a retention sweep
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# Structured ``extra=`` keys copied through verbatim.
_STRUCTURED_KEYS: tuple[str, ...] = ("request", "sweep")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _STRUCTURED_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
