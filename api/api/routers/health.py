"""Health-check and readiness probe endpoints.

``/health`` (liveness) lives under the versioned API prefix
(``/api/v1/health``).  ``/ready`` is a readiness probe at the application
root so that orchestrators can gate traffic independently of the API
version.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from api import __version__
from api.dependencies import DBSessionDep, MediaDep, OracleDep

logger = logging.getLogger(__name__)

# Short timeout for dependency checks so probes respond quickly.
_DEPENDENCY_HEALTH_TIMEOUT = 2.0

router = APIRouter(tags=["health"])


async def _check_dependency(component: Any) -> bool:
    """Run ``component.health_check()`` with a short timeout.

    Components without a health check (the local media store, test
    doubles) are reported healthy.
    """
    check = getattr(component, "health_check", None)
    if check is None:
        return True
    try:
        return await asyncio.wait_for(check(), timeout=_DEPENDENCY_HEALTH_TIMEOUT)
    except (TimeoutError, Exception):
        return False


async def _check_db(session: DBSessionDep) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        return False
    return True


@router.get("/health")
async def health(
    session: DBSessionDep,
    oracle: OracleDep,
    media: MediaDep,
) -> dict[str, Any]:
    """Return service health with dependency checks.

    Always HTTP 200 so that load-balancers see the service as alive.  The
    oracle being down is survivable: verification degrades to UNCLEAR.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "db": "ok" if await _check_db(session) else "degraded",
        "oracle": "ok" if await _check_dependency(oracle) else "unavailable",
        "media": "ok" if await _check_dependency(media) else "unavailable",
    }


# ---------------------------------------------------------------------------
# Readiness probe (outside API versioning)
# ---------------------------------------------------------------------------

readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_probe(
    session: DBSessionDep,
    oracle: OracleDep,
    media: MediaDep,
) -> JSONResponse:
    """Readiness probe.

    The database and media store gate readiness; an unavailable oracle
    only downgrades the status to ``degraded``.
    """
    checks: dict[str, str] = {"db": "ok", "media": "ok", "oracle": "ok"}
    overall = "ready"

    if not await _check_db(session):
        checks["db"] = "unavailable"
        overall = "not_ready"
    if not await _check_dependency(media):
        checks["media"] = "unavailable"
        overall = "not_ready"
    if not await _check_dependency(oracle):
        checks["oracle"] = "unavailable"
        if overall == "ready":
            overall = "degraded"

    return JSONResponse(
        status_code=200 if overall != "not_ready" else 503,
        content={"status": overall, "checks": checks},
    )
