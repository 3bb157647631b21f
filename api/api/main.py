"""FastAPI application entry-point for the ConsentIQ API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from consent_engine.errors import (
    AnalysisNotReadyError,
    ConsentError,
    InputValidationError,
    InvalidTransitionError,
    NotFoundError,
    StorageFailureError,
)
from consent_engine.retention import RetentionScheduler, SweepReport
from consent_engine.state.database import create_tables
from consent_engine.state.store import EntityStore
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api import __version__
from api.config import APISettings, PlatformEnv, load_api_settings
from api.dependencies import (
    dispose_engine,
    dispose_media_store,
    dispose_oracle,
    get_engine_settings,
    get_media_store,
    get_session_factory,
    init_engine,
    init_media_store,
    init_oracle,
    retention_policy_for,
)
from api.middleware.identity import IdentityMiddleware
from api.middleware.logging import RequestLoggingMiddleware
from api.routers import billing, health, sessions, users, verification, videos
from api.services.sweep_scheduler import PeriodicSweep

logger = logging.getLogger(__name__)

# ConsentError subclass -> HTTP status.  Checked in order; the base class
# falls through to 500.
_ERROR_STATUS: tuple[tuple[type[ConsentError], int], ...] = (
    (InputValidationError, 400),
    (InvalidTransitionError, 400),
    (NotFoundError, 404),
    (AnalysisNotReadyError, 409),
    (StorageFailureError, 503),
)


def status_for(exc: ConsentError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _build_sweeps(settings: APISettings) -> list[PeriodicSweep]:
    """Create the session and account sweeps over the global store."""
    engine_settings = get_engine_settings()

    def _scheduler() -> RetentionScheduler:
        return RetentionScheduler(
            EntityStore(get_session_factory()),
            get_media_store(),
            retention_policy_for(engine_settings),
        )

    async def _sweep_sessions() -> SweepReport:
        return await _scheduler().sweep_sessions()

    async def _sweep_accounts() -> SweepReport:
        return await _scheduler().sweep_accounts()

    return [
        PeriodicSweep("sessions", _sweep_sessions, settings.session_sweep_interval_seconds),
        PeriodicSweep("accounts", _sweep_accounts, settings.account_sweep_interval_seconds),
    ]


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the async database engine.
    - Create database tables if they do not exist (dev convenience;
      production should use Alembic migrations).
    - Initialise the Gemini oracle and the media store.
    - Start the periodic retention sweeps.

    On shutdown the sweeps are stopped before the engine is disposed.
    """
    settings: APISettings = load_api_settings()

    # Structured JSON logging for log aggregation.
    if settings.structured_logging:
        from api.middleware.json_formatter import JSONFormatter

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)
        logger.info("Structured JSON logging enabled")

    # Database engine.
    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info(
        "Database engine initialised (%s, %s)",
        settings.database_url[:40] + "...",
        "local" if is_local else "postgres",
    )

    # Auto-create tables in dev or local SQLite mode (idempotent).
    if settings.platform_env == PlatformEnv.DEV or is_local:
        await create_tables(engine)
        logger.info(
            "Database tables ensured (%s)",
            "local SQLite" if is_local else "dev auto-migration",
        )

    oracle = init_oracle(settings)
    if not getattr(oracle, "configured", True):
        logger.warning("API_GEMINI_API_KEY is not set; every AI analysis will be UNCLEAR")
    else:
        logger.info("Gemini oracle initialised (%s)", settings.gemini_model)

    init_media_store(settings)
    logger.info("Media store initialised (%s)", settings.media_backend.value)

    sweeps: list[PeriodicSweep] = []
    if settings.sweeps_enabled:
        sweeps = _build_sweeps(settings)
        for sweep in sweeps:
            await sweep.start()

    yield

    # Shutdown.
    for sweep in sweeps:
        await sweep.stop()
    await dispose_media_store()
    dispose_oracle()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="ConsentIQ API",
        description="Recorded consent capture, AI verification and retention.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (the last one added runs first) -----------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-Correlation-ID",
            settings.identity_header,
            "Accept",
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(IdentityMiddleware, header_name=settings.identity_header)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(users.router, prefix="/api/v1")
    app.include_router(sessions.router, prefix="/api/v1")
    app.include_router(videos.router, prefix="/api/v1")
    app.include_router(verification.router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")

    # Infrastructure endpoints, outside versioning.
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(ConsentError)
    async def consent_error_handler(request: Request, exc: ConsentError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        # Log the full error for debugging; return a safe message to the client.
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    @app.exception_handler(PermissionError)
    async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
        logger.warning("PermissionError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=403, content={"detail": "Permission denied"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal database error"},
        )

    return app


# Module-level application instance used by ``uvicorn api.main:app``.
app = create_app()
