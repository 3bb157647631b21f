"""FastAPI dependency injection for the entity store, oracle, media store and settings."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Annotated

from consent_engine.config import EngineSettings, load_engine_settings
from consent_engine.lifecycle import ConsentLifecycle, ConsentStateMachine
from consent_engine.models.user import SubscriptionStatus, User
from consent_engine.retention import RetentionPolicy, RetentionScheduler
from consent_engine.state.database import get_engine
from consent_engine.state.store import EntityStore
from consent_engine.storage import LocalMediaStore, MediaStore
from consent_engine.verification import AIOracle, VerificationPipeline
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from api.config import APISettings, MediaBackend, load_api_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None
_engine_settings_cache: EngineSettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


def get_engine_settings() -> EngineSettings:
    """Return the cached :class:`EngineSettings` singleton."""
    global _engine_settings_cache  # noqa: PLW0603
    if _engine_settings_cache is None:
        _engine_settings_cache = load_engine_settings()
    return _engine_settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]
EngineSettingsDep = Annotated[EngineSettings, Depends(get_engine_settings)]

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Used by components that operate outside FastAPI's dependency injection
    (e.g. the periodic retention sweeps) and need direct store access.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a raw ``AsyncSession`` for health probes.

    Business endpoints go through :data:`StoreDep`, which opens one
    transaction per store operation.
    """
    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


def get_store() -> EntityStore:
    """Return an :class:`EntityStore` over the global session factory."""
    return EntityStore(get_session_factory())


DBSessionDep = Annotated[AsyncSession, Depends(get_db_session)]
StoreDep = Annotated[EntityStore, Depends(get_store)]

# ---------------------------------------------------------------------------
# AI oracle
# ---------------------------------------------------------------------------

_oracle: AIOracle | None = None


def init_oracle(settings: APISettings) -> AIOracle:
    """Create and cache the global Gemini oracle."""
    global _oracle  # noqa: PLW0603
    from api.services.oracle_client import GeminiOracle

    _oracle = GeminiOracle(
        api_key=settings.gemini_api_key.get_secret_value(),
        model=settings.gemini_model,
    )
    return _oracle


def dispose_oracle() -> None:
    """Drop the global oracle (call during shutdown)."""
    global _oracle  # noqa: PLW0603
    _oracle = None


def get_oracle() -> AIOracle:
    """Return the global AI oracle."""
    if _oracle is None:
        raise RuntimeError("AI oracle has not been initialised. Ensure init_oracle() is called during startup.")
    return _oracle


OracleDep = Annotated[AIOracle, Depends(get_oracle)]

# ---------------------------------------------------------------------------
# Media store
# ---------------------------------------------------------------------------

_media_store: MediaStore | None = None


def init_media_store(settings: APISettings) -> MediaStore:
    """Create and cache the global media store for the configured backend."""
    global _media_store  # noqa: PLW0603
    if settings.media_backend is MediaBackend.SUPABASE:
        from api.services.media_storage import SupabaseMediaStore

        _media_store = SupabaseMediaStore(
            base_url=settings.supabase_url,
            service_key=settings.supabase_service_role_key.get_secret_value(),
            bucket=settings.supabase_bucket,
            timeout=settings.media_timeout_seconds,
        )
    else:
        _media_store = LocalMediaStore(settings.media_local_root)
    return _media_store


async def dispose_media_store() -> None:
    """Close the global media store's HTTP client, if it has one."""
    global _media_store  # noqa: PLW0603
    close = getattr(_media_store, "close", None)
    if close is not None:
        await close()
    _media_store = None


def get_media_store() -> MediaStore:
    """Return the global media store."""
    if _media_store is None:
        raise RuntimeError("Media store has not been initialised. Ensure init_media_store() is called during startup.")
    return _media_store


MediaDep = Annotated[MediaStore, Depends(get_media_store)]

# ---------------------------------------------------------------------------
# Engine services
# ---------------------------------------------------------------------------


def get_clock() -> Callable[[], datetime]:
    """Return the wall clock; overridden in tests."""
    return lambda: datetime.now(UTC)


ClockDep = Annotated[Callable[[], datetime], Depends(get_clock)]


def retention_policy_for(engine_settings: EngineSettings) -> RetentionPolicy:
    return RetentionPolicy(
        default_delete_after_days=engine_settings.default_delete_after_days,
        account_deletion_grace_days=engine_settings.account_deletion_grace_days,
    )


def get_lifecycle(store: StoreDep, engine_settings: EngineSettingsDep, clock: ClockDep) -> ConsentLifecycle:
    return ConsentLifecycle(
        store,
        ConsentStateMachine.from_settings(engine_settings.strict_transitions),
        retention_policy_for(engine_settings),
        clock,
    )


LifecycleDep = Annotated[ConsentLifecycle, Depends(get_lifecycle)]


def get_pipeline(
    store: StoreDep,
    oracle: OracleDep,
    lifecycle: LifecycleDep,
    engine_settings: EngineSettingsDep,
    clock: ClockDep,
) -> VerificationPipeline:
    return VerificationPipeline(
        store,
        oracle,
        lifecycle,
        mismatch_threshold=engine_settings.mismatch_confidence_threshold,
        oracle_timeout_seconds=engine_settings.oracle_timeout_seconds,
        clock=clock,
    )


PipelineDep = Annotated[VerificationPipeline, Depends(get_pipeline)]


def get_retention(
    store: StoreDep,
    media: MediaDep,
    engine_settings: EngineSettingsDep,
    clock: ClockDep,
) -> RetentionScheduler:
    return RetentionScheduler(store, media, retention_policy_for(engine_settings), clock)


RetentionDep = Annotated[RetentionScheduler, Depends(get_retention)]

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def get_current_user_id(request: Request) -> str:
    """Extract the authenticated user id set by :class:`IdentityMiddleware`."""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


CurrentUserIdDep = Annotated[str, Depends(get_current_user_id)]


async def get_current_user(user_id: CurrentUserIdDep, store: StoreDep) -> User:
    """Load the authenticated user; an unknown id is treated as unauthenticated."""
    user = await store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


async def require_active_subscription(user: CurrentUserDep) -> User:
    """Gate session creation on a paid, current subscription."""
    if user.subscription_status is not SubscriptionStatus.ACTIVE:
        raise HTTPException(status_code=403, detail="Active subscription required")
    return user


ActiveSubscriberDep = Annotated[User, Depends(require_active_subscription)]
