"""Entity store: atomic per-entity operations over the repositories.

The store is the single source of truth the lifecycle, pipeline and
retention components are handed at construction time.  Every method runs in
its own short transaction, so each mutation is atomic for the one row it
touches and concurrent writers are last-writer-wins per row.  There are no
multi-entity transactions: callers that cascade (the retention sweeps)
order their individual deletes so that a crash between steps leaves at
worst an orphaned blob, never a dangling reference.

Results are returned as pydantic snapshots, detached from the ORM session.
SQLAlchemy failures surface as :class:`StorageFailureError`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consent_engine.errors import InputValidationError, NotFoundError, StorageFailureError
from consent_engine.models.mutations import (
    AIDecisionWrite,
    BillingWrite,
    StatusChange,
    TranscriptWrite,
    VerificationWrite,
)
from consent_engine.models.session import ConsentSession, SessionCreate
from consent_engine.models.user import User, UserCreate
from consent_engine.models.video import VideoAsset, VideoAssetCreate
from consent_engine.state.repository import (
    ConsentSessionRepository,
    UserRepository,
    VideoAssetRepository,
)

logger = logging.getLogger(__name__)


class EntityStore:
    """Durable repository for users, consent sessions and video assets.

    Parameters
    ----------
    session_factory:
        Factory producing ``AsyncSession`` objects; one session is opened
        per operation.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _unit(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        """Run one operation in its own transaction, translating DB errors."""
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except IntegrityError as exc:
            logger.warning("Integrity violation during %s: %s", operation, exc.orig)
            raise InputValidationError(f"{operation} violates a uniqueness or reference constraint") from exc
        except SQLAlchemyError as exc:
            logger.error("Storage failure during %s", operation, exc_info=True)
            raise StorageFailureError(f"{operation} failed: {exc.__class__.__name__}") from exc

    # -- Users ---------------------------------------------------------------

    async def create_user(self, data: UserCreate, *, created_at: datetime) -> User:
        async with self._unit("create_user") as session:
            repo = UserRepository(session)
            if await repo.get_by_username(data.username) is not None:
                raise InputValidationError(f"Username {data.username!r} already exists")
            row = await repo.create(data, created_at=created_at)
            return User.model_validate(row)

    async def get_user(self, user_id: str) -> User | None:
        async with self._unit("get_user") as session:
            row = await UserRepository(session).get(user_id)
            return User.model_validate(row) if row is not None else None

    async def require_user(self, user_id: str) -> User:
        """Like :meth:`get_user` but raises :class:`NotFoundError`."""
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def get_user_by_username(self, username: str) -> User | None:
        async with self._unit("get_user_by_username") as session:
            row = await UserRepository(session).get_by_username(username)
            return User.model_validate(row) if row is not None else None

    async def get_user_by_stripe_subscription(self, subscription_id: str) -> User | None:
        async with self._unit("get_user_by_stripe_subscription") as session:
            row = await UserRepository(session).get_by_stripe_subscription(subscription_id)
            return User.model_validate(row) if row is not None else None

    async def authenticate(self, username: str, password: str) -> User | None:
        async with self._unit("authenticate") as session:
            row = await UserRepository(session).authenticate(username, password)
            return User.model_validate(row) if row is not None else None

    async def apply_billing(self, user_id: str, write: BillingWrite) -> User:
        async with self._unit("apply_billing") as session:
            repo = UserRepository(session)
            if await repo.apply_billing(user_id, write) == 0:
                raise NotFoundError("User", user_id)
            row = await repo.get(user_id)
            return User.model_validate(row)

    async def users_past_deletion_deadline(self, now: datetime) -> list[User]:
        async with self._unit("users_past_deletion_deadline") as session:
            rows = await UserRepository(session).past_deletion_deadline(now)
            return [User.model_validate(r) for r in rows]

    async def delete_user(self, user_id: str) -> bool:
        async with self._unit("delete_user") as session:
            return await UserRepository(session).delete(user_id) > 0

    # -- Consent sessions ----------------------------------------------------

    async def create_session(
        self,
        data: SessionCreate,
        *,
        initiator_user_id: str,
        created_at: datetime,
        delete_after_days: int | None,
        retention_until: datetime | None,
    ) -> ConsentSession:
        async with self._unit("create_session") as session:
            initiator = await UserRepository(session).get(initiator_user_id)
            if initiator is None:
                raise NotFoundError("User", initiator_user_id)
            row = await ConsentSessionRepository(session).create(
                data,
                initiator=initiator,
                created_at=created_at,
                delete_after_days=delete_after_days,
                retention_until=retention_until,
            )
            return ConsentSession.model_validate(row)

    async def get_session(self, session_id: str) -> ConsentSession | None:
        async with self._unit("get_session") as session:
            row = await ConsentSessionRepository(session).get(session_id)
            return ConsentSession.model_validate(row) if row is not None else None

    async def require_session(self, session_id: str) -> ConsentSession:
        """Like :meth:`get_session` but raises :class:`NotFoundError`."""
        consent_session = await self.get_session(session_id)
        if consent_session is None:
            raise NotFoundError("Consent session", session_id)
        return consent_session

    async def get_session_by_qr_token(self, qr_code_id: str) -> ConsentSession | None:
        async with self._unit("get_session_by_qr_token") as session:
            row = await ConsentSessionRepository(session).get_by_qr_token(qr_code_id)
            return ConsentSession.model_validate(row) if row is not None else None

    async def list_sessions_for_initiator(
        self,
        initiator_user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConsentSession]:
        async with self._unit("list_sessions_for_initiator") as session:
            rows = await ConsentSessionRepository(session).list_for_initiator(
                initiator_user_id, limit=limit, offset=offset
            )
            return [ConsentSession.model_validate(r) for r in rows]

    async def session_ids_for_initiator(self, initiator_user_id: str) -> list[str]:
        async with self._unit("session_ids_for_initiator") as session:
            return await ConsentSessionRepository(session).ids_for_initiator(initiator_user_id)

    async def session_ids_for_video_asset(self, asset_id: str) -> list[str]:
        async with self._unit("session_ids_for_video_asset") as session:
            return await ConsentSessionRepository(session).ids_for_video_asset(asset_id)

    async def _write_session(
        self,
        operation: str,
        session_id: str,
        writer: Callable[[ConsentSessionRepository], Awaitable[int]],
    ) -> ConsentSession:
        """Apply *writer* to one session row and return the fresh snapshot."""
        async with self._unit(operation) as session:
            repo = ConsentSessionRepository(session)
            if await writer(repo) == 0:
                raise NotFoundError("Consent session", session_id)
            row = await repo.get(session_id)
            return ConsentSession.model_validate(row)

    async def set_status(self, session_id: str, change: StatusChange) -> ConsentSession:
        return await self._write_session("set_status", session_id, lambda repo: repo.set_status(session_id, change))

    async def set_ai_decision(self, session_id: str, write: AIDecisionWrite) -> ConsentSession:
        return await self._write_session(
            "set_ai_decision", session_id, lambda repo: repo.set_ai_decision(session_id, write)
        )

    async def set_verification(self, session_id: str, write: VerificationWrite) -> ConsentSession:
        return await self._write_session(
            "set_verification", session_id, lambda repo: repo.set_verification(session_id, write)
        )

    async def set_retention_exempt(self, session_id: str, exempt: bool) -> ConsentSession:
        return await self._write_session(
            "set_retention_exempt", session_id, lambda repo: repo.set_retention_exempt(session_id, exempt)
        )

    async def sessions_past_retention(self, now: datetime) -> list[ConsentSession]:
        async with self._unit("sessions_past_retention") as session:
            rows = await ConsentSessionRepository(session).past_retention(now)
            return [ConsentSession.model_validate(r) for r in rows]

    async def delete_session(self, session_id: str) -> bool:
        async with self._unit("delete_session") as session:
            return await ConsentSessionRepository(session).delete(session_id) > 0

    # -- Video assets --------------------------------------------------------

    async def create_video_asset(self, data: VideoAssetCreate, *, uploaded_at: datetime) -> VideoAsset:
        async with self._unit("create_video_asset") as session:
            row = await VideoAssetRepository(session).create(data, uploaded_at=uploaded_at)
            return VideoAsset.model_validate(row)

    async def get_video_asset(self, asset_id: str) -> VideoAsset | None:
        async with self._unit("get_video_asset") as session:
            row = await VideoAssetRepository(session).get(asset_id)
            return VideoAsset.model_validate(row) if row is not None else None

    async def require_video_asset(self, asset_id: str) -> VideoAsset:
        """Like :meth:`get_video_asset` but raises :class:`NotFoundError`."""
        asset = await self.get_video_asset(asset_id)
        if asset is None:
            raise NotFoundError("Video asset", asset_id)
        return asset

    async def list_video_assets_for_owner(self, owner_user_id: str) -> list[VideoAsset]:
        async with self._unit("list_video_assets_for_owner") as session:
            rows = await VideoAssetRepository(session).list_for_owner(owner_user_id)
            return [VideoAsset.model_validate(r) for r in rows]

    async def set_transcript(self, asset_id: str, write: TranscriptWrite) -> VideoAsset:
        async with self._unit("set_transcript") as session:
            repo = VideoAssetRepository(session)
            if await repo.set_transcript(asset_id, write) == 0:
                raise NotFoundError("Video asset", asset_id)
            row = await repo.get(asset_id)
            return VideoAsset.model_validate(row)

    async def delete_video_asset(self, asset_id: str) -> bool:
        async with self._unit("delete_video_asset") as session:
            return await VideoAssetRepository(session).delete(asset_id) > 0
