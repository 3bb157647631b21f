"""Repository classes providing CRUD access to the ConsentIQ state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for
committing (see :class:`consent_engine.state.store.EntityStore`).

Partial updates go through the mutation types in
:mod:`consent_engine.models.mutations`, which carry only the columns their
writer owns.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from consent_engine.models.mutations import (
    AIDecisionWrite,
    BillingWrite,
    StatusChange,
    TranscriptWrite,
    VerificationWrite,
)
from consent_engine.models.session import SessionCreate
from consent_engine.models.user import UserCreate
from consent_engine.models.video import VideoAssetCreate
from consent_engine.state.tables import ConsentSessionTable, UserTable, VideoAssetTable

logger = logging.getLogger(__name__)

# Bytes of entropy behind each QR correlation token.
_QR_TOKEN_BYTES = 24


def _new_id() -> str:
    return str(uuid.uuid4())


def new_qr_token() -> str:
    """Return an opaque, URL-safe, unguessable session correlation token."""
    return secrets.token_urlsafe(_QR_TOKEN_BYTES)


# ---------------------------------------------------------------------------
# UserRepository
# ---------------------------------------------------------------------------


class UserRepository:
    """CRUD operations for the ``users`` table.

    Password hashing uses bcrypt; the plaintext never reaches the table.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _hash_password(plaintext: str) -> str:
        """Hash a plaintext password with bcrypt."""
        import bcrypt

        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def _verify_password(plaintext: str, hashed: str) -> bool:
        """Verify a plaintext password against a bcrypt hash."""
        import bcrypt

        return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))

    async def create(self, data: UserCreate, *, created_at: datetime) -> UserTable:
        """Create a new user with a hashed password."""
        row = UserTable(
            id=_new_id(),
            username=data.username,
            password_hash=self._hash_password(data.password),
            full_name=data.full_name,
            phone_number=data.phone_number,
            profile_picture_url=data.profile_picture_url,
            role="user",
            subscription_status="none",
            created_at=created_at,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, user_id: str) -> UserTable | None:
        """Fetch a user by id."""
        result = await self._session.execute(select(UserTable).where(UserTable.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> UserTable | None:
        """Fetch a user by unique username."""
        result = await self._session.execute(select(UserTable).where(UserTable.username == username))
        return result.scalar_one_or_none()

    async def get_by_stripe_subscription(self, subscription_id: str) -> UserTable | None:
        """Fetch the user bound to a Stripe subscription id."""
        result = await self._session.execute(
            select(UserTable).where(UserTable.stripe_subscription_id == subscription_id)
        )
        return result.scalars().first()

    async def authenticate(self, username: str, password: str) -> UserTable | None:
        """Validate credentials and return the user if correct.

        Returns ``None`` if the username is not found or the password does not
        match.  A dummy hash is computed for unknown users so the response time
        does not reveal which usernames exist.
        """
        user = await self.get_by_username(username)
        if user is None:
            self._hash_password("dummy-password-for-timing")
            return None
        if not self._verify_password(password, user.password_hash):
            return None
        return user

    async def apply_billing(self, user_id: str, write: BillingWrite) -> int:
        """Persist a billing mutation.  Returns the number of rows updated."""
        stmt = update(UserTable).where(UserTable.id == user_id).values(**write.columns())
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0

    async def past_deletion_deadline(self, now: datetime) -> list[UserTable]:
        """Return users whose scheduled account deletion is due."""
        stmt = (
            select(UserTable)
            .where(
                UserTable.account_deletion_date.is_not(None),
                UserTable.account_deletion_date <= now,
            )
            .order_by(UserTable.account_deletion_date.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, user_id: str) -> int:
        """Hard-delete a user row.  Owned rows must already be gone."""
        result = await self._session.execute(delete(UserTable).where(UserTable.id == user_id))
        await self._session.flush()
        return result.rowcount or 0


# ---------------------------------------------------------------------------
# ConsentSessionRepository
# ---------------------------------------------------------------------------


class ConsentSessionRepository:
    """CRUD operations for the ``consent_sessions`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        data: SessionCreate,
        *,
        initiator: UserTable,
        created_at: datetime,
        delete_after_days: int | None,
        retention_until: datetime | None,
    ) -> ConsentSessionTable:
        """Insert a pending session for *initiator*.

        The initiator's display name and picture are copied onto the row so
        the recipient view does not need to read the ``users`` table.
        """
        row = ConsentSessionTable(
            id=_new_id(),
            created_at=created_at,
            initiator_user_id=initiator.id,
            initiator_full_name=initiator.full_name,
            initiator_profile_picture_url=initiator.profile_picture_url,
            recipient_full_name=data.recipient_full_name,
            recipient_phone=data.recipient_phone,
            verified_over_18=data.verified_over_18,
            consent_status="pending",
            session_start_time=created_at,
            qr_code_id=new_qr_token(),
            delete_after_days=delete_after_days,
            retention_until=retention_until,
            retention_exempt=False,
            verification_status="pending",
            has_audio_mismatch=False,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, session_id: str) -> ConsentSessionTable | None:
        """Fetch a session by id."""
        result = await self._session.execute(
            select(ConsentSessionTable).where(ConsentSessionTable.id == session_id)
        )
        return result.scalar_one_or_none()

    async def get_by_qr_token(self, qr_code_id: str) -> ConsentSessionTable | None:
        """Fetch a session by its public correlation token."""
        result = await self._session.execute(
            select(ConsentSessionTable).where(ConsentSessionTable.qr_code_id == qr_code_id)
        )
        return result.scalar_one_or_none()

    async def list_for_initiator(
        self,
        initiator_user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConsentSessionTable]:
        """Return an initiator's sessions, newest first."""
        stmt = (
            select(ConsentSessionTable)
            .where(ConsentSessionTable.initiator_user_id == initiator_user_id)
            .order_by(ConsentSessionTable.created_at.desc())
            .limit(max(1, min(limit, 200)))
            .offset(max(offset, 0))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def ids_for_initiator(self, initiator_user_id: str) -> list[str]:
        """Return the ids of every session owned by *initiator_user_id*."""
        result = await self._session.execute(
            select(ConsentSessionTable.id).where(ConsentSessionTable.initiator_user_id == initiator_user_id)
        )
        return list(result.scalars().all())

    async def ids_for_video_asset(self, asset_id: str) -> list[str]:
        """Return the ids of every session referencing *asset_id*."""
        result = await self._session.execute(
            select(ConsentSessionTable.id).where(ConsentSessionTable.video_asset_id == asset_id)
        )
        return list(result.scalars().all())

    async def _apply(
        self,
        session_id: str,
        write: StatusChange | AIDecisionWrite | VerificationWrite,
    ) -> int:
        stmt = (
            update(ConsentSessionTable)
            .where(ConsentSessionTable.id == session_id)
            .values(**write.columns())
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0

    async def set_status(self, session_id: str, change: StatusChange) -> int:
        """Write the state machine's columns."""
        return await self._apply(session_id, change)

    async def set_ai_decision(self, session_id: str, write: AIDecisionWrite) -> int:
        """Write the AI decision column only."""
        return await self._apply(session_id, write)

    async def set_verification(self, session_id: str, write: VerificationWrite) -> int:
        """Write the verify step's columns."""
        return await self._apply(session_id, write)

    async def set_retention_exempt(self, session_id: str, exempt: bool) -> int:
        """Place or lift a legal hold on a session."""
        stmt = (
            update(ConsentSessionTable)
            .where(ConsentSessionTable.id == session_id)
            .values(retention_exempt=exempt)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0

    async def past_retention(self, now: datetime) -> list[ConsentSessionTable]:
        """Return non-exempt sessions whose retention window has elapsed."""
        stmt = (
            select(ConsentSessionTable)
            .where(
                ConsentSessionTable.retention_until.is_not(None),
                ConsentSessionTable.retention_until <= now,
                ConsentSessionTable.retention_exempt.is_(False),
            )
            .order_by(ConsentSessionTable.retention_until.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, session_id: str) -> int:
        """Delete a session row."""
        result = await self._session.execute(
            delete(ConsentSessionTable).where(ConsentSessionTable.id == session_id)
        )
        await self._session.flush()
        return result.rowcount or 0


# ---------------------------------------------------------------------------
# VideoAssetRepository
# ---------------------------------------------------------------------------


class VideoAssetRepository:
    """CRUD operations for the ``video_assets`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, data: VideoAssetCreate, *, uploaded_at: datetime) -> VideoAssetTable:
        """Register metadata for media already written to the object store."""
        row = VideoAssetTable(
            id=_new_id(),
            owner_user_id=data.owner_user_id,
            filename=data.filename,
            original_name=data.original_name,
            mime_type=data.mime_type,
            file_size=data.file_size,
            duration_seconds=data.duration_seconds,
            storage_key=data.storage_key,
            checksum=data.checksum,
            uploaded_at=uploaded_at,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, asset_id: str) -> VideoAssetTable | None:
        """Fetch a video asset by id."""
        result = await self._session.execute(select(VideoAssetTable).where(VideoAssetTable.id == asset_id))
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner_user_id: str) -> list[VideoAssetTable]:
        """Return every asset uploaded by *owner_user_id*."""
        result = await self._session.execute(
            select(VideoAssetTable).where(VideoAssetTable.owner_user_id == owner_user_id)
        )
        return list(result.scalars().all())

    async def set_transcript(self, asset_id: str, write: TranscriptWrite) -> int:
        """Write transcript, confidence and timestamp in one statement."""
        stmt = update(VideoAssetTable).where(VideoAssetTable.id == asset_id).values(**write.columns())
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0

    async def delete(self, asset_id: str) -> int:
        """Delete a video asset row."""
        result = await self._session.execute(delete(VideoAssetTable).where(VideoAssetTable.id == asset_id))
        await self._session.flush()
        return result.rowcount or 0
