"""SQLAlchemy 2.0 ORM table definitions for the ConsentIQ state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.

Enum-valued columns are stored as plain strings; the allowed values are
owned by :mod:`consent_engine.models` and enforced at the repository seam.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware timestamp that behaves identically on SQLite.

    PostgreSQL stores ``timestamptz`` natively.  SQLite has no timezone
    support, so values are normalised to naive UTC on the way in and
    re-tagged as UTC on the way out.  Deadline comparisons in SQL are then
    consistent across both backends.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> Any:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all ConsentIQ tables."""


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserTable(Base):
    """Initiator accounts and their billing facts.

    Passwords are stored as bcrypt hashes; the plaintext is never persisted.
    ``account_deletion_date`` is only set while a cancellation or
    non-payment is outstanding.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    profile_picture_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")
    subscription_status: Mapped[str] = mapped_column(String(32), nullable=False, default="none")
    subscription_plan: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    account_deletion_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_users_account_deletion_date", "account_deletion_date"),
        Index("ix_users_stripe_subscription", "stripe_subscription_id"),
    )


# ---------------------------------------------------------------------------
# Video assets
# ---------------------------------------------------------------------------


class VideoAssetTable(Base):
    """Consent recording metadata plus the derived transcript.

    The media bytes live in the object store under ``storage_key``.
    """

    __tablename__ = "video_assets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    checksum: Mapped[str | None] = mapped_column(String(128), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcription_confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transcribed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (Index("ix_video_assets_owner", "owner_user_id"),)


# ---------------------------------------------------------------------------
# Consent sessions
# ---------------------------------------------------------------------------


class ConsentSessionTable(Base):
    """One consent interaction, addressed publicly by ``qr_code_id``.

    ``initiator_user_id`` is a weak reference: account deletion removes the
    sessions explicitly before removing the user row.
    """

    __tablename__ = "consent_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    initiator_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    initiator_full_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    initiator_profile_picture_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    recipient_full_name: Mapped[str] = mapped_column(String(256), nullable=False)
    recipient_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified_over_18: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    consent_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    session_start_time: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    consent_granted_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    consent_revoked_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    qr_code_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    video_asset_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("video_assets.id", ondelete="SET NULL"),
        nullable=True,
    )
    delete_after_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    retention_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    retention_exempt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    ai_analysis_result: Mapped[str | None] = mapped_column(String(32), nullable=True)
    has_audio_mismatch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    button_choice: Mapped[str | None] = mapped_column(String(16), nullable=True)

    __table_args__ = (
        Index("ix_consent_sessions_initiator", "initiator_user_id"),
        Index("ix_consent_sessions_retention_until", "retention_until"),
    )
