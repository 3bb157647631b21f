"""Initial schema for the ConsentIQ state store.

Creates ``users``, ``video_assets`` and ``consent_sessions``.  Session
retention columns are nullable: a NULL ``delete_after_days`` /
``retention_until`` pair means the session is kept permanently.

Revision ID: 001
Revises: None
Create Date: 2025-09-01 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("username", sa.String(64), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(256), nullable=False),
        sa.Column("full_name", sa.String(256), nullable=True),
        sa.Column("phone_number", sa.String(64), nullable=True),
        sa.Column("profile_picture_url", sa.Text(), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="user"),
        sa.Column("subscription_status", sa.String(32), nullable=False, server_default="none"),
        sa.Column("subscription_plan", sa.String(32), nullable=True),
        sa.Column("stripe_customer_id", sa.String(128), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(128), nullable=True),
        sa.Column("subscription_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("account_deletion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "subscription_status IN ('none', 'active', 'past_due', 'canceled')",
            name="ck_users_subscription_status",
        ),
    )
    op.create_index("ix_users_account_deletion_date", "users", ["account_deletion_date"])
    op.create_index("ix_users_stripe_subscription", "users", ["stripe_subscription_id"])

    # ------------------------------------------------------------------
    # video_assets
    # ------------------------------------------------------------------
    op.create_table(
        "video_assets",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("owner_user_id", sa.String(64), nullable=True),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=True),
        sa.Column("mime_type", sa.String(128), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("storage_key", sa.String(1024), nullable=False),
        sa.Column("checksum", sa.String(128), nullable=True),
        sa.Column(
            "uploaded_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("transcription_confidence", sa.Integer(), nullable=True),
        sa.Column("transcribed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "transcription_confidence IS NULL OR transcription_confidence BETWEEN 0 AND 100",
            name="ck_video_assets_confidence_range",
        ),
    )
    op.create_index("ix_video_assets_owner", "video_assets", ["owner_user_id"])

    # ------------------------------------------------------------------
    # consent_sessions
    # ------------------------------------------------------------------
    op.create_table(
        "consent_sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("initiator_user_id", sa.String(64), nullable=False),
        sa.Column("initiator_full_name", sa.String(256), nullable=True),
        sa.Column("initiator_profile_picture_url", sa.Text(), nullable=True),
        sa.Column("recipient_full_name", sa.String(256), nullable=False),
        sa.Column("recipient_phone", sa.String(64), nullable=True),
        sa.Column("verified_over_18", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("consent_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("session_start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consent_granted_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consent_revoked_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("qr_code_id", sa.String(64), nullable=False, unique=True),
        sa.Column(
            "video_asset_id",
            sa.String(64),
            sa.ForeignKey("video_assets.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("delete_after_days", sa.Integer(), nullable=True),
        sa.Column("retention_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retention_exempt", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verification_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("ai_analysis_result", sa.String(32), nullable=True),
        sa.Column("has_audio_mismatch", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("button_choice", sa.String(16), nullable=True),
        sa.CheckConstraint(
            "consent_status IN ('pending', 'granted', 'denied', 'revoked')",
            name="ck_consent_sessions_status",
        ),
    )
    op.create_index("ix_consent_sessions_initiator", "consent_sessions", ["initiator_user_id"])
    op.create_index("ix_consent_sessions_retention_until", "consent_sessions", ["retention_until"])


def downgrade() -> None:
    op.drop_table("consent_sessions")
    op.drop_table("video_assets")
    op.drop_table("users")
