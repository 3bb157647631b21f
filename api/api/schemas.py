"""Shared Pydantic request/response models for API endpoints.

Domain models from :mod:`consent_engine.models` are returned directly where
their shape is already public; the schemas here cover request bodies and
views that hide internal fields (password hashes, storage keys).
"""

from __future__ import annotations

from datetime import datetime

from consent_engine.models.session import AIDecision, ButtonChoice, ConsentSession, VerificationStatus
from consent_engine.models.user import SubscriptionStatus, User
from consent_engine.models.video import VideoAsset
from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account."""

    id: str
    username: str
    full_name: str | None = None
    phone_number: str | None = None
    profile_picture_url: str | None = None
    subscription_status: SubscriptionStatus
    subscription_plan: str | None = None
    subscription_end_date: datetime | None = None
    account_deletion_date: datetime | None = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        return cls.model_validate(user.model_dump())


class LoginRequest(BaseModel):
    """Request body for username/password credential checks."""

    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Consent sessions
# ---------------------------------------------------------------------------


class SessionListResponse(BaseModel):
    """Paginated list of the caller's sessions."""

    sessions: list[ConsentSession]
    limit: int
    offset: int


class StatusUpdateRequest(BaseModel):
    """Body for ``PATCH /consent/sessions/{id}/status``."""

    status: str = Field(..., min_length=1, max_length=32)
    video_asset_id: str | None = Field(default=None, max_length=64)


class RetentionHoldRequest(BaseModel):
    """Body for ``PUT /consent/sessions/{id}/retention-hold``."""

    exempt: bool


# ---------------------------------------------------------------------------
# Video assets
# ---------------------------------------------------------------------------


class VideoAssetResponse(BaseModel):
    """Video metadata without the internal storage key."""

    id: str
    owner_user_id: str | None = None
    filename: str
    original_name: str | None = None
    mime_type: str
    file_size: int
    duration_seconds: int | None = None
    checksum: str | None = None
    uploaded_at: datetime
    transcript: str | None = None
    transcription_confidence: int | None = None
    transcribed_at: datetime | None = None

    @classmethod
    def from_asset(cls, asset: VideoAsset) -> VideoAssetResponse:
        return cls.model_validate(asset.model_dump(exclude={"storage_key"}))


class SignedUrlResponse(BaseModel):
    """Time-limited read URL for a recording."""

    video_asset_id: str
    url: str
    expires_in: int


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class VerifyRequest(BaseModel):
    """Body for ``POST /consent/verify``."""

    session_id: str = Field(..., min_length=1, max_length=64)
    button_choice: str = Field(..., min_length=1, max_length=32)
    video_asset_id: str = Field(..., min_length=1, max_length=64)


class VerifyResponse(BaseModel):
    """Result of the verification gate."""

    session_id: str
    ai_analysis_result: AIDecision
    button_choice: ButtonChoice
    confidence: int
    has_audio_mismatch: bool
    verification_status: VerificationStatus
    consent_status: str
