"""Consent session domain models.

A ``ConsentSession`` records one interaction between an initiator and a
recipient.  The recipient reaches it through the public ``qr_code_id``;
the initiator owns it through ``initiator_user_id``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ConsentStatus(str, Enum):
    """Authoritative, human-facing outcome of a session."""

    PENDING = "pending"
    GRANTED = "granted"
    DENIED = "denied"
    REVOKED = "revoked"


class VerificationStatus(str, Enum):
    """Audit outcome of comparing the AI decision with the button choice."""

    PENDING = "pending"
    VERIFIED = "verified"
    MISMATCH = "mismatch"


class AIDecision(str, Enum):
    """Decision inferred by the AI oracle from the consent recording."""

    CONSENT_GRANTED = "CONSENT_GRANTED"
    CONSENT_DENIED = "CONSENT_DENIED"
    UNCLEAR = "UNCLEAR"


class ButtonChoice(str, Enum):
    """What the recipient explicitly clicked."""

    GRANTED = "granted"
    DENIED = "denied"


class ConsentSession(BaseModel):
    """Snapshot of a ``consent_sessions`` row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime
    initiator_user_id: str
    initiator_full_name: str | None = None
    initiator_profile_picture_url: str | None = None
    recipient_full_name: str
    recipient_phone: str | None = None
    verified_over_18: bool = True
    consent_status: ConsentStatus = ConsentStatus.PENDING
    session_start_time: datetime
    consent_granted_time: datetime | None = None
    consent_revoked_time: datetime | None = None
    qr_code_id: str
    video_asset_id: str | None = None
    delete_after_days: int | None = None
    retention_until: datetime | None = None
    retention_exempt: bool = False
    verification_status: VerificationStatus = VerificationStatus.PENDING
    ai_analysis_result: AIDecision | None = None
    has_audio_mismatch: bool = False
    verified_at: datetime | None = None
    button_choice: ButtonChoice | None = None


class SessionCreate(BaseModel):
    """Initiator-supplied fields for a new session.

    ``delete_after_days=None`` requests permanent retention; omitting the
    field applies the configured default window.
    """

    recipient_full_name: str = Field(..., min_length=1, max_length=256)
    recipient_phone: str | None = Field(default=None, max_length=64)
    verified_over_18: bool = True
    delete_after_days: int | None = Field(default=90, ge=1, le=3650)


class PublicSessionView(BaseModel):
    """Projection served to the recipient through the QR token.

    Excludes the initiator's user id and the recipient's phone number.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    qr_code_id: str
    initiator_full_name: str | None = None
    initiator_profile_picture_url: str | None = None
    recipient_full_name: str
    verified_over_18: bool
    consent_status: ConsentStatus
    session_start_time: datetime
