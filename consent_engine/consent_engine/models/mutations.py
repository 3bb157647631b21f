"""Write models that encode field ownership on shared rows.

The pipeline, the verify step and the state machine all write to the same
``consent_sessions`` row without locking.  Each writer is handed a
dedicated mutation type that only carries the columns it owns, and the
repository persists exactly ``mutation.columns()``.  Two writers can
therefore complete in any order without overwriting each other's fields.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from consent_engine.models.session import (
    AIDecision,
    ButtonChoice,
    ConsentStatus,
    VerificationStatus,
)
from consent_engine.models.user import SubscriptionStatus


class _Mutation(BaseModel):
    model_config = ConfigDict(frozen=True)

    def columns(self) -> dict[str, Any]:
        """Return the column values to write, enums flattened to strings."""
        values = self.model_dump(exclude=self._excluded())
        return {key: value.value if isinstance(value, Enum) else value for key, value in values.items()}

    def _excluded(self) -> set[str]:
        return set()


class StatusChange(_Mutation):
    """Owned by the consent state machine.

    Timestamps and the video reference are only written when set, so a
    revoke never clears an earlier grant time.
    """

    consent_status: ConsentStatus
    video_asset_id: str | None = None
    consent_granted_time: datetime | None = None
    consent_revoked_time: datetime | None = None

    def _excluded(self) -> set[str]:
        return {
            name
            for name in ("video_asset_id", "consent_granted_time", "consent_revoked_time")
            if getattr(self, name) is None
        }


class AIDecisionWrite(_Mutation):
    """Owned by the verification pipeline's analysis stage."""

    ai_analysis_result: AIDecision


class VerificationWrite(_Mutation):
    """Owned by the verify step."""

    button_choice: ButtonChoice
    verification_status: VerificationStatus
    has_audio_mismatch: bool
    verified_at: datetime


class TranscriptWrite(_Mutation):
    """Owned by the pipeline's transcription stage.  Written as one unit."""

    transcript: str
    transcription_confidence: int = Field(..., ge=0, le=100)
    transcribed_at: datetime


class BillingWrite(_Mutation):
    """Owned by the billing-event handler.

    ``subscription_end_date`` and ``account_deletion_date`` are written
    whenever ``touch_deadlines`` is set (``None`` clears a pending
    deletion); the Stripe identifiers and plan are only written when the
    event carried them.
    """

    subscription_status: SubscriptionStatus
    subscription_end_date: datetime | None = None
    account_deletion_date: datetime | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    subscription_plan: str | None = None
    touch_deadlines: bool = True

    def _excluded(self) -> set[str]:
        skipped = {
            name
            for name in ("stripe_customer_id", "stripe_subscription_id", "subscription_plan")
            if getattr(self, name) is None
        }
        skipped.add("touch_deadlines")
        if not self.touch_deadlines:
            skipped.update({"subscription_end_date", "account_deletion_date"})
        return skipped
