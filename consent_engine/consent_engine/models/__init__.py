"""Domain models for the consent engine."""

from consent_engine.models.mutations import (
    AIDecisionWrite,
    BillingWrite,
    StatusChange,
    TranscriptWrite,
    VerificationWrite,
)
from consent_engine.models.oracle import ConsentAnalysis, TranscriptionResult
from consent_engine.models.session import (
    AIDecision,
    ButtonChoice,
    ConsentSession,
    ConsentStatus,
    PublicSessionView,
    SessionCreate,
    VerificationStatus,
)
from consent_engine.models.user import BillingEvent, SubscriptionStatus, User, UserCreate
from consent_engine.models.video import VideoAsset, VideoAssetCreate

__all__ = [
    "AIDecision",
    "AIDecisionWrite",
    "BillingEvent",
    "BillingWrite",
    "ButtonChoice",
    "ConsentAnalysis",
    "ConsentSession",
    "ConsentStatus",
    "PublicSessionView",
    "SessionCreate",
    "StatusChange",
    "SubscriptionStatus",
    "TranscriptWrite",
    "TranscriptionResult",
    "User",
    "UserCreate",
    "VerificationStatus",
    "VerificationWrite",
    "VideoAsset",
    "VideoAssetCreate",
]
