"""AI-assisted verification of consent recordings."""

from consent_engine.verification.mismatch import determine_mismatch, scale_confidence
from consent_engine.verification.oracle import AIOracle
from consent_engine.verification.pipeline import (
    ProcessingResult,
    VerificationOutcome,
    VerificationPipeline,
    analysis_mime_type,
    validate_media_type,
)

__all__ = [
    "AIOracle",
    "ProcessingResult",
    "VerificationOutcome",
    "VerificationPipeline",
    "analysis_mime_type",
    "determine_mismatch",
    "scale_confidence",
    "validate_media_type",
]
