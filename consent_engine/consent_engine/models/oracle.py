"""Payload contracts of the AI oracle.

The oracle is untrusted: its raw responses are validated against these
models and any payload that fails validation is treated as an oracle
failure.  Confidences are floats in ``[0, 1]`` at this boundary and are
scaled to integer percentages before they are persisted.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from consent_engine.models.session import AIDecision


class TranscriptionResult(BaseModel):
    """Speech-to-text output for a consent recording."""

    transcript: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class ConsentAnalysis(BaseModel):
    """Consent decision inferred from a recording."""

    decision: AIDecision
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
