"""Abstract interface for the AI consent oracle.

The oracle is an untrusted, slow, external collaborator.  Adapters return
raw JSON-like mappings; :class:`~consent_engine.verification.pipeline.VerificationPipeline`
validates them against :class:`~consent_engine.models.oracle.TranscriptionResult`
and :class:`~consent_engine.models.oracle.ConsentAnalysis`, bounds every
call with a timeout, and degrades on any failure.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol


class AIOracle(Protocol):
    """Structural interface for speech transcription and consent analysis.

    Implementations are **not** required to subclass this protocol; they only
    need to expose methods with matching signatures (duck typing).
    """

    async def transcribe(self, media: bytes, mime_type: str) -> Mapping[str, Any]:
        """Transcribe the speech in a recording.

        Parameters
        ----------
        media:
            Raw bytes of the uploaded recording.
        mime_type:
            Content type reported by the uploader.

        Returns
        -------
        Mapping
            ``{"transcript": str, "confidence": float in [0, 1]}``.
        """
        ...

    async def analyze(self, media: bytes, mime_type: str) -> Mapping[str, Any]:
        """Infer the recipient's consent decision from a recording.

        Parameters
        ----------
        media:
            Raw bytes of the uploaded recording.
        mime_type:
            A supported video content type.

        Returns
        -------
        Mapping
            ``{"decision": "CONSENT_GRANTED" | "CONSENT_DENIED" | "UNCLEAR",
            "confidence": float in [0, 1], "reasoning": str}``.
        """
        ...
