"""Video verification pipeline.

``process_video`` runs the two oracle stages for an uploaded recording and
persists their results with disjoint mutations:

1. transcription -> :class:`TranscriptWrite` on the video asset
2. consent analysis -> :class:`AIDecisionWrite` on the session

The transcript is committed before analysis starts, so an analysis failure
never loses it.  Oracle errors, timeouts and malformed payloads are absorbed
and replaced by zero-confidence sentinel results; storage errors always
propagate.

``verify`` reconciles the stored AI decision with the recipient's button
click, records the audit outcome, and then moves the session to the button
choice.  The mismatch flag is advisory only and never overrides the human
decision.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from consent_engine.errors import (
    AnalysisNotReadyError,
    InputValidationError,
    OracleFailureError,
)
from consent_engine.lifecycle.state_machine import ConsentLifecycle
from consent_engine.models.mutations import AIDecisionWrite, TranscriptWrite, VerificationWrite
from consent_engine.models.oracle import ConsentAnalysis, TranscriptionResult
from consent_engine.models.session import (
    AIDecision,
    ButtonChoice,
    ConsentSession,
    VerificationStatus,
)
from consent_engine.state.store import EntityStore
from consent_engine.verification.mismatch import (
    DEFAULT_MISMATCH_THRESHOLD,
    determine_mismatch,
    scale_confidence,
)
from consent_engine.verification.oracle import AIOracle

logger = logging.getLogger(__name__)

_T = TypeVar("_T", bound=BaseModel)

SUPPORTED_ANALYSIS_MIME_TYPES = frozenset({"video/mp4", "video/webm", "video/quicktime", "video/avi"})

# Browser recordings are webm; used when the upload's type is not supported.
DEFAULT_ANALYSIS_MIME_TYPE = "video/webm"

_GENERIC_UPLOAD_MIME_TYPE = "application/octet-stream"


def _base_mime_type(mime_type: str) -> str:
    return mime_type.split(";", 1)[0].strip().lower()


def validate_media_type(mime_type: str) -> str:
    """Return the normalised mime type or raise :class:`InputValidationError`.

    Accepts any ``video/*`` type plus ``application/octet-stream``, which
    some browsers report for recorded blobs.
    """
    base = _base_mime_type(mime_type or "")
    if base.startswith("video/") and len(base) > len("video/"):
        return base
    if base == _GENERIC_UPLOAD_MIME_TYPE:
        return base
    raise InputValidationError(f"Unsupported media type {mime_type!r}; expected video/*")


def analysis_mime_type(mime_type: str) -> str:
    """Map an upload mime type onto one the analysis oracle accepts."""
    base = _base_mime_type(mime_type)
    return base if base in SUPPORTED_ANALYSIS_MIME_TYPES else DEFAULT_ANALYSIS_MIME_TYPE


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ProcessingResult(BaseModel):
    """Outcome of one ``process_video`` run.  Confidences are 0-100."""

    session_id: str
    video_asset_id: str
    transcript: str
    transcription_confidence: int
    transcription_degraded: bool = False
    decision: AIDecision
    analysis_confidence: int
    reasoning: str = ""
    analysis_degraded: bool = False


class VerificationOutcome(BaseModel):
    """Outcome of ``verify``; ``session`` reflects the final status."""

    session: ConsentSession
    ai_analysis_result: AIDecision
    button_choice: ButtonChoice
    confidence: int
    has_audio_mismatch: bool
    verification_status: VerificationStatus


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class VerificationPipeline:
    """Drives transcription, analysis and verification for consent sessions.

    Parameters
    ----------
    store:
        Entity store holding sessions and video assets.
    oracle:
        AI oracle adapter (see :class:`AIOracle`).
    lifecycle:
        Used by ``verify`` to move the session to the button choice.
    mismatch_threshold:
        Transcription confidence (0-100) below which no mismatch is flagged.
    oracle_timeout_seconds:
        Upper bound on each oracle call; a timeout counts as an oracle failure.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: EntityStore,
        oracle: AIOracle,
        lifecycle: ConsentLifecycle,
        *,
        mismatch_threshold: int = DEFAULT_MISMATCH_THRESHOLD,
        oracle_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._oracle = oracle
        self._lifecycle = lifecycle
        self._threshold = mismatch_threshold
        self._timeout = oracle_timeout_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _call_oracle(
        self,
        stage: str,
        call: Callable[[], Awaitable[Mapping[str, Any]]],
        model: type[_T],
    ) -> _T:
        """Run one oracle call under the timeout and validate its payload.

        Raises
        ------
        OracleFailureError
            On any error, timeout, or payload that fails validation.
        """
        try:
            raw = await asyncio.wait_for(call(), timeout=self._timeout)
        except TimeoutError as exc:
            raise OracleFailureError(f"{stage} timed out after {self._timeout:g}s") from exc
        except OracleFailureError:
            raise
        except Exception as exc:
            raise OracleFailureError(f"{stage} error: {exc}") from exc

        if not isinstance(raw, Mapping):
            raise OracleFailureError(f"{stage} returned a non-object payload")
        try:
            return model.model_validate(dict(raw))
        except ValidationError as exc:
            raise OracleFailureError(f"{stage} returned a malformed payload: {exc.error_count()} error(s)") from exc

    async def process_video(
        self,
        session_id: str,
        video_asset_id: str,
        media: bytes,
        mime_type: str,
    ) -> ProcessingResult:
        """Transcribe and analyze *media*, persisting both results.

        Raises
        ------
        InputValidationError
            Missing ids, empty media, or a non-video mime type.
        NotFoundError
            Unknown session or video asset.
        StorageFailureError
            Either persistence step failed.
        """
        if not session_id or not video_asset_id:
            raise InputValidationError("Session ID and video asset ID are required")
        if not media:
            raise InputValidationError("No video data provided")
        upload_type = validate_media_type(mime_type)

        await self._store.require_session(session_id)
        await self._store.require_video_asset(video_asset_id)

        logger.info("Processing video %s for session %s (%d bytes)", video_asset_id, session_id, len(media))

        # -- Stage 1: transcription ----------------------------------------
        transcription_degraded = False
        try:
            transcription = await self._call_oracle(
                "Transcription",
                lambda: self._oracle.transcribe(media, upload_type),
                TranscriptionResult,
            )
        except OracleFailureError as exc:
            logger.warning("Transcription degraded for asset %s: %s", video_asset_id, exc.message)
            transcription = TranscriptionResult(transcript=f"Transcription failed: {exc.message}", confidence=0.0)
            transcription_degraded = True

        transcription_confidence = scale_confidence(transcription.confidence)
        await self._store.set_transcript(
            video_asset_id,
            TranscriptWrite(
                transcript=transcription.transcript,
                transcription_confidence=transcription_confidence,
                transcribed_at=self._clock(),
            ),
        )

        # -- Stage 2: consent analysis -------------------------------------
        analysis_degraded = False
        target_type = analysis_mime_type(upload_type)
        try:
            analysis = await self._call_oracle(
                "Analysis",
                lambda: self._oracle.analyze(media, target_type),
                ConsentAnalysis,
            )
        except OracleFailureError as exc:
            logger.warning("Analysis degraded for session %s: %s", session_id, exc.message)
            analysis = ConsentAnalysis(
                decision=AIDecision.UNCLEAR,
                confidence=0.0,
                reasoning=f"Analysis failed: {exc.message}",
            )
            analysis_degraded = True

        await self._store.set_ai_decision(session_id, AIDecisionWrite(ai_analysis_result=analysis.decision))

        result = ProcessingResult(
            session_id=session_id,
            video_asset_id=video_asset_id,
            transcript=transcription.transcript,
            transcription_confidence=transcription_confidence,
            transcription_degraded=transcription_degraded,
            decision=analysis.decision,
            analysis_confidence=scale_confidence(analysis.confidence),
            reasoning=analysis.reasoning,
            analysis_degraded=analysis_degraded,
        )
        logger.info(
            "Session %s analysis=%s (%d%%) transcription confidence=%d%%",
            session_id,
            result.decision.value,
            result.analysis_confidence,
            result.transcription_confidence,
        )
        return result

    async def verify(
        self,
        session_id: str,
        button_choice: ButtonChoice | str,
        video_asset_id: str,
    ) -> VerificationOutcome:
        """Record the button choice, flag any mismatch, and apply the choice.

        Raises
        ------
        InputValidationError
            Unknown button choice, missing ids, or an asset uploaded by
            another user.
        NotFoundError
            Unknown session or video asset.
        InvalidTransitionError
            The asset is already attached to another session.
        AnalysisNotReadyError
            ``process_video`` has not stored an AI decision yet.
        """
        if not session_id or not video_asset_id:
            raise InputValidationError("Session ID and video asset ID are required")
        try:
            choice = ButtonChoice(button_choice)
        except ValueError:
            raise InputValidationError(f"Invalid button choice {button_choice!r}; expected granted or denied") from None

        session = await self._store.require_session(session_id)
        if session.ai_analysis_result is None:
            raise AnalysisNotReadyError(
                f"Video must be processed before verification; no AI analysis for session {session_id}"
            )
        # Rejects foreign or already-attached assets before anything is written.
        asset = await self._lifecycle.check_attachable(session, video_asset_id)
        confidence = asset.transcription_confidence or 0

        mismatch = determine_mismatch(session.ai_analysis_result, choice, confidence, self._threshold)
        status = VerificationStatus.MISMATCH if mismatch else VerificationStatus.VERIFIED

        await self._store.set_verification(
            session_id,
            VerificationWrite(
                button_choice=choice,
                verification_status=status,
                has_audio_mismatch=mismatch,
                verified_at=self._clock(),
            ),
        )
        logger.info(
            "Verification for session %s: ai=%s button=%s confidence=%d%% mismatch=%s",
            session_id,
            session.ai_analysis_result.value,
            choice.value,
            confidence,
            mismatch,
        )

        updated = await self._lifecycle.set_status(session_id, choice.value, video_asset_id)
        return VerificationOutcome(
            session=updated,
            ai_analysis_result=session.ai_analysis_result,
            button_choice=choice,
            confidence=confidence,
            has_audio_mismatch=mismatch,
            verification_status=status,
        )
