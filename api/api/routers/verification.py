"""AI processing and the verification gate.

Both endpoints are called from the recipient's device and are anonymous.
``process-video`` accepts the raw recording as the request body.
"""

from __future__ import annotations

import logging

from consent_engine.verification import ProcessingResult
from fastapi import APIRouter, Query, Request

from api.dependencies import EngineSettingsDep, PipelineDep
from api.routers.videos import read_limited_body
from api.schemas import VerifyRequest, VerifyResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consent", tags=["verification"])


@router.post("/process-video")
async def process_video(
    request: Request,
    pipeline: PipelineDep,
    engine_settings: EngineSettingsDep,
    session_id: str = Query(..., min_length=1, max_length=64),
    video_asset_id: str = Query(..., min_length=1, max_length=64),
) -> ProcessingResult:
    """Transcribe and analyze the recording.

    Oracle failures do not fail the request: the result is flagged as
    degraded and the session's AI decision is recorded as UNCLEAR.
    """
    media = await read_limited_body(request, engine_settings.max_upload_bytes)
    return await pipeline.process_video(session_id, video_asset_id, media, request.headers.get("content-type", ""))


@router.post("/verify")
async def verify(body: VerifyRequest, pipeline: PipelineDep) -> VerifyResponse:
    """Record the button choice, compare it with the AI decision and apply it.

    Returns 409 until ``process-video`` has stored an AI decision.
    """
    outcome = await pipeline.verify(body.session_id, body.button_choice, body.video_asset_id)
    return VerifyResponse(
        session_id=outcome.session.id,
        ai_analysis_result=outcome.ai_analysis_result,
        button_choice=outcome.button_choice,
        confidence=outcome.confidence,
        has_audio_mismatch=outcome.has_audio_mismatch,
        verification_status=outcome.verification_status,
        consent_status=outcome.session.consent_status.value,
    )
