"""Consent recording upload and retrieval.

Uploads are anonymous (the recipient records on their own device) and
send the raw recording as the request body; metadata travels in the query
string.  When the upload names its consent session, the asset is owned by
the session's initiator so that account deletion can find it.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid

from consent_engine.errors import InputValidationError, StorageFailureError
from consent_engine.models.video import VideoAsset, VideoAssetCreate
from consent_engine.verification import validate_media_type
from fastapi import APIRouter, HTTPException, Query, Request

from api.dependencies import ClockDep, CurrentUserIdDep, EngineSettingsDep, MediaDep, StoreDep
from api.schemas import SignedUrlResponse, VideoAssetResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/videos", tags=["videos"])

_FILENAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")


def _validate_filename(filename: str) -> str:
    if not filename or len(filename) > 255 or not _FILENAME_RE.match(filename) or set(filename) == {"."}:
        raise InputValidationError("Invalid filename: use letters, digits, '.', '_' or '-' (max 255)")
    return filename


async def read_limited_body(request: Request, max_bytes: int) -> bytes:
    """Read the request body, refusing to buffer more than *max_bytes*."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise InputValidationError(f"Upload exceeds the {max_bytes} byte limit")
    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > max_bytes:
            raise InputValidationError(f"Upload exceeds the {max_bytes} byte limit")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("", status_code=201)
async def upload_video(
    request: Request,
    store: StoreDep,
    media: MediaDep,
    engine_settings: EngineSettingsDep,
    clock: ClockDep,
    filename: str = Query(..., max_length=255),
    original_name: str | None = Query(default=None, max_length=255),
    session_id: str | None = Query(default=None, max_length=64),
    duration_seconds: int | None = Query(default=None, ge=0),
) -> VideoAssetResponse:
    """Store a recording and register its metadata.

    The blob is written first; if the metadata insert then fails the blob
    is removed again so that no unreferenced recording is left behind.
    """
    _validate_filename(filename)
    mime_type = validate_media_type(request.headers.get("content-type", ""))

    owner_user_id = getattr(request.state, "user_id", None)
    if session_id is not None:
        owner_user_id = (await store.require_session(session_id)).initiator_user_id

    data = await read_limited_body(request, engine_settings.max_upload_bytes)
    if not data:
        raise InputValidationError("No video data provided")

    storage_key = f"{uuid.uuid4()}/{filename}"
    await media.put(storage_key, data, mime_type)
    try:
        asset = await store.create_video_asset(
            VideoAssetCreate(
                owner_user_id=owner_user_id,
                filename=filename,
                original_name=original_name,
                mime_type=mime_type,
                file_size=len(data),
                duration_seconds=duration_seconds,
                storage_key=storage_key,
                checksum=hashlib.sha256(data).hexdigest(),
            ),
            uploaded_at=clock(),
        )
    except Exception:
        try:
            await media.delete(storage_key)
        except StorageFailureError as exc:
            logger.error("Orphaned blob %s after failed metadata insert: %s", storage_key, exc.message)
        raise

    logger.info("Uploaded video asset %s (%d bytes, %s)", asset.id, asset.file_size, mime_type)
    return VideoAssetResponse.from_asset(asset)


async def _visible_asset(store: StoreDep, video_asset_id: str, user_id: str) -> VideoAsset:
    asset = await store.require_video_asset(video_asset_id)
    if asset.owner_user_id is not None and asset.owner_user_id != user_id:
        raise HTTPException(status_code=403, detail="Not the owner of this video")
    return asset


@router.get("/{video_asset_id}")
async def get_video(video_asset_id: str, user_id: CurrentUserIdDep, store: StoreDep) -> VideoAssetResponse:
    return VideoAssetResponse.from_asset(await _visible_asset(store, video_asset_id, user_id))


@router.get("/{video_asset_id}/url")
async def get_video_url(
    video_asset_id: str,
    user_id: CurrentUserIdDep,
    store: StoreDep,
    media: MediaDep,
    engine_settings: EngineSettingsDep,
) -> SignedUrlResponse:
    """Mint a time-limited read URL for the recording."""
    asset = await _visible_asset(store, video_asset_id, user_id)
    ttl = engine_settings.signed_url_ttl_seconds
    url = await media.get_signed_read_url(asset.storage_key, ttl)
    return SignedUrlResponse(video_asset_id=asset.id, url=url, expires_in=ttl)
