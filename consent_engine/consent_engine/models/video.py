"""Video asset domain models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class VideoAsset(BaseModel):
    """Snapshot of a ``video_assets`` row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_user_id: str | None = None
    filename: str
    original_name: str | None = None
    mime_type: str
    file_size: int
    duration_seconds: int | None = None
    storage_key: str
    checksum: str | None = None
    uploaded_at: datetime
    transcript: str | None = None
    transcription_confidence: int | None = None
    transcribed_at: datetime | None = None


class VideoAssetCreate(BaseModel):
    """Metadata registered once the media bytes are stored."""

    owner_user_id: str | None = None
    filename: str = Field(..., min_length=1, max_length=255)
    original_name: str | None = Field(default=None, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=128)
    file_size: int = Field(..., ge=0)
    duration_seconds: int | None = Field(default=None, ge=0)
    storage_key: str = Field(..., min_length=1, max_length=1024)
    checksum: str | None = Field(default=None, max_length=128)
