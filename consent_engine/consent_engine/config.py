"""Engine configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Consent engine policy settings loaded with the ``CONSENT_`` prefix.

    The defaults reproduce the production policy exactly; overriding them
    changes verification and retention behaviour.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONSENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Transcription confidence (0-100) below which mismatches are never flagged.
    mismatch_confidence_threshold: int = Field(default=70, ge=0, le=100)

    # Session retention window applied when the initiator does not choose one.
    default_delete_after_days: int = Field(default=90, ge=1)

    # Days between the end of a subscription and the account purge.
    account_deletion_grace_days: int = Field(default=7, ge=0)

    # Upper bound on a single AI oracle call.
    oracle_timeout_seconds: float = Field(default=30.0, gt=0)

    # When true only the intended lifecycle edges are legal; otherwise any
    # status may follow any other (gated only by the video requirement).
    strict_transitions: bool = False

    signed_url_ttl_seconds: int = Field(default=3600, ge=60)
    max_upload_bytes: int = Field(default=100 * 1024 * 1024, ge=1)


def load_engine_settings() -> EngineSettings:
    """Construct settings from the environment / ``.env`` file."""
    return EngineSettings()
