"""Gemini adapter for the consent verification oracle.

Sends the recorded media inline to a Gemini model and asks for a JSON
response constrained by a schema.  The adapter returns the decoded JSON
mapping unchanged; :class:`~consent_engine.verification.VerificationPipeline`
validates it, enforces the timeout and degrades failures to sentinels.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from consent_engine.models.session import AIDecision

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_TRANSCRIPTION_SYSTEM_PROMPT = (
    "You are a speech transcription assistant. Transcribe the spoken words in the "
    "provided recording exactly as said. Do not add commentary. Return JSON with "
    '"transcript" (the full text) and "confidence" (a number between 0.0 and 1.0 '
    "reflecting how clearly the speech could be understood)."
)

_TRANSCRIPTION_USER_PROMPT = "Transcribe this audio accurately, focusing on any consent-related statements."

_ANALYSIS_SYSTEM_PROMPT = (
    "You are a consent verification assistant. Analyze the recording and decide "
    "whether the person clearly grants or clearly denies consent. Look for an "
    "explicit verbal statement of consent or refusal, whether the person states "
    "their name, and body language that supports or contradicts the words. "
    "If the statement is ambiguous, inaudible or missing, answer UNCLEAR. "
    'Return JSON with "decision" (CONSENT_GRANTED, CONSENT_DENIED or UNCLEAR), '
    '"confidence" (a number between 0.1 and 1.0) and "reasoning" (one or two sentences).'
)

_ANALYSIS_USER_PROMPT = "Analyze this consent video and determine if the person clearly grants or denies consent."

_TRANSCRIPTION_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "transcript": {"type": "STRING"},
        "confidence": {"type": "NUMBER"},
    },
    "required": ["transcript", "confidence"],
}

_ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "decision": {"type": "STRING", "enum": [d.value for d in AIDecision]},
        "confidence": {"type": "NUMBER"},
        "reasoning": {"type": "STRING"},
    },
    "required": ["decision", "confidence", "reasoning"],
}


class GeminiOracle:
    """:class:`~consent_engine.verification.AIOracle` backed by google-genai.

    Parameters
    ----------
    api_key:
        Gemini API key.  When empty every call raises, which the pipeline
        records as a degraded (UNCLEAR, zero-confidence) result.
    model:
        Gemini model name.
    client:
        Pre-built ``genai.Client``; tests inject a mock here.
    """

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash", client: Any = None) -> None:
        self._api_key = api_key
        self._model = model
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> Any:
        """Lazily import google-genai and build the client."""
        if self._client is None:
            if not self._api_key:
                raise RuntimeError("Gemini API key is not configured")
            from google import genai

            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def _generate(
        self,
        media: bytes,
        mime_type: str,
        *,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
    ) -> Mapping[str, Any]:
        from google.genai import types

        client = self._get_client()
        response = await client.aio.models.generate_content(
            model=self._model,
            contents=[
                types.Part.from_bytes(data=media, mime_type=mime_type),
                user_prompt,
            ],
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )
        text = (response.text or "").strip()
        if not text:
            raise ValueError("Gemini returned an empty response")
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError(f"Gemini returned {type(payload).__name__}, expected an object")
        return payload

    async def transcribe(self, media: bytes, mime_type: str) -> Mapping[str, Any]:
        return await self._generate(
            media,
            mime_type,
            system_prompt=_TRANSCRIPTION_SYSTEM_PROMPT,
            user_prompt=_TRANSCRIPTION_USER_PROMPT,
            schema=_TRANSCRIPTION_SCHEMA,
        )

    async def analyze(self, media: bytes, mime_type: str) -> Mapping[str, Any]:
        return await self._generate(
            media,
            mime_type,
            system_prompt=_ANALYSIS_SYSTEM_PROMPT,
            user_prompt=_ANALYSIS_USER_PROMPT,
            schema=_ANALYSIS_SCHEMA,
        )

    async def health_check(self) -> bool:
        """Return ``True`` when the configured model can be looked up."""
        if not self.configured:
            return False
        try:
            await self._get_client().aio.models.get(model=self._model)
        except Exception as exc:
            logger.warning("Gemini health check failed: %s", exc)
            return False
        return True
