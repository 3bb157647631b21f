"""Tests for api/api/services/oracle_client.py

The google-genai client is replaced by a mock; only the request shape and
the JSON decoding are exercised here.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from api.services.oracle_client import GeminiOracle


def _mock_client(text: str | None) -> MagicMock:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=text))
    client.aio.models.get = AsyncMock(return_value=SimpleNamespace(name="models/gemini-2.5-flash"))
    return client


class TestGenerate:
    """Verify transcription and analysis calls."""

    @pytest.mark.asyncio
    async def test_transcribe_returns_decoded_json(self) -> None:
        client = _mock_client(json.dumps({"transcript": "I consent", "confidence": 0.9}))
        oracle = GeminiOracle(api_key="", client=client)

        result = await oracle.transcribe(b"webm", "video/webm")
        assert result == {"transcript": "I consent", "confidence": 0.9}

        kwargs = client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        assert kwargs["config"].response_mime_type == "application/json"
        media_part, prompt = kwargs["contents"]
        assert media_part.inline_data.mime_type == "video/webm"
        assert media_part.inline_data.data == b"webm"
        assert "Transcribe" in prompt

    @pytest.mark.asyncio
    async def test_analyze_sends_media_and_prompt(self) -> None:
        client = _mock_client(json.dumps({"decision": "UNCLEAR", "confidence": 0.2, "reasoning": "muffled"}))
        oracle = GeminiOracle(api_key="", model="gemini-test", client=client)

        result = await oracle.analyze(b"webm", "video/mp4")
        assert result["decision"] == "UNCLEAR"

        kwargs = client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == "gemini-test"
        media_part, prompt = kwargs["contents"]
        assert media_part.inline_data.mime_type == "video/mp4"
        assert "consent" in prompt

    @pytest.mark.asyncio
    async def test_empty_response_raises(self) -> None:
        oracle = GeminiOracle(api_key="", client=_mock_client(""))
        with pytest.raises(ValueError, match="empty"):
            await oracle.transcribe(b"webm", "video/webm")

    @pytest.mark.asyncio
    async def test_non_object_response_raises(self) -> None:
        oracle = GeminiOracle(api_key="", client=_mock_client("[1, 2]"))
        with pytest.raises(ValueError, match="expected an object"):
            await oracle.analyze(b"webm", "video/webm")

    @pytest.mark.asyncio
    async def test_unconfigured_key_raises(self) -> None:
        oracle = GeminiOracle(api_key="")
        assert oracle.configured is False
        with pytest.raises(RuntimeError, match="not configured"):
            await oracle.transcribe(b"webm", "video/webm")


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self) -> None:
        oracle = GeminiOracle(api_key="", client=_mock_client("{}"))
        assert await oracle.health_check() is True

    @pytest.mark.asyncio
    async def test_lookup_failure(self) -> None:
        client = _mock_client("{}")
        client.aio.models.get = AsyncMock(side_effect=RuntimeError("403"))
        assert await GeminiOracle(api_key="", client=client).health_check() is False

    @pytest.mark.asyncio
    async def test_unconfigured(self) -> None:
        assert await GeminiOracle(api_key="").health_check() is False
