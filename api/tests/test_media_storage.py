"""Tests for api/api/services/media_storage.py against a mocked Supabase."""

from __future__ import annotations

import json

import httpx
import pytest
from api.services.media_storage import SupabaseMediaStore
from consent_engine.errors import InputValidationError, StorageFailureError


def _store(handler) -> SupabaseMediaStore:
    return SupabaseMediaStore(
        base_url="https://proj.supabase.co/",
        service_key="service-key",
        bucket="consent-videos",
        transport=httpx.MockTransport(handler),
    )


class TestPut:
    @pytest.mark.asyncio
    async def test_upload_request_shape(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Key": "consent-videos/abc/consent.webm"})

        store = _store(handler)
        assert await store.put("abc/consent.webm", b"bytes", "video/webm") == "abc/consent.webm"
        await store.close()

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/storage/v1/object/consent-videos/abc/consent.webm"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["authorization"] == "Bearer service-key"
        assert request.headers["content-type"] == "video/webm"
        assert request.content == b"bytes"

    @pytest.mark.asyncio
    async def test_http_error_is_storage_failure(self) -> None:
        store = _store(lambda request: httpx.Response(500))
        with pytest.raises(StorageFailureError):
            await store.put("abc/consent.webm", b"bytes", "video/webm")

    @pytest.mark.asyncio
    async def test_transport_error_is_storage_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(StorageFailureError, match="ConnectError"):
            await _store(handler).put("abc/consent.webm", b"bytes", "video/webm")

    @pytest.mark.asyncio
    async def test_unsafe_key_rejected(self) -> None:
        store = _store(lambda request: httpx.Response(200))
        with pytest.raises(InputValidationError):
            await store.put("../escape", b"bytes", "video/webm")


class TestSignedUrl:
    @pytest.mark.asyncio
    async def test_relative_url_is_made_absolute(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content) == {"expiresIn": 600}
            return httpx.Response(200, json={"signedURL": "/object/sign/consent-videos/k.webm?token=t"})

        url = await _store(handler).get_signed_read_url("k.webm", 600)
        assert url == "https://proj.supabase.co/storage/v1/object/sign/consent-videos/k.webm?token=t"

    @pytest.mark.asyncio
    async def test_non_positive_ttl(self) -> None:
        with pytest.raises(InputValidationError):
            await _store(lambda request: httpx.Response(200)).get_signed_read_url("k.webm", 0)

    @pytest.mark.asyncio
    async def test_missing_url_in_response(self) -> None:
        with pytest.raises(StorageFailureError):
            await _store(lambda request: httpx.Response(200, json={})).get_signed_read_url("k.webm", 60)


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_sends_prefixes(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        await _store(handler).delete("abc/consent.webm")
        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/storage/v1/object/consent-videos"
        assert json.loads(seen[0].content) == {"prefixes": ["abc/consent.webm"]}

    @pytest.mark.asyncio
    async def test_missing_object_is_success(self) -> None:
        await _store(lambda request: httpx.Response(404)).delete("abc/consent.webm")

    @pytest.mark.asyncio
    async def test_server_error_raises(self) -> None:
        with pytest.raises(StorageFailureError):
            await _store(lambda request: httpx.Response(503)).delete("abc/consent.webm")


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_bucket_reachable(self) -> None:
        assert await _store(lambda request: httpx.Response(200, json={"id": "consent-videos"})).health_check()

    @pytest.mark.asyncio
    async def test_bucket_missing(self) -> None:
        assert not await _store(lambda request: httpx.Response(404)).health_check()
