"""Supabase Storage adapter for consent recordings.

Talks to the Supabase Storage REST API with a service-role key.  Every
transport or HTTP error surfaces as
:class:`~consent_engine.errors.StorageFailureError` so that the retention
sweeps keep the metadata rows of blobs they could not remove.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx
from consent_engine.errors import InputValidationError, StorageFailureError
from consent_engine.storage import validate_storage_key

logger = logging.getLogger(__name__)


class SupabaseMediaStore:
    """:class:`~consent_engine.storage.MediaStore` backed by Supabase Storage.

    Parameters
    ----------
    base_url:
        Project URL (e.g. ``https://<ref>.supabase.co``).
    service_key:
        Service-role key; sent as both ``apikey`` and bearer token.
    bucket:
        Private bucket holding the recordings.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "consent-videos",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/storage/v1",
            timeout=httpx.Timeout(timeout),
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
            transport=transport,
        )

    def _object_path(self, key: str) -> str:
        return f"{quote(self._bucket)}/{quote(validate_storage_key(key))}"

    async def _request(self, operation: str, key: str, method: str, url: str, **kwargs) -> httpx.Response:  # type: ignore[no-untyped-def]
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StorageFailureError(f"{operation} {key} failed: {type(exc).__name__}: {exc}") from exc

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        resp = await self._request(
            "Upload",
            key,
            "POST",
            f"/object/{self._object_path(key)}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        if resp.status_code >= 400:
            raise StorageFailureError(f"Upload {key} failed: HTTP {resp.status_code}")
        logger.debug("Uploaded %d bytes to %s/%s", len(data), self._bucket, key)
        return key

    async def get_signed_read_url(self, key: str, ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise InputValidationError("ttl_seconds must be positive")
        resp = await self._request(
            "Sign",
            key,
            "POST",
            f"/object/sign/{self._object_path(key)}",
            json={"expiresIn": ttl_seconds},
        )
        if resp.status_code >= 400:
            raise StorageFailureError(f"Sign {key} failed: HTTP {resp.status_code}")
        signed = resp.json().get("signedURL") or resp.json().get("signedUrl")
        if not signed:
            raise StorageFailureError(f"Sign {key} failed: response carried no URL")
        if signed.startswith("http"):
            return signed
        return f"{self._base_url}/storage/v1/{signed.lstrip('/')}"

    async def delete(self, key: str) -> None:
        validate_storage_key(key)
        resp = await self._request(
            "Delete",
            key,
            "DELETE",
            f"/object/{quote(self._bucket)}",
            json={"prefixes": [key]},
        )
        # An already-absent object is a successful delete.
        if resp.status_code >= 400 and resp.status_code != 404:
            raise StorageFailureError(f"Delete {key} failed: HTTP {resp.status_code}")
        logger.debug("Deleted %s/%s", self._bucket, key)

    async def health_check(self) -> bool:
        """Return ``True`` if the bucket is reachable."""
        try:
            resp = await self._client.get(f"/bucket/{quote(self._bucket)}")
            return resp.status_code == 200
        except Exception:
            return False

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()
