"""Media blob storage interface and the local filesystem adapter.

The consent engine only needs three operations from object storage: write a
recording, mint a time-limited read URL for it, and delete it.  ``delete``
must treat an already-absent blob as success so that retention sweeps can
be retried after a partial failure.

Production deployments use :class:`api.services.media_storage.SupabaseMediaStore`;
:class:`LocalMediaStore` backs local development and the CLI sweeps.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Protocol

from consent_engine.errors import InputValidationError, StorageFailureError

logger = logging.getLogger(__name__)

# Keys are "/"-separated segments of safe characters; no "..", no leading "/".
_KEY_SEGMENT = re.compile(r"^[A-Za-z0-9._-]+$")


def validate_storage_key(key: str) -> str:
    """Reject keys that are empty or could escape the bucket root."""
    if not key or len(key) > 1024:
        raise InputValidationError("Storage key must be 1-1024 characters")
    segments = key.split("/")
    for segment in segments:
        if segment in ("", ".", "..") or not _KEY_SEGMENT.match(segment):
            raise InputValidationError(f"Invalid storage key {key!r}")
    return key


class MediaStore(Protocol):
    """Structural interface for media blob storage backends."""

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store *data* under *key* and return the key."""
        ...

    async def get_signed_read_url(self, key: str, ttl_seconds: int) -> str:
        """Return a URL granting read access to *key* for *ttl_seconds*."""
        ...

    async def delete(self, key: str) -> None:
        """Delete *key*.  An absent key is not an error."""
        ...


class LocalMediaStore:
    """Filesystem-backed :class:`MediaStore`.

    Read URLs are plain ``file://`` URLs of the blob path.  They are not
    signed and do not expire, so this adapter is only suitable for local
    development and the CLI; ``ttl_seconds`` is validated but not enforced.

    Parameters
    ----------
    root:
        Directory holding the blobs.  Created on first write.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    def _path(self, key: str) -> Path:
        return self._root / validate_storage_key(key)

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageFailureError(f"Failed to write media {key}: {exc}") from exc
        logger.debug("Stored %d bytes (%s) at %s", len(data), content_type, path)
        return key

    async def get_signed_read_url(self, key: str, ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise InputValidationError("ttl_seconds must be positive")
        return self._path(key).resolve().as_uri()

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise StorageFailureError(f"Failed to delete media {key}: {exc}") from exc
        logger.debug("Deleted media %s", key)
