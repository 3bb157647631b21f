"""Media blob storage."""

from consent_engine.storage.media import LocalMediaStore, MediaStore, validate_storage_key

__all__ = ["LocalMediaStore", "MediaStore", "validate_storage_key"]
