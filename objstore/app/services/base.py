from __future__ import annotations

from objstore.common.config import Settings, get_settings
from objstore.infra.storage.client import StorageClient


class ServiceError(Exception):
    """Base class for application service level exceptions."""


class StorageBackendNotConfiguredError(ServiceError):
    """Raised when the storage backend is not properly configured."""


class UploadError(ServiceError):
    """Base class for multipart upload failures."""


class ValidationError(UploadError):
    """Raised when upload preconditions fail; nothing was sent to storage."""


class CopySourceError(ValidationError):
    """Raised when a compose source key is not a usable part number."""


class InitiationError(UploadError):
    """Raised when the multipart upload could not be created."""


class PartUploadError(UploadError):
    """Raised when producing or uploading a part fails."""


class UploadCancelledError(PartUploadError):
    """Raised by a part source when the caller cancelled the upload."""


class FinalizeError(UploadError):
    """Raised when the service rejects complete-multipart-upload."""


class AbortIncompleteError(UploadError):
    """Raised when an aborted upload may still hold billable parts."""

    def __init__(
        self,
        message: str,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        attempts: int,
        remaining_parts: int | None = None,
    ) -> None:
        super().__init__(message)
        self.bucket = bucket
        self.object_key = object_key
        self.upload_id = upload_id
        self.attempts = attempts
        self.remaining_parts = remaining_parts


class BaseService:
    """Provides the storage client and settings shared by application services."""

    def __init__(
        self,
        storage_client: StorageClient,
        *,
        settings: Settings | None = None,
    ):
        self._storage = storage_client
        self._settings = settings or get_settings()

    @property
    def storage(self) -> StorageClient:
        return self._storage

    @property
    def settings(self) -> Settings:
        return self._settings

    def _ensure_object_key(self, object_key: str | None) -> str:
        if not object_key or not object_key.strip():
            raise ValidationError("object_key is required for this operation")
        return object_key
