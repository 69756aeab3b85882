from .base import (
    AbortIncompleteError,
    BaseService,
    CopySourceError,
    FinalizeError,
    InitiationError,
    PartUploadError,
    ServiceError,
    StorageBackendNotConfiguredError,
    UploadCancelledError,
    UploadError,
    ValidationError,
)
from .multipart_service import (
    MultipartUploadOrchestrator,
    UploadOutcome,
    UploadState,
    UploadStatus,
    completed_upload_from_copy,
)
from .part_sources import (
    BodyListPartSource,
    ComposeSource,
    CopyComposePartSource,
    FileSlicePartSource,
    PartBody,
)

__all__ = [
    "AbortIncompleteError",
    "BaseService",
    "BodyListPartSource",
    "ComposeSource",
    "CopyComposePartSource",
    "CopySourceError",
    "FileSlicePartSource",
    "FinalizeError",
    "InitiationError",
    "MultipartUploadOrchestrator",
    "PartBody",
    "PartUploadError",
    "ServiceError",
    "StorageBackendNotConfiguredError",
    "UploadCancelledError",
    "UploadError",
    "UploadOutcome",
    "UploadState",
    "UploadStatus",
    "ValidationError",
    "completed_upload_from_copy",
]
