"""Storage client protocol and data types.

This module defines the abstract interface for the object storage operations
the multipart orchestration relies on: session lifecycle, part upload and
server-side part copy, part listing, object copy and object listing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Protocol, Sequence, Union

PartBodyData = Union[bytes, bytearray, memoryview, BinaryIO]


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class NoSuchUploadError(StorageError):
    """Raised when the service no longer knows the multipart upload id."""


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """Represents a completed part in a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUpload:
    """Result of initiating a multipart upload."""

    upload_id: str
    bucket: str
    object_key: str


@dataclass(frozen=True, slots=True)
class PartSummary:
    """A part that is still stored under a multipart upload."""

    part_number: int
    etag: str | None = None
    size_bytes: int | None = None


@dataclass(frozen=True, slots=True)
class PartListing:
    """One page of a list-parts response."""

    parts: tuple[PartSummary, ...] = ()
    is_truncated: bool = False
    next_part_number_marker: int | None = None


@dataclass(frozen=True, slots=True)
class ObjectSummary:
    """An object entry returned by a bucket listing."""

    key: str
    size_bytes: int | None = None
    etag: str | None = None


@dataclass(frozen=True, slots=True)
class CopyResult:
    """Result of a server-side object copy."""

    etag: str | None = None
    version_id: str | None = None
    last_modified: datetime | None = None
    expiration: str | None = None
    server_side_encryption: str | None = None
    ssekms_key_id: str | None = None
    bucket_key_enabled: bool | None = None
    request_charged: str | None = None


@dataclass(frozen=True, slots=True)
class CompletedUpload:
    """Metadata of the object produced by a finished multipart upload."""

    bucket: str
    object_key: str
    etag: str | None = None
    version_id: str | None = None
    location: str | None = None
    expiration: str | None = None
    server_side_encryption: str | None = None
    ssekms_key_id: str | None = None
    bucket_key_enabled: bool | None = None
    request_charged: str | None = None
    parts: tuple[CompletedPart, ...] = field(default=())


class StorageClient(Protocol):
    """Protocol defining the interface for object storage backends.

    Implementations must provide all methods defined here and signal
    failures with StorageError. Currently supports S3-compatible services.
    """

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session.

        Args:
            bucket: Target bucket name.
            object_key: Object key (path) in the bucket.
            content_type: MIME type of the object.
            metadata: Custom metadata to attach to the object.

        Returns:
            MultipartUpload containing the upload_id for subsequent operations.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        body: PartBodyData,
        content_length: int | None = None,
    ) -> str:
        """Upload one part of a multipart upload.

        Args:
            bucket: Target bucket name.
            object_key: Object key (path) in the bucket.
            upload_id: Multipart upload ID from init_multipart_upload.
            part_number: Part number (1-based, max 10000).
            body: Part content as bytes or a readable binary stream.
            content_length: Byte length of the body when known.

        Returns:
            The ETag the service assigned to the part.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def upload_part_copy(
        self,
        *,
        source_bucket: str,
        source_key: str,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
    ) -> str:
        """Copy an existing object into a multipart upload as one part.

        Returns:
            The ETag of the copied part.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> CompletedUpload:
        """Complete a multipart upload by combining all parts.

        Args:
            bucket: Target bucket name.
            object_key: Object key (path) in the bucket.
            upload_id: Multipart upload ID.
            parts: List of completed parts with their ETags.

        Returns:
            CompletedUpload describing the finalized object.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and release uploaded parts.

        Raises:
            NoSuchUploadError: If the upload is already gone.
            StorageError: If the operation fails.
        """
        ...

    def list_parts(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number_marker: int | None = None,
    ) -> PartListing:
        """List one page of parts stored under a multipart upload.

        Args:
            part_number_marker: Continue listing after this part number.

        Raises:
            NoSuchUploadError: If the upload is already gone.
            StorageError: If the operation fails.
        """
        ...

    def copy_object(
        self,
        *,
        source_bucket: str,
        source_key: str,
        bucket: str,
        object_key: str,
    ) -> CopyResult:
        """Copy an object server-side.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def list_objects(
        self,
        *,
        bucket: str,
        prefix: str | None = None,
    ) -> list[ObjectSummary]:
        """List every object in a bucket, following continuation tokens.

        Raises:
            StorageError: If the operation fails.
        """
        ...
