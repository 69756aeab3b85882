"""S3-compatible storage client implementation.

This module provides an S3-compatible storage client that works with
AWS S3, MinIO, Tencent COS, Aliyun OSS, Huawei OBS and other S3-compatible
object storage services.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

from objstore.infra.storage.client import (
    CompletedPart,
    CompletedUpload,
    CopyResult,
    MultipartUpload,
    NoSuchUploadError,
    ObjectSummary,
    PartBodyData,
    PartListing,
    PartSummary,
    StorageError,
)

if TYPE_CHECKING:
    from objstore.common.config import Settings

NO_SUCH_UPLOAD_CODES = frozenset({"NoSuchUpload"})


def _error_code(exc: Exception) -> str | None:
    """Extract the service error code from a botocore ClientError."""
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return None
    code = (response.get("Error") or {}).get("Code")
    return str(code) if code else None


def _storage_error(message: str, exc: Exception) -> StorageError:
    code = _error_code(exc)
    if code in NO_SUCH_UPLOAD_CODES:
        return NoSuchUploadError(f"{message}: {exc}", code=code)
    return StorageError(f"{message}: {exc}", code=code)


class S3StorageClient:
    """S3-compatible object storage client.

    Supports AWS S3, MinIO, and other S3-compatible services.
    Uses boto3 for all storage operations.
    """

    def __init__(self, *, settings: "Settings") -> None:
        """Initialize the S3 client with configuration from settings.

        Args:
            settings: Application settings containing S3 configuration.

        Raises:
            StorageError: If boto3 is not installed.
        """
        self._settings = settings
        self._client = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings."""
        try:
            import boto3
            from botocore.config import Config
        except ImportError as exc:
            raise StorageError(
                "boto3 and botocore are required for S3 storage backend. "
                "Install with: pip install boto3"
            ) from exc

        # Host-style buckets are a per-client setting, never process-wide state
        config = Config(s3={"addressing_style": settings.addressing_style})

        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            use_ssl=bool(settings.S3_USE_SSL),
            config=config,
        )

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata

        try:
            response = self._client.create_multipart_upload(**params)
        except Exception as exc:
            raise _storage_error("Failed to create multipart upload", exc) from exc

        upload_id = response.get("UploadId")
        if not upload_id:
            raise StorageError("S3 response missing UploadId")

        return MultipartUpload(
            upload_id=str(upload_id),
            bucket=bucket,
            object_key=object_key,
        )

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
        """Upload one part and return its ETag."""
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_key,
            "UploadId": upload_id,
            "PartNumber": int(part_number),
            "Body": body,
        }
        if content_length is not None:
            params["ContentLength"] = int(content_length)

        try:
            response = self._client.upload_part(**params)
        except Exception as exc:
            raise _storage_error(f"Failed to upload part {part_number}", exc) from exc

        etag = response.get("ETag")
        if not etag:
            raise StorageError(f"S3 response missing ETag for part {part_number}")
        return str(etag)

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
        """Copy an existing object into the upload as one part."""
        try:
            response = self._client.upload_part_copy(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
                PartNumber=int(part_number),
                CopySource={"Bucket": source_bucket, "Key": source_key},
            )
        except Exception as exc:
            raise _storage_error(
                f"Failed to copy {source_bucket}/{source_key} as part {part_number}",
                exc,
            ) from exc

        etag = (response.get("CopyPartResult") or {}).get("ETag")
        if not etag:
            raise StorageError(f"S3 response missing ETag for copied part {part_number}")
        return str(etag)

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> CompletedUpload:
        """Complete a multipart upload by combining all parts."""
        ordered = sorted(parts, key=lambda p: p.part_number)
        multipart_payload = {
            "Parts": [
                {"ETag": part.etag, "PartNumber": int(part.part_number)}
                for part in ordered
            ]
        }

        try:
            response = self._client.complete_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
                MultipartUpload=multipart_payload,
            )
        except Exception as exc:
            raise _storage_error("Failed to complete multipart upload", exc) from exc

        response = response or {}
        return CompletedUpload(
            bucket=response.get("Bucket") or bucket,
            object_key=response.get("Key") or object_key,
            etag=response.get("ETag"),
            version_id=response.get("VersionId"),
            location=response.get("Location"),
            expiration=response.get("Expiration"),
            server_side_encryption=response.get("ServerSideEncryption"),
            ssekms_key_id=response.get("SSEKMSKeyId"),
            bucket_key_enabled=response.get("BucketKeyEnabled"),
            request_charged=response.get("RequestCharged"),
            parts=tuple(ordered),
        )

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        try:
            self._client.abort_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
            )
        except Exception as exc:
            raise _storage_error("Failed to abort multipart upload", exc) from exc

    def list_parts(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number_marker: int | None = None,
    ) -> PartListing:
        """List one page of parts stored under the upload."""
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_key,
            "UploadId": upload_id,
        }
        if part_number_marker is not None:
            params["PartNumberMarker"] = int(part_number_marker)

        try:
            response = self._client.list_parts(**params)
        except Exception as exc:
            raise _storage_error("Failed to list parts", exc) from exc

        parts = tuple(
            PartSummary(
                part_number=int(item["PartNumber"]),
                etag=item.get("ETag"),
                size_bytes=item.get("Size"),
            )
            for item in response.get("Parts") or []
        )
        next_marker = response.get("NextPartNumberMarker")
        return PartListing(
            parts=parts,
            is_truncated=bool(response.get("IsTruncated")),
            next_part_number_marker=int(next_marker) if next_marker else None,
        )

    def copy_object(
        self,
        *,
        source_bucket: str,
        source_key: str,
        bucket: str,
        object_key: str,
    ) -> CopyResult:
        """Copy an object server-side."""
        try:
            response = self._client.copy_object(
                Bucket=bucket,
                Key=object_key,
                CopySource={"Bucket": source_bucket, "Key": source_key},
            )
        except Exception as exc:
            raise _storage_error("Failed to copy object", exc) from exc

        copy_result = response.get("CopyObjectResult") or {}
        return CopyResult(
            etag=copy_result.get("ETag"),
            version_id=response.get("VersionId"),
            last_modified=copy_result.get("LastModified"),
            expiration=response.get("Expiration"),
            server_side_encryption=response.get("ServerSideEncryption"),
            ssekms_key_id=response.get("SSEKMSKeyId"),
            bucket_key_enabled=response.get("BucketKeyEnabled"),
            request_charged=response.get("RequestCharged"),
        )

    def list_objects(
        self,
        *,
        bucket: str,
        prefix: str | None = None,
    ) -> list[ObjectSummary]:
        """List every object in the bucket, following continuation tokens."""
        params: dict[str, Any] = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix

        objects: list[ObjectSummary] = []
        while True:
            try:
                response = self._client.list_objects_v2(**params)
            except Exception as exc:
                raise _storage_error("Failed to list objects", exc) from exc

            for item in response.get("Contents") or []:
                size = item.get("Size")
                objects.append(
                    ObjectSummary(
                        key=str(item["Key"]),
                        size_bytes=int(size) if size is not None else None,
                        etag=item.get("ETag"),
                    )
                )

            token = response.get("NextContinuationToken")
            if not response.get("IsTruncated") or not token:
                return objects
            params["ContinuationToken"] = token
