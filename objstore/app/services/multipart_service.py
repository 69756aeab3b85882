"""Multipart upload orchestration.

This module drives the complete multipart lifecycle for one upload unit:
initiate, feed parts from a part source, complete, and on failure abort and
verify through list-parts that no billable parts are left behind.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence, TypeVar

from objstore.app.services.base import (
    AbortIncompleteError,
    BaseService,
    FinalizeError,
    InitiationError,
    PartUploadError,
    StorageBackendNotConfiguredError,
    UploadError,
    ValidationError,
)
from objstore.app.services.naming import build_upload_key, normalize_bucket_name
from objstore.app.services.part_sources import (
    BodyListPartSource,
    CopyComposePartSource,
    FileSlicePartSource,
    PartBody,
)
from objstore.common.config import Settings, get_settings
from objstore.infra.observability.metrics import (
    ABORT_ATTEMPTS,
    MULTIPART_PARTS,
    MULTIPART_UPLOADS,
)
from objstore.infra.storage.client import (
    CompletedPart,
    CompletedUpload,
    CopyResult,
    MultipartUpload,
    NoSuchUploadError,
    ObjectSummary,
    PartSummary,
    StorageClient,
    StorageError,
)
from objstore.infra.storage.s3_client import S3StorageClient

logger = logging.getLogger(__name__)
cleanup_logger = logging.getLogger("objstore.cleanup")

T = TypeVar("T")

Validator = Callable[[T], bool]
PartProducer = Callable[[T, str, str, str], Iterable[CompletedPart]]


class UploadState(str, Enum):
    IDLE = "idle"
    VALIDATION_FAILED = "validation_failed"
    INITIATED = "initiated"
    PARTS_IN_FLIGHT = "parts_in_flight"
    COMPLETED = "completed"
    ABORTING = "aborting"
    ABORTED = "aborted"
    ABORT_FAILED = "abort_failed"


class UploadStatus(str, Enum):
    COMPLETED = "completed"
    # upload failed and list-parts confirmed nothing is left in storage
    FAILED_CLEAN = "failed_clean"
    # upload failed and parts may still be stored (and billed)
    FAILED_DIRTY = "failed_dirty"


@dataclass(frozen=True, slots=True)
class UploadOutcome:
    """Terminal result of one orchestrated upload."""

    status: UploadStatus
    state: UploadState
    bucket: str
    object_key: str
    upload_id: str | None = None
    result: CompletedUpload | None = None
    error: UploadError | None = None
    cleanup_error: AbortIncompleteError | None = None
    abort_attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status is UploadStatus.COMPLETED

    @property
    def cleanup_confirmed(self) -> bool:
        return self.status is not UploadStatus.FAILED_DIRTY

    def raise_for_status(self) -> CompletedUpload:
        """Return the completed upload or raise the failure.

        Dirty failures raise AbortIncompleteError chained from the original
        error so both causes stay visible.
        """
        if self.ok and self.result is not None:
            return self.result
        if self.cleanup_error is not None:
            raise self.cleanup_error from self.error
        if self.error is not None:
            raise self.error
        raise UploadError(f"upload of {self.bucket}/{self.object_key} failed")


def completed_upload_from_copy(
    bucket: str, object_key: str, copy: CopyResult
) -> CompletedUpload:
    """Present a single-object copy as a completed upload.

    Field mapping: etag, version_id, expiration, server_side_encryption,
    ssekms_key_id, bucket_key_enabled and request_charged are carried over
    one to one. ``location`` has no copy equivalent and stays None;
    ``last_modified`` has no completion equivalent and is dropped.
    """
    return CompletedUpload(
        bucket=bucket,
        object_key=object_key,
        etag=copy.etag,
        version_id=copy.version_id,
        location=None,
        expiration=copy.expiration,
        server_side_encryption=copy.server_side_encryption,
        ssekms_key_id=copy.ssekms_key_id,
        bucket_key_enabled=copy.bucket_key_enabled,
        request_charged=copy.request_charged,
    )


class MultipartUploadOrchestrator(BaseService):
    """Application service running multipart uploads end to end.

    ``upload`` is the generic state machine; ``upload_file``,
    ``upload_bodies`` and ``compose_objects`` bind it to the three part
    sources. Each call owns its upload id exclusively; nothing is kept
    between calls.
    """

    def __init__(
        self,
        storage_client: StorageClient | None = None,
        *,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = settings or get_settings()
        super().__init__(
            storage_client or self._build_storage_client(settings),
            settings=settings,
        )
        self._sleep = sleep

    @staticmethod
    def _build_storage_client(settings: Settings) -> StorageClient:
        """Build the storage client for the configured S3-compatible backend."""
        if not settings.S3_ACCESS_KEY_ID or not settings.S3_SECRET_ACCESS_KEY:
            raise StorageBackendNotConfiguredError(
                "S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY are required"
            )
        if settings.STORAGE_BACKEND != "s3" and not settings.S3_ENDPOINT_URL:
            raise StorageBackendNotConfiguredError(
                f"S3_ENDPOINT_URL is required for backend {settings.STORAGE_BACKEND!r}"
            )
        return S3StorageClient(settings=settings)

    def _resolve_bucket(self, bucket: str | None) -> str:
        return normalize_bucket_name(bucket or self._settings.S3_BUCKET)

    def default_object_key(self, object_name: str) -> str:
        """Key under the dated UPLOAD_BASE_DIR prefix, unique per call."""
        return build_upload_key(object_name, self._settings.UPLOAD_BASE_DIR)

    def upload(
        self,
        bucket: str | None,
        object_key: str,
        payload: T,
        validate: Validator[T],
        produce_parts: PartProducer[T],
        *,
        strategy: str = "custom",
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> UploadOutcome:
        """Run one multipart upload.

        Args:
            bucket: Target bucket, lower-cased before use; S3_BUCKET when None.
            object_key: Target object key.
            payload: Whatever ``produce_parts`` knows how to upload.
            validate: Precondition on ``payload``; checked before any remote call.
            produce_parts: Uploads the parts and returns their CompletedParts.
            strategy: Metrics label naming the part source.
            content_type: MIME type of the final object.
            metadata: Custom metadata for the final object.

        Returns:
            UploadOutcome. Part or finalize failures are reported here after
            the abort-and-verify cycle ran.

        Raises:
            ValidationError: If inputs are rejected; nothing was sent.
            InitiationError: If the upload could not be created.
        """
        bucket = self._resolve_bucket(bucket)
        object_key = self._ensure_object_key(object_key)

        if not validate(payload):
            self._record(strategy, UploadState.VALIDATION_FAILED.value)
            raise ValidationError(
                f"payload rejected for {bucket}/{object_key}; no upload was started"
            )

        try:
            session = self._storage.init_multipart_upload(
                bucket=bucket,
                object_key=object_key,
                content_type=content_type,
                metadata=metadata,
            )
        except Exception as exc:
            logger.error(
                "multipart_initiate_failed bucket=%s key=%s error=%s",
                bucket,
                object_key,
                exc,
                extra={"extra": {"bucket": bucket, "object_key": object_key}},
            )
            self._record(strategy, "initiation_failed")
            raise InitiationError(
                f"could not create multipart upload for {bucket}/{object_key}: {exc}"
            ) from exc

        state = UploadState.INITIATED
        logger.info(
            "multipart_initiated bucket=%s key=%s upload_id=%s",
            bucket,
            object_key,
            session.upload_id,
            extra={"extra": self._session_extra(session, strategy)},
        )

        try:
            state = UploadState.PARTS_IN_FLIGHT
            parts = self._produce(produce_parts, payload, session)
            ordered = self._ordered_parts(parts)
            try:
                result = self._storage.complete_multipart_upload(
                    bucket=session.bucket,
                    object_key=session.object_key,
                    upload_id=session.upload_id,
                    parts=ordered,
                )
            except Exception as exc:
                raise FinalizeError(
                    f"complete multipart upload rejected for upload {session.upload_id}: {exc}"
                ) from exc
        except UploadError as exc:
            return self._abort_after_failure(session, exc, strategy, state)
        except Exception as exc:
            return self._abort_after_failure(
                session, self._part_error(session, exc), strategy, state
            )

        logger.info(
            "multipart_completed bucket=%s key=%s upload_id=%s parts=%s",
            session.bucket,
            session.object_key,
            session.upload_id,
            len(ordered),
            extra={
                "extra": {
                    **self._session_extra(session, strategy),
                    "parts": len(ordered),
                }
            },
        )
        self._record(strategy, UploadStatus.COMPLETED.value, parts=len(ordered))
        return UploadOutcome(
            status=UploadStatus.COMPLETED,
            state=UploadState.COMPLETED,
            bucket=session.bucket,
            object_key=session.object_key,
            upload_id=session.upload_id,
            result=result,
        )

    def upload_file(
        self,
        bucket: str | None,
        file_path: str | Path,
        object_key: str | None = None,
        *,
        part_size_bytes: int | None = None,
        content_type: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> UploadOutcome:
        """Upload a local file in fixed-size slices.

        The object key defaults to the file's name.
        """
        path = Path(file_path)
        source = FileSlicePartSource(
            self._storage,
            part_size_bytes=part_size_bytes or self._settings.MULTIPART_PART_SIZE_BYTES,
            min_part_size_bytes=self._settings.MULTIPART_MIN_PART_SIZE_BYTES,
            max_parts=self._settings.MULTIPART_MAX_PARTS,
            cancel_event=cancel_event,
        )
        return self.upload(
            bucket,
            object_key or path.name,
            path,
            source.validate,
            source.produce_parts,
            strategy="file",
            content_type=content_type,
        )

    def upload_bodies(
        self,
        bucket: str | None,
        object_key: str,
        bodies: Sequence[PartBody],
        *,
        content_type: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> UploadOutcome:
        """Upload pre-chunked bodies as parts 1..N in list order."""
        source = BodyListPartSource(
            self._storage,
            min_part_size_bytes=self._settings.MULTIPART_MIN_PART_SIZE_BYTES,
            max_parts=self._settings.MULTIPART_MAX_PARTS,
            cancel_event=cancel_event,
        )
        return self.upload(
            bucket,
            object_key,
            list(bodies),
            source.validate,
            source.produce_parts,
            strategy="bodies",
            content_type=content_type,
        )

    def compose_objects(
        self,
        source_bucket: str,
        dest_bucket: str,
        dest_key: str,
        sources: Sequence[ObjectSummary | str],
        *,
        cancel_event: threading.Event | None = None,
    ) -> UploadOutcome:
        """Merge existing objects into ``dest_key`` with server-side copies.

        Source keys name their part order (``1``, ``2``, ...). A single
        source is copied with copy-object instead of opening a multipart
        upload; see ``completed_upload_from_copy`` for the result mapping.

        Raises:
            ValidationError: If no sources are given.
            CopySourceError: If source keys are not numbered 1..N.
            InitiationError: If the upload could not be created.
        """
        source_bucket = self._resolve_bucket(source_bucket)
        dest_bucket = self._resolve_bucket(dest_bucket)
        dest_key = self._ensure_object_key(dest_key)

        objects = [
            ObjectSummary(key=item) if isinstance(item, str) else item
            for item in sources
        ]
        if not objects:
            raise ValidationError("compose requires at least one source object")
        if len(objects) == 1:
            return self._copy_single_source(source_bucket, objects[0], dest_bucket, dest_key)

        ordered = CopyComposePartSource.order_sources(objects)
        source = CopyComposePartSource(
            self._storage,
            source_bucket=source_bucket,
            min_part_size_bytes=self._settings.MULTIPART_MIN_PART_SIZE_BYTES,
            max_parts=self._settings.MULTIPART_MAX_PARTS,
            cancel_event=cancel_event,
        )
        return self.upload(
            dest_bucket,
            dest_key,
            ordered,
            source.validate,
            source.produce_parts,
            strategy="compose",
        )

    def compose_bucket(
        self,
        source_bucket: str,
        dest_bucket: str,
        dest_key: str,
        *,
        prefix: str | None = None,
    ) -> UploadOutcome:
        """Compose every object stored in ``source_bucket`` (under ``prefix``)."""
        source_bucket = self._resolve_bucket(source_bucket)
        objects = [
            obj
            for obj in self._storage.list_objects(bucket=source_bucket, prefix=prefix)
            if not obj.key.endswith("/")
        ]
        return self.compose_objects(source_bucket, dest_bucket, dest_key, objects)

    def abort_upload(self, bucket: str, object_key: str, upload_id: str) -> int:
        """Abort an upload and confirm via list-parts that nothing remains.

        Abort is repeated while list-parts still reports parts, because parts
        in flight during the first abort may land afterwards. Attempts are
        capped by MULTIPART_ABORT_MAX_ATTEMPTS with exponential backoff.

        Returns:
            Number of abort calls issued.

        Raises:
            AbortIncompleteError: If abort or list-parts failed, or parts are
                still listed after the last attempt.
        """
        bucket = self._resolve_bucket(bucket)
        object_key = self._ensure_object_key(object_key)
        if not upload_id:
            raise ValidationError("upload_id is required to abort an upload")

        max_attempts = self._settings.MULTIPART_ABORT_MAX_ATTEMPTS
        backoff = self._settings.MULTIPART_ABORT_BACKOFF_SECONDS
        remaining: int | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                self._storage.abort_multipart_upload(
                    bucket=bucket, object_key=object_key, upload_id=upload_id
                )
            except NoSuchUploadError:
                logger.info(
                    "multipart_abort_already_gone bucket=%s key=%s upload_id=%s",
                    bucket,
                    object_key,
                    upload_id,
                )
                self._observe_abort(attempt)
                return attempt
            except Exception as exc:
                raise AbortIncompleteError(
                    f"abort call failed for upload {upload_id}: {exc}",
                    bucket=bucket,
                    object_key=object_key,
                    upload_id=upload_id,
                    attempts=attempt,
                ) from exc

            try:
                remaining = len(self._remaining_parts(bucket, object_key, upload_id))
            except Exception as exc:
                raise AbortIncompleteError(
                    f"could not verify abort of upload {upload_id}: {exc}",
                    bucket=bucket,
                    object_key=object_key,
                    upload_id=upload_id,
                    attempts=attempt,
                ) from exc

            if remaining == 0:
                logger.info(
                    "multipart_aborted bucket=%s key=%s upload_id=%s attempts=%s",
                    bucket,
                    object_key,
                    upload_id,
                    attempt,
                )
                self._observe_abort(attempt)
                return attempt

            logger.warning(
                "multipart_abort_parts_remaining upload_id=%s attempt=%s remaining=%s",
                upload_id,
                attempt,
                remaining,
            )
            if attempt < max_attempts and backoff > 0:
                self._sleep(backoff * 2 ** (attempt - 1))

        raise AbortIncompleteError(
            f"{remaining} parts still listed for upload {upload_id} after "
            f"{max_attempts} abort attempts",
            bucket=bucket,
            object_key=object_key,
            upload_id=upload_id,
            attempts=max_attempts,
            remaining_parts=remaining,
        )

    def list_parts(self, bucket: str, object_key: str, upload_id: str) -> list[PartSummary]:
        """Return every part stored under the upload, reading all pages."""
        bucket = self._resolve_bucket(bucket)
        object_key = self._ensure_object_key(object_key)

        parts: list[PartSummary] = []
        marker: int | None = None
        while True:
            page = self._storage.list_parts(
                bucket=bucket,
                object_key=object_key,
                upload_id=upload_id,
                part_number_marker=marker,
            )
            parts.extend(page.parts)
            if not page.is_truncated:
                return parts
            if page.next_part_number_marker is None:
                raise StorageError(
                    f"truncated part listing for upload {upload_id} has no next marker"
                )
            marker = page.next_part_number_marker

    def _remaining_parts(
        self, bucket: str, object_key: str, upload_id: str
    ) -> list[PartSummary]:
        try:
            return self.list_parts(bucket, object_key, upload_id)
        except NoSuchUploadError:
            return []

    def _produce(
        self,
        produce_parts: PartProducer[Any],
        payload: Any,
        session: MultipartUpload,
    ) -> list[CompletedPart]:
        # lazy producers upload while being iterated
        try:
            return list(
                produce_parts(
                    payload, session.bucket, session.object_key, session.upload_id
                )
            )
        except UploadError:
            raise
        except Exception as exc:
            raise self._part_error(session, exc) from exc

    @staticmethod
    def _part_error(session: MultipartUpload, exc: Exception) -> PartUploadError:
        error = PartUploadError(f"part upload failed for upload {session.upload_id}: {exc}")
        error.__cause__ = exc
        return error

    @staticmethod
    def _ordered_parts(parts: Iterable[CompletedPart]) -> list[CompletedPart]:
        ordered = sorted(parts, key=lambda part: part.part_number)
        if not ordered:
            raise PartUploadError("no parts were uploaded")
        for expected, part in enumerate(ordered, start=1):
            if part.part_number != expected:
                raise PartUploadError(
                    f"uploaded parts must be numbered 1..{len(ordered)} without gaps "
                    f"or duplicates; got part {part.part_number} at position {expected}"
                )
        return ordered

    def _abort_after_failure(
        self,
        session: MultipartUpload,
        error: UploadError,
        strategy: str,
        state: UploadState,
    ) -> UploadOutcome:
        logger.error(
            "multipart_failed bucket=%s key=%s upload_id=%s state=%s error=%s",
            session.bucket,
            session.object_key,
            session.upload_id,
            state.value,
            error,
            exc_info=error,
            extra={"extra": self._session_extra(session, strategy)},
        )
        try:
            attempts = self.abort_upload(
                session.bucket, session.object_key, session.upload_id
            )
        except AbortIncompleteError as cleanup_error:
            cleanup_logger.warning(
                "multipart_cleanup_unverified bucket=%s key=%s upload_id=%s "
                "attempts=%s remaining=%s error=%s",
                session.bucket,
                session.object_key,
                session.upload_id,
                cleanup_error.attempts,
                cleanup_error.remaining_parts,
                cleanup_error,
            )
            self._record(strategy, UploadStatus.FAILED_DIRTY.value)
            return UploadOutcome(
                status=UploadStatus.FAILED_DIRTY,
                state=UploadState.ABORT_FAILED,
                bucket=session.bucket,
                object_key=session.object_key,
                upload_id=session.upload_id,
                error=error,
                cleanup_error=cleanup_error,
                abort_attempts=cleanup_error.attempts,
            )

        self._record(strategy, UploadStatus.FAILED_CLEAN.value)
        return UploadOutcome(
            status=UploadStatus.FAILED_CLEAN,
            state=UploadState.ABORTED,
            bucket=session.bucket,
            object_key=session.object_key,
            upload_id=session.upload_id,
            error=error,
            abort_attempts=attempts,
        )

    def _copy_single_source(
        self,
        source_bucket: str,
        source: ObjectSummary,
        dest_bucket: str,
        dest_key: str,
    ) -> UploadOutcome:
        try:
            copy = self._storage.copy_object(
                source_bucket=source_bucket,
                source_key=source.key,
                bucket=dest_bucket,
                object_key=dest_key,
            )
        except Exception as exc:
            logger.error(
                "compose_copy_failed source=%s/%s dest=%s/%s error=%s",
                source_bucket,
                source.key,
                dest_bucket,
                dest_key,
                exc,
            )
            self._record("copy", UploadStatus.FAILED_CLEAN.value)
            # no multipart upload was opened, so nothing can be orphaned
            return UploadOutcome(
                status=UploadStatus.FAILED_CLEAN,
                state=UploadState.IDLE,
                bucket=dest_bucket,
                object_key=dest_key,
                error=PartUploadError(f"copy of {source_bucket}/{source.key} failed: {exc}"),
            )

        logger.info(
            "compose_single_source_copied source=%s/%s dest=%s/%s",
            source_bucket,
            source.key,
            dest_bucket,
            dest_key,
        )
        self._record("copy", UploadStatus.COMPLETED.value)
        return UploadOutcome(
            status=UploadStatus.COMPLETED,
            state=UploadState.COMPLETED,
            bucket=dest_bucket,
            object_key=dest_key,
            result=completed_upload_from_copy(dest_bucket, dest_key, copy),
        )

    @staticmethod
    def _session_extra(session: MultipartUpload, strategy: str) -> dict[str, Any]:
        return {
            "bucket": session.bucket,
            "object_key": session.object_key,
            "upload_id": session.upload_id,
            "strategy": strategy,
        }

    def _record(self, strategy: str, status: str, *, parts: int = 0) -> None:
        if not self._settings.ENABLE_METRICS:
            return
        MULTIPART_UPLOADS.labels(strategy=strategy, status=status).inc()
        if parts:
            MULTIPART_PARTS.labels(strategy=strategy).inc(parts)

    def _observe_abort(self, attempts: int) -> None:
        if self._settings.ENABLE_METRICS:
            ABORT_ATTEMPTS.observe(attempts)
