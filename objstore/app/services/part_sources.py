"""Part sources feeding the multipart upload orchestrator.

Each source exposes ``validate(payload) -> bool`` and
``produce_parts(payload, bucket, object_key, upload_id) -> list[CompletedPart]``;
the orchestrator receives those two callables and knows nothing else about
where the bytes come from.
"""

from __future__ import annotations

import logging
import math
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Sequence

from objstore.app.services.base import CopySourceError, UploadCancelledError
from objstore.common.config import PROTOCOL_MAX_PARTS, PROTOCOL_MIN_PART_SIZE_BYTES
from objstore.infra.storage.client import (
    CompletedPart,
    ObjectSummary,
    PartBodyData,
    StorageClient,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PartBody:
    """A pre-chunked part body and its byte length when known."""

    body: PartBodyData
    content_length: int | None = None

    @classmethod
    def from_bytes(cls, data: bytes) -> "PartBody":
        return cls(body=data, content_length=len(data))

    @classmethod
    def from_stream(
        cls, stream: BinaryIO, content_length: int | None = None
    ) -> "PartBody":
        return cls(body=stream, content_length=content_length)


@dataclass(frozen=True, slots=True)
class FileSlice:
    """Byte range of a local file uploaded as one part."""

    part_number: int
    offset: int
    length: int


class _PartSource:
    def __init__(
        self,
        storage: StorageClient,
        *,
        min_part_size_bytes: int = PROTOCOL_MIN_PART_SIZE_BYTES,
        max_parts: int = PROTOCOL_MAX_PARTS,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._storage = storage
        self._min_part_size = int(min_part_size_bytes)
        self._max_parts = int(max_parts)
        self._cancel_event = cancel_event

    def _check_cancelled(self, part_number: int) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise UploadCancelledError(f"upload cancelled before part {part_number}")


class FileSlicePartSource(_PartSource):
    """Uploads a local file as fixed-size byte ranges; the last may be shorter."""

    def __init__(
        self,
        storage: StorageClient,
        *,
        part_size_bytes: int = PROTOCOL_MIN_PART_SIZE_BYTES,
        min_part_size_bytes: int = PROTOCOL_MIN_PART_SIZE_BYTES,
        max_parts: int = PROTOCOL_MAX_PARTS,
        cancel_event: threading.Event | None = None,
    ) -> None:
        super().__init__(
            storage,
            min_part_size_bytes=min_part_size_bytes,
            max_parts=max_parts,
            cancel_event=cancel_event,
        )
        self._part_size = int(part_size_bytes)

    @property
    def part_size_bytes(self) -> int:
        return self._part_size

    def plan(self, file_size: int) -> list[FileSlice]:
        """Split ``file_size`` bytes into ceil(size / part_size) ranges."""
        part_count = math.ceil(file_size / self._part_size)
        slices: list[FileSlice] = []
        for part_number in range(1, part_count + 1):
            offset = (part_number - 1) * self._part_size
            length = min(self._part_size, file_size - offset)
            slices.append(FileSlice(part_number=part_number, offset=offset, length=length))
        return slices

    def validate(self, file_path: str | os.PathLike[str]) -> bool:
        path = Path(file_path)
        if not path.is_file():
            logger.error("file_slice_invalid path=%s reason=not_a_file", path)
            return False
        if self._part_size < self._min_part_size:
            logger.error(
                "file_slice_invalid path=%s reason=part_size_below_minimum part_size=%s",
                path,
                self._part_size,
            )
            return False
        file_size = path.stat().st_size
        if file_size <= 0:
            logger.error("file_slice_invalid path=%s reason=empty_file", path)
            return False
        if math.ceil(file_size / self._part_size) > self._max_parts:
            logger.error(
                "file_slice_invalid path=%s reason=too_many_parts size=%s part_size=%s",
                path,
                file_size,
                self._part_size,
            )
            return False
        return True

    def produce_parts(
        self,
        file_path: str | os.PathLike[str],
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> list[CompletedPart]:
        path = Path(file_path)
        completed: list[CompletedPart] = []
        # 上传期间文件只由本次上传持有
        with path.open("rb") as handle:
            file_size = os.fstat(handle.fileno()).st_size
            for piece in self.plan(file_size):
                self._check_cancelled(piece.part_number)
                handle.seek(piece.offset)
                data = handle.read(piece.length)
                if len(data) != piece.length:
                    raise OSError(
                        f"short read on {path}: part {piece.part_number} expected "
                        f"{piece.length} bytes, got {len(data)}"
                    )
                etag = self._storage.upload_part(
                    bucket=bucket,
                    object_key=object_key,
                    upload_id=upload_id,
                    part_number=piece.part_number,
                    body=data,
                    content_length=piece.length,
                )
                logger.info(
                    "part_uploaded part=%s size=%s upload_id=%s",
                    piece.part_number,
                    piece.length,
                    upload_id,
                )
                completed.append(CompletedPart(part_number=piece.part_number, etag=etag))
        return completed


class BodyListPartSource(_PartSource):
    """Uploads caller-supplied bodies in list order, one part each.

    Used when a large object is already chunked or streamed so it never has to
    be buffered in memory as a whole.
    """

    def validate(self, bodies: Sequence[PartBody]) -> bool:
        if not bodies:
            logger.error("body_list_invalid reason=empty")
            return False
        count = len(bodies)
        if count > self._max_parts:
            logger.error(
                "body_list_invalid reason=part_count count=%s max=%s",
                count,
                self._max_parts,
            )
            return False
        for index, part in enumerate(bodies[:-1], start=1):
            if part.content_length is None:
                logger.error("body_list_invalid reason=unknown_length part=%s", index)
                return False
            if part.content_length < self._min_part_size:
                logger.error(
                    "body_list_invalid reason=part_too_small part=%s size=%s minimum=%s",
                    index,
                    part.content_length,
                    self._min_part_size,
                )
                return False
        return True

    def produce_parts(
        self,
        bodies: Sequence[PartBody],
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> list[CompletedPart]:
        completed: list[CompletedPart] = []
        for part_number, part in enumerate(bodies, start=1):
            self._check_cancelled(part_number)
            etag = self._storage.upload_part(
                bucket=bucket,
                object_key=object_key,
                upload_id=upload_id,
                part_number=part_number,
                body=part.body,
                content_length=part.content_length,
            )
            logger.info("part_uploaded part=%s upload_id=%s", part_number, upload_id)
            completed.append(CompletedPart(part_number=part_number, etag=etag))
        return completed


@dataclass(frozen=True, slots=True)
class ComposeSource:
    """A remote object that becomes part ``part_number`` of the composed object."""

    part_number: int
    object: ObjectSummary


def parse_part_number(key: str) -> int:
    """Read the part order encoded in a compose source key."""
    name = key.rsplit("/", 1)[-1]
    try:
        value = int(name)
    except (TypeError, ValueError):
        raise CopySourceError(f"compose source key {key!r} is not a part number") from None
    if value < 1 or value > PROTOCOL_MAX_PARTS:
        raise CopySourceError(
            f"compose source key {key!r} must be between 1 and {PROTOCOL_MAX_PARTS}"
        )
    return value


class CopyComposePartSource(_PartSource):
    """Composes existing objects into one via server-side part copies.

    Source objects are named by their intended part order (``1``, ``2``, ...),
    optionally under a prefix.
    """

    def __init__(
        self,
        storage: StorageClient,
        *,
        source_bucket: str,
        min_part_size_bytes: int = PROTOCOL_MIN_PART_SIZE_BYTES,
        max_parts: int = PROTOCOL_MAX_PARTS,
        cancel_event: threading.Event | None = None,
    ) -> None:
        super().__init__(
            storage,
            min_part_size_bytes=min_part_size_bytes,
            max_parts=max_parts,
            cancel_event=cancel_event,
        )
        self._source_bucket = source_bucket

    @staticmethod
    def order_sources(objects: Sequence[ObjectSummary]) -> list[ComposeSource]:
        """Sort sources by their numeric key; numbers must run 1..N exactly."""
        ordered = sorted(
            (ComposeSource(part_number=parse_part_number(obj.key), object=obj) for obj in objects),
            key=lambda source: source.part_number,
        )
        for expected, source in enumerate(ordered, start=1):
            if source.part_number != expected:
                raise CopySourceError(
                    f"compose sources must be numbered 1..{len(ordered)} without gaps "
                    f"or duplicates; found {source.object.key!r} at position {expected}"
                )
        return ordered

    def validate(self, sources: Sequence[ComposeSource]) -> bool:
        count = len(sources)
        if count < 2 or count > self._max_parts:
            logger.error(
                "compose_invalid reason=part_count count=%s max=%s", count, self._max_parts
            )
            return False
        for source in sources[:-1]:
            size = source.object.size_bytes
            if size is not None and size < self._min_part_size:
                logger.error(
                    "compose_invalid reason=part_too_small key=%s size=%s minimum=%s",
                    source.object.key,
                    size,
                    self._min_part_size,
                )
                return False
        return True

    def produce_parts(
        self,
        sources: Sequence[ComposeSource],
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> list[CompletedPart]:
        completed: list[CompletedPart] = []
        for source in sources:
            self._check_cancelled(source.part_number)
            etag = self._storage.upload_part_copy(
                source_bucket=self._source_bucket,
                source_key=source.object.key,
                bucket=bucket,
                object_key=object_key,
                upload_id=upload_id,
                part_number=source.part_number,
            )
            logger.info(
                "part_copied part=%s source=%s upload_id=%s",
                source.part_number,
                source.object.key,
                upload_id,
            )
            completed.append(CompletedPart(part_number=source.part_number, etag=etag))
        return completed
