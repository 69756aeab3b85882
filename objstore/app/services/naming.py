"""Bucket name handling and default object key layout."""

from __future__ import annotations

import ipaddress
import logging
import re
import uuid
from datetime import datetime

from objstore.app.services.base import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_BASE_DIR = "uploads"
FILE_SEPARATOR = "/"
FILENAME_LINK = "-"

_BUCKET_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")
_HOST_PATTERN = re.compile(r"^(?:[a-z0-9-]+\.)+[a-z0-9-]+$")
_RESERVED_PREFIXES = ("xn--",)
_RESERVED_SUFFIXES = ("-s3alias", "--ol-s3")


def normalize_bucket_name(bucket: str | None) -> str:
    """Return the bucket name lower-cased; S3 rejects upper-case bucket names."""
    if bucket is None or not bucket.strip():
        raise ValidationError("bucket name is required")
    return bucket.strip().lower()


def is_valid_bucket_name(bucket: str | None) -> bool:
    if not bucket:
        logger.warning("bucket_name_invalid reason=empty")
        return False
    if not 3 <= len(bucket) <= 63:
        logger.warning("bucket_name_invalid bucket=%s reason=length", bucket)
        return False
    if not _BUCKET_PATTERN.match(bucket):
        logger.warning("bucket_name_invalid bucket=%s reason=charset", bucket)
        return False
    if ".." in bucket:
        logger.warning("bucket_name_invalid bucket=%s reason=adjacent_periods", bucket)
        return False
    try:
        ipaddress.IPv4Address(bucket)
    except ValueError:
        pass
    else:
        logger.warning("bucket_name_invalid bucket=%s reason=ip_address", bucket)
        return False
    if bucket.startswith(_RESERVED_PREFIXES) or bucket.endswith(_RESERVED_SUFFIXES):
        logger.warning("bucket_name_invalid bucket=%s reason=reserved_affix", bucket)
        return False
    return True


def is_like_host(bucket: str | None) -> bool:
    """True when the bucket name has the dotted ``a.b.c`` form of a host name."""
    return bool(bucket) and _HOST_PATTERN.match(bucket) is not None


def upload_key_prefix(base_dir: str | None = None, *, now: datetime | None = None) -> str:
    """Build ``{base_dir}/YYYY/MM/DD/{uuid}`` for newly uploaded objects."""
    base = (base_dir or DEFAULT_UPLOAD_BASE_DIR).strip(FILE_SEPARATOR)
    if not base:
        base = DEFAULT_UPLOAD_BASE_DIR
    moment = now or datetime.now()
    return FILE_SEPARATOR.join(
        [base, moment.strftime("%Y/%m/%d"), uuid.uuid4().hex]
    )


def build_upload_key(
    object_name: str,
    base_dir: str | None = None,
    *,
    now: datetime | None = None,
) -> str:
    """Place ``object_name`` under a fresh dated prefix.

    Empty names are returned unchanged so callers can reject them with their
    own validation.
    """
    if not object_name:
        return object_name
    return f"{upload_key_prefix(base_dir, now=now)}{FILENAME_LINK}{object_name}"
