from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

MiB = 1024 * 1024

# S3 protocol limits for multipart uploads
PROTOCOL_MIN_PART_SIZE_BYTES = 5 * MiB
PROTOCOL_MAX_PARTS = 10000

SUPPORTED_BACKENDS: tuple[str, ...] = (
    "s3",
    "minio",
    "aliyun",
    "tencent",
    "huawei",
    "qiniu",
)

# 这些厂商只接受 virtual-hosted 风格的请求（bucket 作为子域名）
VIRTUAL_HOSTED_BACKENDS: frozenset[str] = frozenset({"aliyun", "tencent", "qiniu"})


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class Settings:
    STORAGE_BACKEND: str = "s3"
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str | None = None
    S3_BUCKET: str | None = None
    UPLOAD_BASE_DIR: str = "uploads"
    MULTIPART_PART_SIZE_BYTES: int = PROTOCOL_MIN_PART_SIZE_BYTES
    MULTIPART_MIN_PART_SIZE_BYTES: int = PROTOCOL_MIN_PART_SIZE_BYTES
    MULTIPART_MAX_PARTS: int = PROTOCOL_MAX_PARTS
    MULTIPART_ABORT_MAX_ATTEMPTS: int = 5
    MULTIPART_ABORT_BACKOFF_SECONDS: float = 0.5
    ENABLE_METRICS: bool = True

    def __post_init__(self) -> None:
        self.STORAGE_BACKEND = (self.STORAGE_BACKEND or "").strip().lower()
        if self.STORAGE_BACKEND not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported STORAGE_BACKEND: {self.STORAGE_BACKEND!r}. "
                f"Expected one of {', '.join(SUPPORTED_BACKENDS)}."
            )
        if self.MULTIPART_MIN_PART_SIZE_BYTES <= 0:
            raise ValueError("MULTIPART_MIN_PART_SIZE_BYTES must be positive.")
        if self.MULTIPART_PART_SIZE_BYTES < self.MULTIPART_MIN_PART_SIZE_BYTES:
            raise ValueError(
                "MULTIPART_PART_SIZE_BYTES must not be smaller than "
                "MULTIPART_MIN_PART_SIZE_BYTES."
            )
        if not 1 <= self.MULTIPART_MAX_PARTS <= PROTOCOL_MAX_PARTS:
            raise ValueError(
                f"MULTIPART_MAX_PARTS must be between 1 and {PROTOCOL_MAX_PARTS}."
            )
        if self.MULTIPART_ABORT_MAX_ATTEMPTS < 1:
            raise ValueError("MULTIPART_ABORT_MAX_ATTEMPTS must be at least 1.")
        if self.MULTIPART_ABORT_BACKOFF_SECONDS < 0:
            raise ValueError("MULTIPART_ABORT_BACKOFF_SECONDS must not be negative.")

    @property
    def addressing_style(self) -> str:
        """Addressing style for the botocore client, derived from the backend."""
        if self.S3_ADDRESSING_STYLE:
            return self.S3_ADDRESSING_STYLE.strip().lower()
        if self.STORAGE_BACKEND in VIRTUAL_HOSTED_BACKENDS:
            return "virtual"
        return "path"

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        return cls(
            STORAGE_BACKEND=os.environ.get("STORAGE_BACKEND", cls.STORAGE_BACKEND),
            S3_ENDPOINT_URL=_as_optional(os.environ.get("S3_ENDPOINT_URL")),
            S3_REGION=os.environ.get("S3_REGION", cls.S3_REGION),
            S3_ACCESS_KEY_ID=_as_optional(os.environ.get("S3_ACCESS_KEY_ID")),
            S3_SECRET_ACCESS_KEY=_as_optional(os.environ.get("S3_SECRET_ACCESS_KEY")),
            S3_USE_SSL=_as_bool(os.environ.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=_as_optional(os.environ.get("S3_ADDRESSING_STYLE")),
            S3_BUCKET=_as_optional(os.environ.get("S3_BUCKET")),
            UPLOAD_BASE_DIR=os.environ.get("UPLOAD_BASE_DIR", cls.UPLOAD_BASE_DIR),
            MULTIPART_PART_SIZE_BYTES=int(
                os.environ.get(
                    "MULTIPART_PART_SIZE_BYTES", cls.MULTIPART_PART_SIZE_BYTES
                )
            ),
            MULTIPART_MIN_PART_SIZE_BYTES=int(
                os.environ.get(
                    "MULTIPART_MIN_PART_SIZE_BYTES", cls.MULTIPART_MIN_PART_SIZE_BYTES
                )
            ),
            MULTIPART_MAX_PARTS=int(
                os.environ.get("MULTIPART_MAX_PARTS", cls.MULTIPART_MAX_PARTS)
            ),
            MULTIPART_ABORT_MAX_ATTEMPTS=int(
                os.environ.get(
                    "MULTIPART_ABORT_MAX_ATTEMPTS", cls.MULTIPART_ABORT_MAX_ATTEMPTS
                )
            ),
            MULTIPART_ABORT_BACKOFF_SECONDS=float(
                os.environ.get(
                    "MULTIPART_ABORT_BACKOFF_SECONDS",
                    cls.MULTIPART_ABORT_BACKOFF_SECONDS,
                )
            ),
            ENABLE_METRICS=_as_bool(
                os.environ.get("ENABLE_METRICS"), cls.ENABLE_METRICS
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
