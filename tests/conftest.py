from __future__ import annotations

import pytest

from objstore.common.config import MiB, Settings, get_settings
from tests.services.mock_storage import MockStorageClient


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        S3_ACCESS_KEY_ID="test-key",
        S3_SECRET_ACCESS_KEY="test-secret",
        MULTIPART_PART_SIZE_BYTES=5 * MiB,
        MULTIPART_ABORT_MAX_ATTEMPTS=5,
        MULTIPART_ABORT_BACKOFF_SECONDS=0.25,
    )


@pytest.fixture()
def mock_storage() -> MockStorageClient:
    return MockStorageClient()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def orchestrator(mock_storage, settings, sleeps):
    from objstore.app.services.multipart_service import MultipartUploadOrchestrator

    return MultipartUploadOrchestrator(
        mock_storage, settings=settings, sleep=sleeps.append
    )
