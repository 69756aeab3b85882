"""Tests for S3 storage client."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from objstore.common.config import Settings
from objstore.infra.storage.client import (
    CompletedPart,
    CompletedUpload,
    MultipartUpload,
    NoSuchUploadError,
    StorageError,
)
from objstore.infra.storage.s3_client import S3StorageClient


def _client_error(code: str, operation: str = "AbortMultipartUpload") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestS3StorageClient:
    """Test S3StorageClient implementation."""

    @pytest.fixture
    def mock_s3(self):
        """Mock boto3 S3 client."""
        mock_client = MagicMock()
        with patch.object(S3StorageClient, "_build_client", return_value=mock_client):
            yield mock_client

    @pytest.fixture
    def mock_settings(self):
        """Create mock settings for S3."""
        settings = MagicMock()
        settings.S3_ENDPOINT_URL = "http://localhost:9000"
        settings.S3_REGION = "us-east-1"
        settings.S3_ACCESS_KEY_ID = "test-key"
        settings.S3_SECRET_ACCESS_KEY = "test-secret"
        settings.S3_USE_SSL = False
        settings.addressing_style = "path"
        return settings

    @pytest.fixture
    def client(self, mock_s3, mock_settings):
        """Create S3StorageClient with mocked boto3."""
        return S3StorageClient(settings=mock_settings)

    def test_init_multipart_upload(self, client, mock_s3):
        """Test initiating multipart upload."""
        mock_s3.create_multipart_upload.return_value = {
            "UploadId": "test-upload-id",
            "Bucket": "test-bucket",
            "Key": "test/key",
        }

        result = client.init_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            content_type="video/mp4",
            metadata={"origin": "camera-3"},
        )

        assert isinstance(result, MultipartUpload)
        assert result.upload_id == "test-upload-id"
        assert result.bucket == "test-bucket"
        assert result.object_key == "test/key"

        mock_s3.create_multipart_upload.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            ContentType="video/mp4",
            Metadata={"origin": "camera-3"},
        )

    def test_init_multipart_upload_missing_upload_id(self, client, mock_s3):
        """Test error when S3 response missing UploadId."""
        mock_s3.create_multipart_upload.return_value = {}

        with pytest.raises(StorageError, match="S3 response missing UploadId"):
            client.init_multipart_upload(bucket="test-bucket", object_key="test/key")

    def test_init_multipart_upload_exception(self, client, mock_s3):
        """Test error handling when create_multipart_upload fails."""
        mock_s3.create_multipart_upload.side_effect = _client_error(
            "AccessDenied", "CreateMultipartUpload"
        )

        with pytest.raises(StorageError, match="Failed to create multipart upload") as exc_info:
            client.init_multipart_upload(bucket="test-bucket", object_key="test/key")

        assert exc_info.value.code == "AccessDenied"

    def test_upload_part(self, client, mock_s3):
        """Test uploading one part."""
        mock_s3.upload_part.return_value = {"ETag": '"part-etag"'}

        etag = client.upload_part(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            part_number=2,
            body=b"abc",
            content_length=3,
        )

        assert etag == '"part-etag"'
        mock_s3.upload_part.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
            PartNumber=2,
            Body=b"abc",
            ContentLength=3,
        )

    def test_upload_part_without_length(self, client, mock_s3):
        """Test that ContentLength is omitted when the length is unknown."""
        mock_s3.upload_part.return_value = {"ETag": '"part-etag"'}

        client.upload_part(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            part_number=1,
            body=b"abc",
        )

        assert "ContentLength" not in mock_s3.upload_part.call_args[1]

    def test_upload_part_missing_etag(self, client, mock_s3):
        """Test error when S3 response has no ETag."""
        mock_s3.upload_part.return_value = {}

        with pytest.raises(StorageError, match="missing ETag for part 4"):
            client.upload_part(
                bucket="test-bucket",
                object_key="test/key",
                upload_id="test-upload-id",
                part_number=4,
                body=b"abc",
            )

    def test_upload_part_on_aborted_upload(self, client, mock_s3):
        """Test that NoSuchUpload is surfaced as NoSuchUploadError."""
        mock_s3.upload_part.side_effect = _client_error("NoSuchUpload", "UploadPart")

        with pytest.raises(NoSuchUploadError):
            client.upload_part(
                bucket="test-bucket",
                object_key="test/key",
                upload_id="gone",
                part_number=1,
                body=b"abc",
            )

    def test_upload_part_copy(self, client, mock_s3):
        """Test copying an existing object as a part."""
        mock_s3.upload_part_copy.return_value = {"CopyPartResult": {"ETag": '"copy-etag"'}}

        etag = client.upload_part_copy(
            source_bucket="chunks",
            source_key="job/1",
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            part_number=1,
        )

        assert etag == '"copy-etag"'
        mock_s3.upload_part_copy.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
            PartNumber=1,
            CopySource={"Bucket": "chunks", "Key": "job/1"},
        )

    def test_upload_part_copy_missing_etag(self, client, mock_s3):
        """Test error when the copy result carries no ETag."""
        mock_s3.upload_part_copy.return_value = {}

        with pytest.raises(StorageError, match="missing ETag for copied part 3"):
            client.upload_part_copy(
                source_bucket="chunks",
                source_key="3",
                bucket="test-bucket",
                object_key="test/key",
                upload_id="test-upload-id",
                part_number=3,
            )

    def test_complete_multipart_upload(self, client, mock_s3):
        """Test completing multipart upload."""
        mock_s3.complete_multipart_upload.return_value = {
            "ETag": '"test-etag"',
            "Bucket": "test-bucket",
            "Key": "test/key",
            "Location": "http://localhost:9000/test-bucket/test/key",
            "VersionId": "v1",
        }

        parts = [
            CompletedPart(part_number=2, etag="etag2"),
            CompletedPart(part_number=1, etag="etag1"),
        ]

        result = client.complete_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            parts=parts,
        )

        # Verify the parts are sorted by part_number
        call_args = mock_s3.complete_multipart_upload.call_args
        assert call_args[1]["UploadId"] == "test-upload-id"
        assert call_args[1]["MultipartUpload"]["Parts"] == [
            {"ETag": "etag1", "PartNumber": 1},
            {"ETag": "etag2", "PartNumber": 2},
        ]
        assert isinstance(result, CompletedUpload)
        assert result.etag == '"test-etag"'
        assert result.version_id == "v1"
        assert result.location == "http://localhost:9000/test-bucket/test/key"
        assert [p.part_number for p in result.parts] == [1, 2]

    def test_complete_multipart_upload_exception(self, client, mock_s3):
        """Test error handling when complete_multipart_upload fails."""
        mock_s3.complete_multipart_upload.side_effect = Exception("S3 error")

        with pytest.raises(StorageError, match="Failed to complete multipart upload"):
            client.complete_multipart_upload(
                bucket="test-bucket",
                object_key="test/key",
                upload_id="test-upload-id",
                parts=[CompletedPart(part_number=1, etag="etag1")],
            )

    def test_abort_multipart_upload(self, client, mock_s3):
        """Test aborting multipart upload."""
        client.abort_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
        )

        mock_s3.abort_multipart_upload.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
        )

    def test_abort_multipart_upload_exception(self, client, mock_s3):
        """Test error handling when abort_multipart_upload fails."""
        mock_s3.abort_multipart_upload.side_effect = Exception("S3 error")

        with pytest.raises(StorageError, match="Failed to abort multipart upload") as exc_info:
            client.abort_multipart_upload(
                bucket="test-bucket",
                object_key="test/key",
                upload_id="test-upload-id",
            )

        assert not isinstance(exc_info.value, NoSuchUploadError)
        assert exc_info.value.code is None

    def test_abort_unknown_upload(self, client, mock_s3):
        """Test that aborting a forgotten upload raises NoSuchUploadError."""
        mock_s3.abort_multipart_upload.side_effect = _client_error("NoSuchUpload")

        with pytest.raises(NoSuchUploadError) as exc_info:
            client.abort_multipart_upload(
                bucket="test-bucket",
                object_key="test/key",
                upload_id="test-upload-id",
            )

        assert exc_info.value.code == "NoSuchUpload"

    def test_list_parts(self, client, mock_s3):
        """Test listing one page of parts."""
        mock_s3.list_parts.return_value = {
            "Parts": [
                {"PartNumber": 3, "ETag": '"e3"', "Size": 5242880},
                {"PartNumber": 4, "ETag": '"e4"', "Size": 10},
            ],
            "IsTruncated": True,
            "NextPartNumberMarker": 4,
        }

        page = client.list_parts(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            part_number_marker=2,
        )

        assert [p.part_number for p in page.parts] == [3, 4]
        assert page.parts[0].size_bytes == 5242880
        assert page.is_truncated is True
        assert page.next_part_number_marker == 4
        mock_s3.list_parts.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
            PartNumberMarker=2,
        )

    def test_list_parts_empty(self, client, mock_s3):
        """Test listing an upload with no parts."""
        mock_s3.list_parts.return_value = {"IsTruncated": False}

        page = client.list_parts(
            bucket="test-bucket", object_key="test/key", upload_id="test-upload-id"
        )

        assert page.parts == ()
        assert page.is_truncated is False
        assert page.next_part_number_marker is None
        assert "PartNumberMarker" not in mock_s3.list_parts.call_args[1]

    def test_list_parts_unknown_upload(self, client, mock_s3):
        """Test that NoSuchUpload from list-parts maps to NoSuchUploadError."""
        mock_s3.list_parts.side_effect = _client_error("NoSuchUpload", "ListParts")

        with pytest.raises(NoSuchUploadError, match="Failed to list parts"):
            client.list_parts(
                bucket="test-bucket", object_key="test/key", upload_id="test-upload-id"
            )

    def test_copy_object(self, client, mock_s3):
        """Test server-side copy of a single object."""
        mock_s3.copy_object.return_value = {
            "CopyObjectResult": {"ETag": '"copied"', "LastModified": "2024-05-01"},
            "VersionId": "v7",
            "ServerSideEncryption": "AES256",
        }

        result = client.copy_object(
            source_bucket="chunks",
            source_key="1",
            bucket="test-bucket",
            object_key="test/key",
        )

        assert result.etag == '"copied"'
        assert result.version_id == "v7"
        assert result.server_side_encryption == "AES256"
        assert result.last_modified == "2024-05-01"
        mock_s3.copy_object.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            CopySource={"Bucket": "chunks", "Key": "1"},
        )

    def test_copy_object_exception(self, client, mock_s3):
        """Test error handling when copy_object fails."""
        mock_s3.copy_object.side_effect = _client_error("NoSuchKey", "CopyObject")

        with pytest.raises(StorageError, match="Failed to copy object") as exc_info:
            client.copy_object(
                source_bucket="chunks",
                source_key="1",
                bucket="test-bucket",
                object_key="test/key",
            )

        assert exc_info.value.code == "NoSuchKey"

    def test_list_objects_follows_continuation(self, client, mock_s3):
        """Test that list_objects reads every page."""
        mock_s3.list_objects_v2.side_effect = [
            {
                "Contents": [{"Key": "job/1", "Size": 5242880, "ETag": '"a"'}],
                "IsTruncated": True,
                "NextContinuationToken": "token-1",
            },
            {
                "Contents": [{"Key": "job/2", "Size": 7}],
                "IsTruncated": False,
            },
        ]

        objects = client.list_objects(bucket="chunks", prefix="job/")

        assert [o.key for o in objects] == ["job/1", "job/2"]
        assert objects[1].size_bytes == 7
        first, second = mock_s3.list_objects_v2.call_args_list
        assert first[1] == {"Bucket": "chunks", "Prefix": "job/"}
        assert second[1] == {
            "Bucket": "chunks",
            "Prefix": "job/",
            "ContinuationToken": "token-1",
        }

    def test_list_objects_empty_bucket(self, client, mock_s3):
        """Test listing a bucket with no objects."""
        mock_s3.list_objects_v2.return_value = {"KeyCount": 0, "IsTruncated": False}

        assert client.list_objects(bucket="chunks") == []
        mock_s3.list_objects_v2.assert_called_once_with(Bucket="chunks")

    def test_list_objects_exception(self, client, mock_s3):
        """Test error handling when list_objects_v2 fails."""
        mock_s3.list_objects_v2.side_effect = Exception("S3 error")

        with pytest.raises(StorageError, match="Failed to list objects"):
            client.list_objects(bucket="chunks")


class TestBuildClient:
    """Test boto3 client construction from settings."""

    @pytest.mark.parametrize(
        "backend,expected_style",
        [
            ("s3", "path"),
            ("minio", "path"),
            ("huawei", "path"),
            ("aliyun", "virtual"),
            ("tencent", "virtual"),
            ("qiniu", "virtual"),
        ],
    )
    def test_addressing_style_follows_backend(self, backend, expected_style):
        settings = Settings(
            STORAGE_BACKEND=backend,
            S3_ENDPOINT_URL="https://storage.example.com",
            S3_ACCESS_KEY_ID="test-key",
            S3_SECRET_ACCESS_KEY="test-secret",
        )

        with patch("boto3.client") as boto_client:
            S3StorageClient(settings=settings)

        _, kwargs = boto_client.call_args
        assert kwargs["endpoint_url"] == "https://storage.example.com"
        assert kwargs["aws_access_key_id"] == "test-key"
        assert kwargs["use_ssl"] is True
        assert kwargs["config"].s3 == {"addressing_style": expected_style}

    def test_explicit_addressing_style_wins(self):
        settings = Settings(
            STORAGE_BACKEND="aliyun",
            S3_ENDPOINT_URL="https://oss.example.com",
            S3_ADDRESSING_STYLE="Path",
        )

        with patch("boto3.client") as boto_client:
            S3StorageClient(settings=settings)

        assert boto_client.call_args[1]["config"].s3 == {"addressing_style": "path"}

    def test_clients_do_not_share_addressing_style(self):
        virtual = Settings(STORAGE_BACKEND="tencent", S3_ENDPOINT_URL="https://cos.example.com")
        path = Settings(STORAGE_BACKEND="minio", S3_ENDPOINT_URL="http://minio:9000")

        with patch("boto3.client") as boto_client:
            S3StorageClient(settings=virtual)
            S3StorageClient(settings=path)

        styles = [c[1]["config"].s3["addressing_style"] for c in boto_client.call_args_list]
        assert styles == ["virtual", "path"]
