"""Unit tests for the object storage adapters."""

from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from cbt_backup.adapters.outbound.local_object_storage import LocalObjectStorage
from cbt_backup.adapters.outbound.s3_object_storage import S3ObjectStorage
from cbt_backup.domain.errors import ConnectivityError, ObjectNotFoundError


def _client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def s3_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def s3_storage(s3_client: MagicMock) -> S3ObjectStorage:
    return S3ObjectStorage("snapshots", s3_client)


@pytest.mark.unit
class TestS3ObjectStorage:
    """Tests for S3ObjectStorage against a mocked boto3 client."""

    def test_put_sends_body(self, s3_storage: S3ObjectStorage, s3_client: MagicMock) -> None:
        """put uploads to the configured bucket."""
        s3_storage.put("metadata/b1/manifest.json", b"{}", "application/json")
        s3_client.put_object.assert_called_once_with(
            Bucket="snapshots",
            Key="metadata/b1/manifest.json",
            Body=b"{}",
            ContentLength=2,
            ContentType="application/json",
        )

    def test_get_reads_body(self, s3_storage: S3ObjectStorage, s3_client: MagicMock) -> None:
        """get returns the object bytes."""
        s3_client.get_object.return_value = {"Body": io.BytesIO(b"payload")}
        assert s3_storage.get("blocks/b1/0") == b"payload"

    def test_get_missing_key(self, s3_storage: S3ObjectStorage, s3_client: MagicMock) -> None:
        """NoSuchKey maps to ObjectNotFoundError."""
        s3_client.get_object.side_effect = _client_error("NoSuchKey")
        with pytest.raises(ObjectNotFoundError):
            s3_storage.get("blocks/b1/0")

    def test_access_denied_is_connectivity(
        self, s3_storage: S3ObjectStorage, s3_client: MagicMock
    ) -> None:
        """Other service errors keep their code in context."""
        s3_client.get_object.side_effect = _client_error("AccessDenied")
        with pytest.raises(ConnectivityError) as exc_info:
            s3_storage.get("blocks/b1/0")
        assert exc_info.value.context["code"] == "AccessDenied"
        assert exc_info.value.context["operation"] == "get_object"
        assert exc_info.value.retryable

    def test_endpoint_down_is_connectivity(
        self, s3_storage: S3ObjectStorage, s3_client: MagicMock
    ) -> None:
        """Transport failures map to ConnectivityError."""
        s3_client.put_object.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")
        with pytest.raises(ConnectivityError):
            s3_storage.put("blocks/b1/0", b"x")

    def test_list_paginates_and_sorts(
        self, s3_storage: S3ObjectStorage, s3_client: MagicMock
    ) -> None:
        """list walks every page."""
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "blocks/b1/2"}, {"Key": "blocks/b1/0"}]},
            {"Contents": [{"Key": "blocks/b1/1"}]},
            {},
        ]
        s3_client.get_paginator.return_value = paginator

        assert s3_storage.list("blocks/b1/") == ["blocks/b1/0", "blocks/b1/1", "blocks/b1/2"]
        paginator.paginate.assert_called_once_with(Bucket="snapshots", Prefix="blocks/b1/")

    def test_exists(self, s3_storage: S3ObjectStorage, s3_client: MagicMock) -> None:
        """exists is False for a 404 head."""
        assert s3_storage.exists("a")
        s3_client.head_object.side_effect = _client_error("404", "HeadObject")
        assert not s3_storage.exists("a")

    def test_ensure_bucket_creates_missing(
        self, s3_storage: S3ObjectStorage, s3_client: MagicMock
    ) -> None:
        """A missing bucket is created."""
        s3_client.head_bucket.side_effect = _client_error("404", "HeadBucket")
        s3_storage.ensure_bucket()
        s3_client.create_bucket.assert_called_once_with(Bucket="snapshots")

    def test_ensure_bucket_outside_us_east_1(self, s3_client: MagicMock) -> None:
        """Other regions send a LocationConstraint."""
        s3_client.head_bucket.side_effect = _client_error("404", "HeadBucket")
        S3ObjectStorage("snapshots", s3_client, region="eu-central-1").ensure_bucket()
        s3_client.create_bucket.assert_called_once_with(
            Bucket="snapshots",
            CreateBucketConfiguration={"LocationConstraint": "eu-central-1"},
        )

    def test_ensure_bucket_in_us_east_1(self, s3_client: MagicMock) -> None:
        """us-east-1 is created without a LocationConstraint."""
        s3_client.head_bucket.side_effect = _client_error("404", "HeadBucket")
        S3ObjectStorage("snapshots", s3_client, region="us-east-1").ensure_bucket()
        s3_client.create_bucket.assert_called_once_with(Bucket="snapshots")

    def test_ensure_bucket_existing(
        self, s3_storage: S3ObjectStorage, s3_client: MagicMock
    ) -> None:
        """An existing bucket is left alone."""
        s3_storage.ensure_bucket()
        s3_client.create_bucket.assert_not_called()


@pytest.mark.unit
class TestLocalObjectStorage:
    """Tests for LocalObjectStorage."""

    @pytest.fixture
    def local(self, temp_dir: Path) -> LocalObjectStorage:
        storage = LocalObjectStorage(temp_dir, "snapshots")
        storage.ensure_bucket()
        return storage

    def test_put_get(self, local: LocalObjectStorage, temp_dir: Path) -> None:
        """Objects are files under the bucket directory."""
        local.put("blocks/b1/00000000000000000000", b"data")
        assert local.get("blocks/b1/00000000000000000000") == b"data"
        assert (temp_dir / "snapshots" / "blocks" / "b1" / "00000000000000000000").is_file()

    def test_missing_object(self, local: LocalObjectStorage) -> None:
        """Reading a missing object raises ObjectNotFoundError."""
        with pytest.raises(ObjectNotFoundError):
            local.get("nope")
        assert not local.exists("nope")

    def test_list_by_prefix(self, local: LocalObjectStorage) -> None:
        """list returns sorted keys under a prefix."""
        for key in ("metadata/b/manifest.json", "metadata/a/manifest.json", "blocks/a/0"):
            local.put(key, b"{}")
        assert local.list("metadata/") == ["metadata/a/manifest.json", "metadata/b/manifest.json"]

    def test_overwrite_and_delete(self, local: LocalObjectStorage) -> None:
        """put replaces content; delete is idempotent."""
        local.put("k", b"one")
        local.put("k", b"two")
        assert local.get("k") == b"two"
        local.delete("k")
        local.delete("k")
        assert local.list("") == []

    def test_path_escape_rejected(self, local: LocalObjectStorage) -> None:
        """Keys cannot reach outside the bucket."""
        with pytest.raises(ValueError):
            local.put("../outside", b"x")
