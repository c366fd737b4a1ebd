"""S3-compatible object storage adapter (AWS S3, MinIO).

Implements ObjectStoragePort with a synchronous boto3 client. boto3
clients are thread-safe, so one client serves every worker thread.

Errors:
    Connection and endpoint failures map to ConnectivityError; a missing
    key maps to ObjectNotFoundError. Other service errors propagate as
    ConnectivityError with the S3 error code in context.
"""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cbt_backup.domain.errors import ConnectivityError, ObjectNotFoundError
from cbt_backup.infrastructure.config import StorageConfig


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_NO_BUCKET_CODES = {"NoSuchBucket", "404", "NotFound"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3ObjectStorage:
    """Object storage backed by an S3-compatible service.

    Example:
        storage = S3ObjectStorage.from_config(config.storage)
        storage.ensure_bucket()
        storage.put("metadata/b1/manifest.json", data)
    """

    def __init__(self, bucket: str, client: Any, region: str | None = None) -> None:
        """Initialize the adapter.

        Args:
            bucket: Bucket holding all objects.
            client: A boto3 S3 client.
            region: Region a missing bucket is created in.
        """
        self._bucket = bucket
        self._client = client
        self._region = region

    @classmethod
    def from_config(cls, config: StorageConfig) -> S3ObjectStorage:
        """Build a client for the configured endpoint with path-style addressing."""
        client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
            use_ssl=config.use_ssl,
            config=BotoConfig(
                s3={"addressing_style": "path"},
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
        return cls(config.bucket, client, config.region)

    @property
    def bucket(self) -> str:
        return self._bucket

    def ensure_bucket(self) -> None:
        try:
            self._client.head_bucket(Bucket=self._bucket)
            return
        except ClientError as e:
            if _error_code(e) not in _NO_BUCKET_CODES:
                raise self._connectivity("head_bucket", self._bucket, e) from e
        except BotoCoreError as e:
            raise self._connectivity("head_bucket", self._bucket, e) from e

        logger.info("Creating bucket %s", self._bucket)
        try:
            self._client.create_bucket(**self._create_bucket_args())
        except ClientError as e:
            if _error_code(e) not in {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}:
                raise self._connectivity("create_bucket", self._bucket, e) from e
        except BotoCoreError as e:
            raise self._connectivity("create_bucket", self._bucket, e) from e

    def _create_bucket_args(self) -> dict[str, Any]:
        args: dict[str, Any] = {"Bucket": self._bucket}
        # us-east-1 rejects an explicit LocationConstraint.
        if self._region and self._region != "us-east-1":
            args["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        return args

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=path,
                Body=data,
                ContentLength=len(data),
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._connectivity("put_object", path, e) from e

    def get(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=path)
            return response["Body"].read()
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"object not found: {path}", path=path) from e
            raise self._connectivity("get_object", path, e) from e
        except BotoCoreError as e:
            raise self._connectivity("get_object", path, e) from e

    def list(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
        except (ClientError, BotoCoreError) as e:
            raise self._connectivity("list_objects_v2", prefix, e) from e
        return sorted(keys)

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=path)
            return True
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            raise self._connectivity("head_object", path, e) from e
        except BotoCoreError as e:
            raise self._connectivity("head_object", path, e) from e

    def delete(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=path)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return
            raise self._connectivity("delete_object", path, e) from e
        except BotoCoreError as e:
            raise self._connectivity("delete_object", path, e) from e

    def _connectivity(self, operation: str, path: str, error: Exception) -> ConnectivityError:
        context: dict[str, Any] = {"operation": operation, "bucket": self._bucket, "path": path}
        if isinstance(error, ClientError):
            context["code"] = _error_code(error)
        return ConnectivityError(f"object storage request failed: {error}", **context)
