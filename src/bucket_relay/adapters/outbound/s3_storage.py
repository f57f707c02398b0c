"""S3-compatible object storage adapter built on boto3.

Works against AWS S3 and self-hosted stores (MinIO, RustFS) with
path-style addressing. ETags are passed through exactly as the store
reports them, quotes included, so listing and HEAD agree on identity.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from bucket_relay.domain.entities import ObjectIdentity, StoredObject, utc_now
from bucket_relay.domain.errors import (
    AccessDeniedError,
    NotFoundError,
    RelayError,
    TransportError,
)
from bucket_relay.infrastructure.config import StorageConfig

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NotFound", "NoSuchKey", "NoSuchBucket"}
_ACCESS_DENIED_CODES = {"403", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"}

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def translate_client_error(exc: Exception, context: str) -> RelayError:
    """Map a botocore exception onto the relay error taxonomy."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{context}: {code or status} {error.get('Message', '')}".strip()
        if code in _NOT_FOUND_CODES or status == 404:
            return NotFoundError(message)
        if code in _ACCESS_DENIED_CODES or status == 403:
            return AccessDeniedError(message)
        return TransportError(message)
    return TransportError(f"{context}: {exc}")


class S3ObjectStorage:
    """ObjectStoragePort implementation backed by a boto3 S3 client."""

    def __init__(self, config: StorageConfig, client: Optional[Any] = None):
        """Initialize the adapter.

        Args:
            config: Storage connection settings.
            client: Pre-built S3 client (tests inject a stubbed one).
        """
        self.config = config
        self._client = client or self._create_client(config)

    @staticmethod
    def _create_client(config: StorageConfig):
        boto_config = BotoConfig(
            connect_timeout=config.timeout_seconds,
            read_timeout=config.timeout_seconds,
            retries={"max_attempts": 3, "mode": "standard"},
            s3={"addressing_style": "path" if config.force_path_style else "auto"},
        )
        return boto3.client(
            "s3",
            endpoint_url=config.endpoint or None,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
            config=boto_config,
        )

    @property
    def client(self):
        return self._client

    def list_buckets(self) -> list[str]:
        try:
            response = self._client.list_buckets()
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, "list_buckets") from exc
        return [b["Name"] for b in response.get("Buckets", []) if b.get("Name")]

    def list_objects(self, bucket: str) -> list[StoredObject]:
        objects: list[StoredObject] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket):
                for item in page.get("Contents", []):
                    objects.append(
                        StoredObject(
                            key=item.get("Key"),
                            etag=item.get("ETag"),
                            size=int(item.get("Size", 0) or 0),
                            last_modified=item.get("LastModified"),
                        )
                    )
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, f"list_objects {bucket}") from exc

        logger.debug(f"Listed {len(objects)} objects in {bucket}")
        return objects

    def stat_object(self, bucket: str, key: str) -> ObjectIdentity:
        try:
            response = self._client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, f"stat_object {bucket}/{key}") from exc

        return ObjectIdentity(
            bucket=bucket,
            key=key,
            etag=response.get("ETag", ""),
            size=int(response.get("ContentLength", 0) or 0),
            last_modified=response.get("LastModified") or utc_now(),
        )

    def download_object(self, bucket: str, key: str, destination: Path) -> Path:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            body = response["Body"]
            try:
                with open(destination, "wb") as fh:
                    for chunk in iter(lambda: body.read(DOWNLOAD_CHUNK_SIZE), b""):
                        fh.write(chunk)
            finally:
                body.close()
        except (ClientError, BotoCoreError) as exc:
            destination.unlink(missing_ok=True)
            raise translate_client_error(exc, f"download_object {bucket}/{key}") from exc
        except OSError:
            destination.unlink(missing_ok=True)
            raise

        logger.debug(f"Downloaded {bucket}/{key} to {destination}")
        return destination
