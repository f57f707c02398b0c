"""Mock object storage for testing and development.

This adapter provides an in-memory implementation of the
ObjectStoragePort protocol with failure injection.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from bucket_relay.domain.entities import ObjectIdentity, StoredObject, utc_now
from bucket_relay.domain.errors import NotFoundError, TransportError


logger = logging.getLogger(__name__)


@dataclass
class MockObject:
    """State for a mock stored object."""

    key: str
    data: bytes
    etag: str
    last_modified: datetime = field(default_factory=utc_now)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class _Failure:
    error: Exception
    remaining: Optional[int]  # None = fail forever


class MockObjectStorage:
    """Mock implementation of ObjectStoragePort for testing.

    Example:
        storage = MockObjectStorage()
        storage.put_object("backups", "db.sql", b"...")
        storage.inject_failure("download_object", bucket="backups", key="db.sql", count=1)
    """

    def __init__(self):
        """Initialize mock storage."""
        self._buckets: dict[str, dict[str, MockObject]] = {}
        self._raw_entries: dict[str, list[StoredObject]] = {}
        self._failures: dict[tuple[str, Optional[str], Optional[str]], _Failure] = {}
        self._lock = threading.Lock()
        self.downloads: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Test setup helpers
    # ------------------------------------------------------------------

    def create_bucket(self, bucket: str) -> None:
        """Create an empty bucket if it does not exist."""
        self._buckets.setdefault(bucket, {})
        self._raw_entries.setdefault(bucket, [])

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        etag: Optional[str] = None,
        last_modified: Optional[datetime] = None,
    ) -> MockObject:
        """Store an object, replacing any existing one under the same key.

        The default ETag is the quoted MD5 of the data, as S3 reports it
        for single-part uploads.
        """
        self.create_bucket(bucket)
        obj = MockObject(
            key=key,
            data=data,
            etag=etag or f'"{hashlib.md5(data).hexdigest()}"',
            last_modified=last_modified or utc_now(),
        )
        self._buckets[bucket][key] = obj
        logger.debug(f"Put mock object {bucket}/{key} ({obj.size} bytes)")
        return obj

    def add_listing_entry(self, bucket: str, entry: StoredObject) -> None:
        """Append a raw listing entry with no backing object (e.g. missing etag)."""
        self.create_bucket(bucket)
        self._raw_entries[bucket].append(entry)

    def delete_object(self, bucket: str, key: str) -> None:
        """Remove an object."""
        self._buckets.get(bucket, {}).pop(key, None)

    def inject_failure(
        self,
        operation: str,
        error: Optional[Exception] = None,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        count: Optional[int] = None,
    ) -> None:
        """Make an operation raise.

        Args:
            operation: Port method name, e.g. "list_objects".
            error: Exception to raise (TransportError by default).
            bucket: Only fail for this bucket (any bucket if None).
            key: Only fail for this key (any key if None).
            count: Number of calls to fail; None fails until cleared.
        """
        error = error or TransportError(f"Injected {operation} failure")
        self._failures[(operation, bucket, key)] = _Failure(error=error, remaining=count)

    def clear_failures(self) -> None:
        """Remove all injected failures."""
        self._failures.clear()

    def _maybe_fail(self, operation: str, bucket: Optional[str] = None, key: Optional[str] = None) -> None:
        with self._lock:
            for scope in ((operation, bucket, key), (operation, bucket, None), (operation, None, None)):
                failure = self._failures.get(scope)
                if failure is None:
                    continue
                if failure.remaining is not None:
                    failure.remaining -= 1
                    if failure.remaining <= 0:
                        del self._failures[scope]
                raise failure.error

    def _get(self, bucket: str, key: str) -> MockObject:
        if bucket not in self._buckets:
            raise NotFoundError(f"Bucket not found: {bucket}")
        obj = self._buckets[bucket].get(key)
        if obj is None:
            raise NotFoundError(f"Object not found: {bucket}/{key}")
        return obj

    # ------------------------------------------------------------------
    # ObjectStoragePort
    # ------------------------------------------------------------------

    def list_buckets(self) -> list[str]:
        self._maybe_fail("list_buckets")
        return sorted(self._buckets)

    def list_objects(self, bucket: str) -> list[StoredObject]:
        self._maybe_fail("list_objects", bucket)
        if bucket not in self._buckets:
            raise NotFoundError(f"Bucket not found: {bucket}")

        entries = [
            StoredObject(key=obj.key, etag=obj.etag, size=obj.size, last_modified=obj.last_modified)
            for obj in self._buckets[bucket].values()
        ]
        return entries + list(self._raw_entries[bucket])

    def stat_object(self, bucket: str, key: str) -> ObjectIdentity:
        self._maybe_fail("stat_object", bucket, key)
        obj = self._get(bucket, key)
        return ObjectIdentity(
            bucket=bucket,
            key=key,
            etag=obj.etag,
            size=obj.size,
            last_modified=obj.last_modified,
        )

    def download_object(self, bucket: str, key: str, destination: Path) -> Path:
        self._maybe_fail("download_object", bucket, key)
        obj = self._get(bucket, key)

        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(obj.data)
        self.downloads.append((bucket, key))
        return destination
