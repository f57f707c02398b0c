"""Object entities as observed in the storage listing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ObjectIdentity:
    """An object discovered in a bucket.

    Dedup identity is the (bucket, key, etag) triple: a changed etag on the
    same key is a new object.
    """

    bucket: str
    key: str
    etag: str
    size: int = 0
    last_modified: datetime = field(default_factory=utc_now)

    @property
    def identity(self) -> tuple[str, str, str]:
        """The dedup triple."""
        return (self.bucket, self.key, self.etag)

    @property
    def file_name(self) -> str:
        """Base name of the key (the part after the last slash)."""
        return PurePosixPath(self.key).name or self.key

    def get_full_path(self) -> str:
        """Get bucket/key path."""
        return f"{self.bucket}/{self.key}"

    def is_valid(self) -> bool:
        """Check that bucket, key and etag are all present."""
        return bool(self.bucket and self.key and self.etag)


@dataclass
class StoredObject:
    """Raw entry from a bucket listing.

    Listings may contain entries without a key or etag; those are skipped
    by the poller rather than turned into an ObjectIdentity.
    """

    key: Optional[str]
    etag: Optional[str]
    size: int = 0
    last_modified: Optional[datetime] = None

    def is_complete(self) -> bool:
        """Check that the entry carries both a key and an etag."""
        return bool(self.key and self.etag)

    def to_identity(self, bucket: str, default_time: datetime) -> ObjectIdentity:
        """Build the identity for this entry.

        Args:
            bucket: Bucket the entry was listed from.
            default_time: Timestamp to use when the listing omits one.

        Returns:
            ObjectIdentity for the entry.
        """
        return ObjectIdentity(
            bucket=bucket,
            key=self.key or "",
            etag=self.etag or "",
            size=self.size or 0,
            last_modified=self.last_modified or default_time,
        )
