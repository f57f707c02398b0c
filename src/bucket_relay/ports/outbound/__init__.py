"""Outbound ports - External dependency interfaces for the relay.

Outbound ports define the interfaces for the object storage service the
relay reads from, the messaging endpoint it delivers to, and the ledger it
records delivery state in. Adapters translate their client library errors
into the types in bucket_relay.domain.errors.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Literal, Optional, Protocol, Sequence

from bucket_relay.domain.entities import (
    BucketSetting,
    DeliveryStats,
    LogEntry,
    ObjectIdentity,
    RetryEntry,
    SentRecord,
    StoredObject,
)


# =============================================================================
# Object Storage Port
# =============================================================================


class ObjectStoragePort(Protocol):
    """Protocol for the S3-compatible storage being watched.

    Every call is bounded by the adapter's own timeout so a stuck request
    fails fast into the caller's error-and-continue policy.

    Raises (all methods):
        TransportError: Network failure or timeout.
        NotFoundError: Bucket or object does not exist.
        AccessDeniedError: Credentials lack permission.
    """

    @abstractmethod
    def list_buckets(self) -> list[str]:
        """List the names of all buckets visible to the credentials."""
        ...

    @abstractmethod
    def list_objects(self, bucket: str) -> list[StoredObject]:
        """List every object in a bucket, following pagination.

        Args:
            bucket: Bucket name.

        Returns:
            Raw listing entries in listing order.
        """
        ...

    @abstractmethod
    def stat_object(self, bucket: str, key: str) -> ObjectIdentity:
        """Fetch current metadata for a single object.

        Args:
            bucket: Bucket name.
            key: Object key.

        Returns:
            Identity of the object as it exists now.
        """
        ...

    @abstractmethod
    def download_object(self, bucket: str, key: str, destination: Path) -> Path:
        """Stream an object into a local file.

        Args:
            bucket: Bucket name.
            key: Object key.
            destination: Local path to write; parent directories are created.

        Returns:
            The written path.
        """
        ...


# =============================================================================
# Messaging Port
# =============================================================================


@dataclass(frozen=True)
class DeliveryReceipt:
    """Confirmation returned by the messaging endpoint."""

    delivery_ref: str
    chat_id: str


class MessagingPort(Protocol):
    """Protocol for the messaging endpoint objects are relayed to.

    Captions are capped by the endpoint; callers pre-truncate.

    Raises (all methods):
        TransportError: Network failure, timeout, throttling or refusal.
        ValidationError: Missing destination, file or text.
    """

    @abstractmethod
    def send_document(self, chat_id: str, file_path: Path, caption: str) -> DeliveryReceipt:
        """Upload a local file as a document message.

        Args:
            chat_id: Destination chat.
            file_path: File to upload.
            caption: Caption text (already truncated).

        Returns:
            Receipt carrying the endpoint's message identifier.
        """
        ...

    @abstractmethod
    def send_text(self, chat_id: str, text: str) -> DeliveryReceipt:
        """Send a plain text message.

        Args:
            chat_id: Destination chat.
            text: Message body.

        Returns:
            Receipt carrying the endpoint's message identifier.
        """
        ...


# =============================================================================
# Ledger Port
# =============================================================================


BucketFilter = Literal["all", "enabled"]


class LedgerPort(Protocol):
    """Protocol for the durable record store.

    Each mutating call is a single atomic write, so a crash between steps
    of one object's processing never leaves a half-written record.
    """

    # Sent records

    @abstractmethod
    def has_sent_record(self, bucket: str, key: str, etag: str) -> bool:
        """Check whether (bucket, key, etag) was fully delivered."""
        ...

    @abstractmethod
    def write_sent_record(
        self,
        bucket: str,
        key: str,
        etag: str,
        size: int,
        chunk_count: int,
        delivery_refs: Sequence[str],
    ) -> SentRecord:
        """Append a sent record once every part is confirmed delivered."""
        ...

    @abstractmethod
    def recent_sent_records(self, limit: int = 100) -> list[SentRecord]:
        """Most recently sent records, newest first."""
        ...

    # Buckets

    @abstractmethod
    def upsert_bucket(self, bucket: str, enabled_default: bool = True) -> bool:
        """Create a bucket setting if unknown.

        Returns:
            True if the bucket was newly created.
        """
        ...

    @abstractmethod
    def list_buckets(self, bucket_filter: BucketFilter = "all") -> list[BucketSetting]:
        """List bucket settings, optionally only enabled ones."""
        ...

    @abstractmethod
    def touch_bucket_checked(self, bucket: str) -> None:
        """Stamp a bucket's last_checked_at with the current time."""
        ...

    # Retry entries

    @abstractmethod
    def upsert_retry_entry(
        self,
        bucket: str,
        key: str,
        size: int,
        error_message: str,
        now: Optional[datetime] = None,
    ) -> RetryEntry:
        """Create or advance the retry entry for (bucket, key).

        Increments attempts and recomputes next_retry_at from the backoff
        table. Never creates a second entry for the same (bucket, key).
        """
        ...

    @abstractmethod
    def list_retry_entries_due(self, now: datetime) -> list[RetryEntry]:
        """Entries with next_retry_at <= now, oldest-due first."""
        ...

    @abstractmethod
    def delete_retry_entry(self, entry_id: int) -> bool:
        """Delete a retry entry. Returns True if a row was removed."""
        ...

    @abstractmethod
    def delete_retry_entries_for(self, bucket: str, key: str) -> int:
        """Delete any retry entry for (bucket, key). Returns the number removed."""
        ...

    @abstractmethod
    def count_retry_entries(self) -> int:
        """Total outstanding retry entries."""
        ...

    # Logs and statistics

    @abstractmethod
    def add_log(self, level: str, message: str, metadata: Optional[dict[str, Any]] = None) -> None:
        """Persist an operator-facing log line."""
        ...

    @abstractmethod
    def recent_logs(self, limit: int = 100) -> list[LogEntry]:
        """Most recent log lines, newest first."""
        ...

    @abstractmethod
    def delivery_stats(self, since: datetime) -> DeliveryStats:
        """Summarise deliveries and failures since `since`."""
        ...

    @abstractmethod
    def ping(self) -> bool:
        """Check that the store is reachable."""
        ...


__all__ = [
    "ObjectStoragePort",
    "MessagingPort",
    "DeliveryReceipt",
    "LedgerPort",
    "BucketFilter",
]
