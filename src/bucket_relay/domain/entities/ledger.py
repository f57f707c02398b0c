"""Ledger entities: delivered objects, bucket settings, retry backlog."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from bucket_relay.domain.entities.object import utc_now


@dataclass(frozen=True)
class SentRecord:
    """Durable fact that every part of an object was delivered.

    Append-only: created once all delivery references are confirmed,
    never updated or deleted.
    """

    bucket: str
    key: str
    etag: str
    file_size: int
    chunk_count: int
    delivery_refs: tuple[str, ...]
    sent_at: datetime = field(default_factory=utc_now)
    record_id: Optional[int] = None

    def get_full_path(self) -> str:
        """Get bucket/key path."""
        return f"{self.bucket}/{self.key}"


@dataclass
class BucketSetting:
    """Per-bucket polling switch.

    The enabled flag belongs to the operator; the poller only creates the
    row on first discovery and stamps last_checked_at after each scan.
    """

    bucket: str
    enabled: bool = True
    discovered_at: datetime = field(default_factory=utc_now)
    last_checked_at: Optional[datetime] = None


@dataclass
class RetryEntry:
    """Outstanding delivery failure for one (bucket, key)."""

    entry_id: int
    bucket: str
    key: str
    file_size: int
    attempts: int
    next_retry_at: datetime
    error_message: str
    last_attempt_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)

    def is_due(self, now: datetime) -> bool:
        """Check if the entry may be retried at `now`."""
        return self.next_retry_at <= now


@dataclass(frozen=True)
class LogEntry:
    """Operator-facing log line persisted in the ledger."""

    level: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    entry_id: Optional[int] = None


@dataclass(frozen=True)
class DeliveryStats:
    """Ledger summary over a time window."""

    files_sent: int
    bytes_sent: int
    buckets_active: int
    buckets_total: int
    failed_uploads: int
    retry_queue_depth: int
    last_sent_at: Optional[datetime] = None
