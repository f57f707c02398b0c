"""Persistent retry backlog for failed deliveries.

Entries are keyed by (bucket, key). A failure for a key that already has
an entry advances that entry in place; readiness is decided by the
ledger's next_retry_at column, so the backlog survives restarts.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from bucket_relay.domain.entities import RetryEntry, utc_now
from bucket_relay.domain.value_objects.backoff import BackoffPolicy
from bucket_relay.ports.outbound import LedgerPort

logger = logging.getLogger(__name__)


class RetryScheduler:
    """Record delivery failures and hand out entries that are due."""

    def __init__(
        self,
        ledger: LedgerPort,
        policy: Optional[BackoffPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize retry scheduler.

        Args:
            ledger: Record store holding the retry entries.
            policy: Backoff table. Must match the one the ledger was built with.
            clock: Source of the current time.
        """
        self.ledger = ledger
        self.policy = policy or BackoffPolicy()
        self._clock = clock
        self._plateau_callbacks: list[Callable[[RetryEntry], None]] = []

    def register_plateau_callback(self, callback: Callable[[RetryEntry], None]) -> None:
        """Register a callback fired when an entry reaches the backoff plateau.

        Fired once per entry, on the failure that makes its attempts equal
        the length of the backoff table.

        Args:
            callback: Function that takes the RetryEntry.
        """
        self._plateau_callbacks.append(callback)

    def record_failure(self, bucket: str, key: str, size: int, error_message: str) -> RetryEntry:
        """Create or advance the retry entry for (bucket, key).

        Args:
            bucket: Bucket name.
            key: Object key.
            size: Object size in bytes.
            error_message: Message of the error that caused the failure.

        Returns:
            The stored entry after the update.
        """
        entry = self.ledger.upsert_retry_entry(
            bucket, key, size, error_message or "Unknown error", now=self._clock()
        )
        logger.info(
            f"Retry scheduled for {bucket}/{key}: attempt {entry.attempts}, "
            f"next at {entry.next_retry_at.isoformat()}"
        )

        if entry.attempts == self.policy.plateau_attempts:
            for callback in self._plateau_callbacks:
                try:
                    callback(entry)
                except Exception:
                    logger.exception(f"Plateau callback failed for {bucket}/{key}")

        return entry

    def ready_entries(self, now: Optional[datetime] = None) -> list[RetryEntry]:
        """Entries whose next_retry_at <= now, oldest-due first."""
        return self.ledger.list_retry_entries_due(now or self._clock())

    def resolve(self, entry: RetryEntry) -> bool:
        """Remove an entry once its object is confirmed delivered.

        Returns:
            True if the entry was removed.
        """
        removed = self.ledger.delete_retry_entry(entry.entry_id)
        if removed:
            logger.info(f"Retry entry resolved for {entry.bucket}/{entry.key}")
        return removed

    def resolve_object(self, bucket: str, key: str) -> bool:
        """Remove the entry for (bucket, key), if any, after a delivery succeeds.

        Returns:
            True if an entry was removed.
        """
        removed = self.ledger.delete_retry_entries_for(bucket, key) > 0
        if removed:
            logger.info(f"Retry entry resolved for {bucket}/{key}")
        return removed

    def queue_depth(self) -> int:
        """Number of outstanding entries."""
        return self.ledger.count_retry_entries()
