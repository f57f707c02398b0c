"""Re-offer due retry entries to the file processor.

Runs at the end of each poll cycle, inside the poller's overlap guard,
so a retried object can never be delivered concurrently with a fresh
discovery of the same object.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from opentelemetry import trace

from bucket_relay.domain.entities import RetryEntry
from bucket_relay.domain.services.retry_scheduler import RetryScheduler
from bucket_relay.infrastructure.logging import get_logger
from bucket_relay.infrastructure.metrics import RelayMetrics, get_metrics
from bucket_relay.infrastructure.tracing import get_tracer
from bucket_relay.ports.inbound import FileProcessorPort
from bucket_relay.ports.outbound import LedgerPort, ObjectStoragePort


@dataclass
class RetrySweepResult:
    """Outcome counts for one sweep."""

    due: int = 0
    delivered: int = 0
    already_sent: int = 0
    failed: int = 0

    @property
    def resolved(self) -> int:
        return self.delivered + self.already_sent


class RetrySweeper:
    """Drive due retry entries back through the file processor.

    For each due entry, oldest first:
    - the object is re-stat'ed to get its current etag; a stat failure
      advances the entry's backoff,
    - if the current identity already has a SentRecord the entry is removed,
    - otherwise the object is processed again and the entry is removed on
      success. On failure the processor has already advanced the entry.
    """

    def __init__(
        self,
        storage: ObjectStoragePort,
        ledger: LedgerPort,
        processor: FileProcessorPort,
        retry_scheduler: RetryScheduler,
        metrics: Optional[RelayMetrics] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.processor = processor
        self.retry_scheduler = retry_scheduler
        self.metrics = metrics or get_metrics()
        self.tracer = tracer or get_tracer(__name__)
        self.logger = get_logger("retry_sweeper")

    def sweep(self, now: Optional[datetime] = None) -> RetrySweepResult:
        """Process every entry due at `now`."""
        result = RetrySweepResult()

        with self.tracer.start_as_current_span("retry_sweep") as span:
            entries = self.retry_scheduler.ready_entries(now)
            result.due = len(entries)
            span.set_attribute("relay.due_entries", result.due)

            for entry in entries:
                self._retry(entry, result)

        self.metrics.retry_queue_depth.set(self.retry_scheduler.queue_depth())
        if result.due:
            self.logger.info(
                "retry_sweep_completed",
                due=result.due,
                delivered=result.delivered,
                already_sent=result.already_sent,
                failed=result.failed,
            )
        return result

    def _retry(self, entry: RetryEntry, result: RetrySweepResult) -> None:
        self.logger.info("retrying_object", bucket=entry.bucket, key=entry.key, attempts=entry.attempts)

        try:
            identity = self.storage.stat_object(entry.bucket, entry.key)
        except Exception as exc:
            result.failed += 1
            self.logger.warning("retry_stat_failed", bucket=entry.bucket, key=entry.key, error=str(exc))
            self._advance(entry, str(exc) or type(exc).__name__)
            return

        if self.ledger.has_sent_record(*identity.identity):
            result.already_sent += 1
            self._resolve(entry)
            return

        try:
            self.processor.process_file(identity)
        except Exception as exc:
            result.failed += 1
            self.logger.warning("retry_delivery_failed", bucket=entry.bucket, key=entry.key, error=str(exc))
            if not getattr(exc, "retryable", True):
                # The processor skips the retry entry for these; keep backoff moving
                self._advance(entry, str(exc))
            return

        result.delivered += 1
        self._resolve(entry)

    def _advance(self, entry: RetryEntry, error_message: str) -> None:
        try:
            self.retry_scheduler.record_failure(entry.bucket, entry.key, entry.file_size, error_message)
            self.metrics.retry_entries_recorded.inc()
        except Exception:
            self.logger.exception("retry_entry_write_failed", bucket=entry.bucket, key=entry.key)

    def _resolve(self, entry: RetryEntry) -> None:
        if self.retry_scheduler.resolve(entry):
            self.metrics.retry_entries_resolved.inc()
