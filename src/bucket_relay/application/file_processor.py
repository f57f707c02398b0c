"""Delivery orchestrator.

Takes one discovered object through fetch, split decision, rate-limited
delivery and ledger commit. Any failure cleans up local files, advances
the object's retry entry and is re-raised to the caller.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from bucket_relay.domain.entities import ChunkDescriptor, ObjectIdentity, SentRecord
from bucket_relay.domain.errors import ValidationError
from bucket_relay.domain.services.captions import (
    CAPTION_LIMIT,
    ChunkInfo,
    caption_length,
    format_bytes,
    format_file_caption,
    format_timestamp,
    truncate_caption,
)
from bucket_relay.domain.services.chunker import Chunker
from bucket_relay.domain.services.rate_limiter import RateLimiter
from bucket_relay.domain.services.retry_scheduler import RetryScheduler
from bucket_relay.infrastructure.logging import get_logger
from bucket_relay.infrastructure.metrics import RelayMetrics, get_metrics
from bucket_relay.infrastructure.tracing import get_tracer
from bucket_relay.ports.outbound import DeliveryReceipt, LedgerPort, MessagingPort, ObjectStoragePort


class FileProcessor:
    """Deliver one object and record the outcome.

    Whole files are staged under `staging_dir` by key basename; split
    parts are written next to them. Part files are removed as soon as
    their own send is confirmed, the staged file at the end.

    The caller is expected to have checked the ledger for an existing
    SentRecord; this class does not re-check.
    """

    def __init__(
        self,
        storage: ObjectStoragePort,
        messenger: MessagingPort,
        ledger: LedgerPort,
        chunker: Chunker,
        rate_limiter: RateLimiter,
        retry_scheduler: RetryScheduler,
        chat_id: str,
        staging_dir: str | Path,
        caption_limit: int = CAPTION_LIMIT,
        metrics: Optional[RelayMetrics] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        if not chat_id:
            raise ValidationError("Destination chat ID is required")
        self.storage = storage
        self.messenger = messenger
        self.ledger = ledger
        self.chunker = chunker
        self.rate_limiter = rate_limiter
        self.retry_scheduler = retry_scheduler
        self.chat_id = chat_id
        self.staging_dir = Path(staging_dir)
        self.caption_limit = caption_limit
        self.metrics = metrics or get_metrics()
        self.tracer = tracer or get_tracer(__name__)
        self.logger = get_logger("file_processor")

    def process_file(self, identity: ObjectIdentity) -> SentRecord:
        """Fetch, deliver and record one object.

        Raises:
            ValidationError: If bucket, key or etag is missing, or the key does not
                name a file. No retry entry is written.
            Exception: Any delivery failure, after cleanup and the retry entry update.
        """
        if not identity.is_valid():
            raise ValidationError("Invalid file info: bucket, key, and etag are required")

        started = time.perf_counter()
        staged = self._staging_path(identity)
        cleanup: list[Path] = [staged]

        with self.tracer.start_as_current_span("process_file") as span:
            span.set_attribute("relay.bucket", identity.bucket)
            span.set_attribute("relay.key", identity.key)
            span.set_attribute("relay.size", identity.size)

            try:
                self.logger.info(
                    "processing_file",
                    bucket=identity.bucket,
                    key=identity.key,
                    size=format_bytes(identity.size),
                )
                self.storage.download_object(identity.bucket, identity.key, staged)

                if self.chunker.should_split(staged):
                    self.logger.info("file_requires_split", key=identity.key, threshold=self.chunker.split_threshold)
                    record = self._deliver_split(identity, staged, cleanup)
                else:
                    record = self._deliver_single(identity, staged)

                self._cleanup(cleanup)
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                self._cleanup(cleanup)
                self._handle_failure(identity, exc)
                raise

        self._clear_retry_entry(identity)
        self.metrics.bytes_delivered.inc(identity.size)
        self.metrics.process_file_latency.observe(time.perf_counter() - started)
        self.logger.info(
            "file_processed",
            bucket=identity.bucket,
            key=identity.key,
            chunk_count=record.chunk_count,
        )
        return record

    def _staging_path(self, identity: ObjectIdentity) -> Path:
        name = identity.file_name
        if name in (".", "..") or "/" in name or "\0" in name:
            raise ValidationError(f"Key {identity.key!r} does not name a file")
        return self.staging_dir / name

    def _deliver_single(self, identity: ObjectIdentity, staged: Path) -> SentRecord:
        caption = self._caption(identity)
        receipt = self._send(staged, caption)

        record = self.ledger.write_sent_record(
            identity.bucket,
            identity.key,
            identity.etag,
            identity.size,
            1,
            [receipt.delivery_ref],
        )
        self.metrics.files_delivered.labels(mode="single").inc()
        self.logger.info("file_sent", key=identity.key, message_id=receipt.delivery_ref)
        return record

    def _deliver_split(self, identity: ObjectIdentity, staged: Path, cleanup: list[Path]) -> SentRecord:
        chunks = self.chunker.split(staged, self.staging_dir)
        cleanup.extend(chunk.local_path for chunk in chunks)
        self.logger.info("file_split", key=identity.key, chunk_count=len(chunks))

        delivery_refs: list[str] = []
        for chunk in chunks:
            receipt = self._deliver_chunk(identity, chunk, len(chunks))
            delivery_refs.append(receipt.delivery_ref)
            # Bound disk usage to the staged file plus one part
            self._remove(chunk.local_path)

        # Only reached once every part is confirmed
        record = self.ledger.write_sent_record(
            identity.bucket,
            identity.key,
            identity.etag,
            identity.size,
            len(chunks),
            delivery_refs,
        )
        self.metrics.files_delivered.labels(mode="chunked").inc()
        return record

    def _deliver_chunk(self, identity: ObjectIdentity, chunk: ChunkDescriptor, total: int) -> DeliveryReceipt:
        caption = self._caption(identity, ChunkInfo(chunk.part_number, total, chunk.byte_length))

        with self.tracer.start_as_current_span("deliver_chunk") as span:
            span.set_attribute("relay.part_number", chunk.part_number)
            span.set_attribute("relay.part_count", total)
            span.set_attribute("relay.part_size", chunk.byte_length)
            try:
                receipt = self._send(chunk.local_path, caption)
            except Exception:
                self.logger.error(
                    "chunk_send_failed",
                    key=identity.key,
                    part=chunk.part_number,
                    total=total,
                )
                raise

        self.metrics.chunks_delivered.inc()
        self.logger.info(
            "chunk_sent",
            key=identity.key,
            part=chunk.part_number,
            total=total,
            message_id=receipt.delivery_ref,
        )
        return receipt

    def _send(self, path: Path, caption: str) -> DeliveryReceipt:
        waited = self.rate_limiter.acquire()
        self.metrics.rate_limit_wait.observe(waited)
        return self.messenger.send_document(self.chat_id, path, caption)

    def _caption(self, identity: ObjectIdentity, chunk_info: Optional[ChunkInfo] = None) -> str:
        caption = format_file_caption(
            bucket=identity.bucket,
            file_name=identity.file_name,
            file_size=identity.size,
            upload_time=format_timestamp(identity.last_modified),
            etag=identity.etag,
            chunk_info=chunk_info,
        )
        length = caption_length(caption)
        if length > self.caption_limit:
            self.logger.warning("caption_truncated", key=identity.key, length=length, limit=self.caption_limit)
            caption = truncate_caption(caption, self.caption_limit)
        return caption

    def _clear_retry_entry(self, identity: ObjectIdentity) -> None:
        # A poll can deliver an object that still has a pending entry
        try:
            if self.retry_scheduler.resolve_object(identity.bucket, identity.key):
                self.metrics.retry_entries_resolved.inc()
        except Exception:
            self.logger.exception("retry_entry_clear_failed", bucket=identity.bucket, key=identity.key)

    def _handle_failure(self, identity: ObjectIdentity, exc: Exception) -> None:
        self.metrics.delivery_failures.labels(error_type=type(exc).__name__).inc()
        self.logger.error(
            "processing_failed",
            bucket=identity.bucket,
            key=identity.key,
            error=str(exc),
            error_type=type(exc).__name__,
        )

        if not getattr(exc, "retryable", True):
            return

        try:
            self.retry_scheduler.record_failure(
                identity.bucket,
                identity.key,
                identity.size,
                str(exc) or type(exc).__name__,
            )
            self.metrics.retry_entries_recorded.inc()
        except Exception:
            self.logger.exception("retry_entry_write_failed", bucket=identity.bucket, key=identity.key)

    def _cleanup(self, paths: list[Path]) -> None:
        for path in paths:
            self._remove(path)

    def _remove(self, path: Path) -> None:
        try:
            if path.exists():
                path.unlink()
                self.logger.debug("cleaned_up", file=path.name)
        except OSError as exc:
            self.logger.warning("cleanup_failed", file=str(path), error=str(exc))
