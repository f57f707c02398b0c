"""Bucket poller.

Discovers buckets and undelivered objects on a fixed interval. The first
cycle runs inside start(); later cycles are dispatched by a ticker thread.
A cycle that fires while another is still running is skipped, never
queued, so two scans can never both decide the same object is new.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from opentelemetry import trace

from bucket_relay.domain.entities import ObjectIdentity, utc_now
from bucket_relay.domain.errors import ValidationError
from bucket_relay.infrastructure.logging import get_logger
from bucket_relay.infrastructure.metrics import RelayMetrics, get_metrics
from bucket_relay.infrastructure.tracing import get_tracer
from bucket_relay.ports.inbound import CycleHook, ErrorCallback, NewObjectCallback
from bucket_relay.ports.outbound import LedgerPort, ObjectStoragePort

MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 1440


@dataclass
class PollCycleResult:
    """Summary of one completed (or aborted) poll cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    buckets_seen: int = 0
    buckets_discovered: list[str] = field(default_factory=list)
    buckets_scanned: list[str] = field(default_factory=list)
    buckets_failed: list[str] = field(default_factory=list)
    objects_listed: int = 0
    objects_skipped: int = 0
    new_objects: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class PollingService:
    """Periodic bucket scanner emitting one event per undelivered object."""

    def __init__(
        self,
        storage: ObjectStoragePort,
        ledger: LedgerPort,
        interval_minutes: int = 5,
        metrics: Optional[RelayMetrics] = None,
        tracer: Optional[trace.Tracer] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize polling service.

        Args:
            storage: Storage being watched.
            ledger: Record store for buckets and sent records.
            interval_minutes: Minutes between cycle starts (1-1440).
            metrics: Metrics collector.
            tracer: OpenTelemetry tracer.
            clock: Source of the current time.

        Raises:
            ValidationError: If the interval is out of range.
        """
        if not MIN_INTERVAL_MINUTES <= interval_minutes <= MAX_INTERVAL_MINUTES:
            raise ValidationError("Polling interval must be between 1 and 1440 minutes (24 hours)")

        self.storage = storage
        self.ledger = ledger
        self.interval_minutes = interval_minutes
        self.metrics = metrics or get_metrics()
        self.tracer = tracer or get_tracer(__name__)
        self._clock = clock
        self.logger = get_logger("polling_service")

        self._new_object_callbacks: list[NewObjectCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._cycle_hooks: list[CycleHook] = []

        self._poll_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._ticker: Optional[threading.Thread] = None
        self._cycle_threads: list[threading.Thread] = []
        self._running = False

        self.last_cycle: Optional[PollCycleResult] = None

    # ------------------------------------------------------------------
    # Event registration
    # ------------------------------------------------------------------

    def on_new_object(self, callback: NewObjectCallback) -> None:
        """Register a callback for undelivered objects, fired in listing order."""
        self._new_object_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register a callback for cycle-level failures."""
        self._error_callbacks.append(callback)

    def add_cycle_hook(self, hook: CycleHook) -> None:
        """Run `hook` at the end of every cycle, inside the overlap guard."""
        self._cycle_hooks.append(hook)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_polling(self) -> bool:
        """True while a cycle holds the overlap guard."""
        return self._poll_lock.locked()

    def start(self) -> None:
        """Run one cycle now, then one every `interval_minutes`."""
        with self._state_lock:
            if self._running:
                self.logger.warning("polling_already_running")
                return
            self._running = True
            self._stop_event.clear()

        self.logger.info("polling_started", interval_minutes=self.interval_minutes)
        self.poll()

        with self._state_lock:
            if not self._running:
                # stop() was called during the first cycle
                return
            self._ticker = threading.Thread(target=self._run_ticker, name="relay-poll-ticker", daemon=True)
            self._ticker.start()

    def stop(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Cancel the timer; an in-flight cycle is allowed to finish.

        Args:
            wait: Block until the ticker and any in-flight cycle have exited.
            timeout: Per-thread join timeout in seconds.
        """
        with self._state_lock:
            self._running = False
            self._stop_event.set()
            ticker = self._ticker
            self._ticker = None
            threads = list(self._cycle_threads)

        if wait:
            current = threading.current_thread()
            if ticker is not None and ticker is not current:
                ticker.join(timeout)
            for thread in threads:
                if thread is not current:
                    thread.join(timeout)

        self.logger.info("polling_stopped")

    def _run_ticker(self) -> None:
        interval = self.interval_minutes * 60
        next_fire = time.monotonic() + interval
        # Fixed-rate schedule; a slow cycle does not push later firings back
        while not self._stop_event.wait(max(0.0, next_fire - time.monotonic())):
            next_fire += interval
            self._dispatch_cycle()

    def _dispatch_cycle(self) -> None:
        thread = threading.Thread(target=self.poll, name="relay-poll-cycle", daemon=True)
        with self._state_lock:
            if self._stop_event.is_set():
                return
            self._cycle_threads = [t for t in self._cycle_threads if t.is_alive()]
            self._cycle_threads.append(thread)
            thread.start()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def poll(self) -> Optional[PollCycleResult]:
        """Run one cycle unless another is in progress.

        Returns:
            The cycle summary, or None if the cycle was skipped.
        """
        if not self._poll_lock.acquire(blocking=False):
            self.logger.warning("poll_cycle_skipped", reason="previous cycle still running")
            self.metrics.poll_cycles.labels(result="skipped").inc()
            return None

        try:
            result = self._poll_cycle()
        finally:
            self._poll_lock.release()

        self.last_cycle = result
        return result

    def _poll_cycle(self) -> PollCycleResult:
        result = PollCycleResult(started_at=self._clock())
        started = time.perf_counter()

        with self.tracer.start_as_current_span("poll_cycle") as span:
            self.logger.info("poll_cycle_started")

            try:
                bucket_names = self.storage.list_buckets()
                result.buckets_seen = len(bucket_names)
                self._register_buckets(bucket_names, result)
                enabled = self.ledger.list_buckets("enabled")
            except Exception as exc:
                result.error = str(exc) or type(exc).__name__
                result.finished_at = self._clock()
                span.record_exception(exc)
                self.metrics.poll_cycles.labels(result="failed").inc()
                self.logger.error("poll_cycle_failed", error=result.error, error_type=type(exc).__name__)
                self._emit_error(exc)
                return result

            for setting in enabled:
                self._scan_bucket(setting.bucket, result)

            self._run_cycle_hooks()

            span.set_attribute("relay.buckets_scanned", len(result.buckets_scanned))
            span.set_attribute("relay.new_objects", result.new_objects)

        result.finished_at = self._clock()
        duration = time.perf_counter() - started
        self.metrics.poll_cycles.labels(result="completed").inc()
        self.metrics.poll_cycle_duration.observe(duration)
        self.logger.info(
            "poll_cycle_completed",
            buckets=result.buckets_seen,
            scanned=len(result.buckets_scanned),
            failed=len(result.buckets_failed),
            new_objects=result.new_objects,
            duration_ms=round(duration * 1000),
        )
        return result

    def _register_buckets(self, bucket_names: list[str], result: PollCycleResult) -> None:
        for name in bucket_names:
            if not name:
                continue
            try:
                created = self.ledger.upsert_bucket(name, enabled_default=True)
            except Exception as exc:
                self.logger.warning("bucket_register_failed", bucket=name, error=str(exc))
                continue
            if created:
                result.buckets_discovered.append(name)
                self.metrics.buckets_discovered.inc()
                self.logger.info("bucket_discovered", bucket=name)

    def _scan_bucket(self, bucket: str, result: PollCycleResult) -> None:
        """List one bucket and emit its undelivered objects.

        A failure here is logged and only abandons this bucket.
        """
        with self.tracer.start_as_current_span("scan_bucket") as span:
            span.set_attribute("relay.bucket", bucket)
            try:
                entries = self.storage.list_objects(bucket)
                result.objects_listed += len(entries)
                default_time = self._clock()
                new_in_bucket = 0

                for entry in entries:
                    if not entry.is_complete():
                        result.objects_skipped += 1
                        continue

                    if self.ledger.has_sent_record(bucket, entry.key, entry.etag):
                        continue

                    identity = entry.to_identity(bucket, default_time)
                    new_in_bucket += 1
                    result.new_objects += 1
                    self.metrics.objects_discovered.labels(bucket=bucket).inc()
                    self.logger.info("new_object_detected", bucket=bucket, key=identity.key)
                    self._emit_new_object(identity)

                if new_in_bucket:
                    self.logger.info("bucket_new_objects", bucket=bucket, count=new_in_bucket)
                result.buckets_scanned.append(bucket)
            except Exception as exc:
                span.record_exception(exc)
                result.buckets_failed.append(bucket)
                self.metrics.bucket_scan_errors.labels(bucket=bucket).inc()
                self.logger.error(
                    "bucket_scan_failed",
                    bucket=bucket,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            finally:
                self._touch_checked(bucket)

    def _touch_checked(self, bucket: str) -> None:
        try:
            self.ledger.touch_bucket_checked(bucket)
        except Exception as exc:
            self.logger.warning("bucket_touch_failed", bucket=bucket, error=str(exc))

    def _run_cycle_hooks(self) -> None:
        for hook in self._cycle_hooks:
            try:
                hook()
            except Exception:
                self.logger.exception("cycle_hook_failed", hook=getattr(hook, "__qualname__", repr(hook)))

    def _emit_new_object(self, identity: ObjectIdentity) -> None:
        for callback in self._new_object_callbacks:
            try:
                callback(identity)
            except Exception as exc:
                # The driver owns per-object failures; one object never stops the batch
                self.logger.error(
                    "new_object_handler_failed",
                    bucket=identity.bucket,
                    key=identity.key,
                    error=str(exc),
                )

    def _emit_error(self, exc: Exception) -> None:
        for callback in self._error_callbacks:
            try:
                callback(exc)
            except Exception:
                self.logger.exception("error_handler_failed")
