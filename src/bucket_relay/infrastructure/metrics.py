"""Prometheus metrics for Bucket Relay."""

from prometheus_client import Counter, Gauge, Histogram, Info, CollectorRegistry, REGISTRY, start_http_server


class RelayMetrics:
    """Metrics collector for the relay pipeline."""

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        # Polling
        self.poll_cycles = Counter(
            "bucket_relay_poll_cycles_total",
            "Total poll cycles",
            ["result"],  # completed, failed, skipped
            registry=registry,
        )
        self.poll_cycle_duration = Histogram(
            "bucket_relay_poll_cycle_duration_seconds",
            "Duration of a full poll cycle",
            buckets=[0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, 900.0],
            registry=registry,
        )
        self.buckets_discovered = Counter(
            "bucket_relay_buckets_discovered_total",
            "Buckets seen for the first time",
            registry=registry,
        )
        self.bucket_scan_errors = Counter(
            "bucket_relay_bucket_scan_errors_total",
            "Bucket scans that failed",
            ["bucket"],
            registry=registry,
        )
        self.objects_discovered = Counter(
            "bucket_relay_objects_discovered_total",
            "Undelivered objects found by polling",
            ["bucket"],
            registry=registry,
        )

        # Delivery
        self.files_delivered = Counter(
            "bucket_relay_files_delivered_total",
            "Objects fully delivered",
            ["mode"],  # single, chunked
            registry=registry,
        )
        self.chunks_delivered = Counter(
            "bucket_relay_chunks_delivered_total",
            "Parts of split objects delivered",
            registry=registry,
        )
        self.bytes_delivered = Counter(
            "bucket_relay_bytes_delivered_total",
            "Bytes of objects fully delivered",
            registry=registry,
        )
        self.delivery_failures = Counter(
            "bucket_relay_delivery_failures_total",
            "Object deliveries that failed",
            ["error_type"],
            registry=registry,
        )
        self.process_file_latency = Histogram(
            "bucket_relay_process_file_latency_seconds",
            "Fetch-to-commit latency per object",
            buckets=[0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 600.0, 3600.0],
            registry=registry,
        )
        self.rate_limit_wait = Histogram(
            "bucket_relay_rate_limit_wait_seconds",
            "Time spent waiting on the delivery rate limiter",
            buckets=[0.0, 0.01, 0.05, 0.1, 0.5, 1.0],
            registry=registry,
        )

        # Retry backlog
        self.retry_entries_recorded = Counter(
            "bucket_relay_retry_entries_recorded_total",
            "Failures written to the retry backlog",
            registry=registry,
        )
        self.retry_entries_resolved = Counter(
            "bucket_relay_retry_entries_resolved_total",
            "Retry entries removed after delivery was confirmed",
            registry=registry,
        )
        self.retry_queue_depth = Gauge(
            "bucket_relay_retry_queue_depth",
            "Outstanding retry entries",
            registry=registry,
        )

        # Heartbeat
        self.heartbeats_sent = Counter(
            "bucket_relay_heartbeats_sent_total",
            "Status heartbeats sent",
            registry=registry,
        )

        # System Info
        self.system_info = Info(
            "bucket_relay",
            "Bucket relay system information",
            registry=registry,
        )


_metrics: RelayMetrics | None = None


def get_metrics() -> RelayMetrics:
    """Get the singleton metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = RelayMetrics()
    return _metrics


def start_metrics_server(port: int, registry: CollectorRegistry = REGISTRY) -> None:
    """Expose the registry on its own HTTP listener."""
    start_http_server(port, registry=registry)
