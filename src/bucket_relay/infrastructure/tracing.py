"""OpenTelemetry tracing for the relay worker.

One provider per process. Poll cycles are root spans; `scan_bucket`,
`process_file`, `deliver_chunk` and `retry_sweep` nest beneath them, so
the sampler decides once per cycle and children follow their parent.
"""

from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from bucket_relay import __version__
from bucket_relay.infrastructure.config import Config, get_config

SERVICE_NAME = "bucket_relay"


def build_tracer_provider(config: Config, exporter: Optional[SpanExporter] = None) -> TracerProvider:
    """Build a provider for `config` without installing it globally.

    Args:
        config: Relay configuration; only the observability section is read.
        exporter: Span exporter override. Defaults to OTLP when an
            endpoint is configured, console output otherwise.
    """
    observability = config.observability
    resource = Resource.create(
        {
            "service.name": SERVICE_NAME,
            "service.version": __version__,
            "deployment.environment": observability.environment,
            "relay.polling_interval_minutes": config.polling.interval_minutes,
        }
    )
    sampler = ParentBased(TraceIdRatioBased(observability.trace_sample_ratio))
    provider = TracerProvider(resource=resource, sampler=sampler)

    if exporter is None:
        if observability.otlp_endpoint:
            exporter = OTLPSpanExporter(
                endpoint=observability.otlp_endpoint,
                insecure=observability.otlp_insecure,
            )
        else:
            exporter = ConsoleSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def setup_tracing(config: Optional[Config] = None) -> trace.Tracer:
    """Install the relay's tracer provider and return its tracer."""
    config = config or get_config()
    trace.set_tracer_provider(build_tracer_provider(config))
    return trace.get_tracer(SERVICE_NAME)


def shutdown_tracing() -> None:
    """Flush buffered spans before the process exits."""
    provider = trace.get_tracer_provider()
    shutdown = getattr(provider, "shutdown", None)
    if shutdown is not None:
        shutdown()


def get_tracer(name: str = SERVICE_NAME) -> trace.Tracer:
    """Get a tracer instance."""
    return trace.get_tracer(name)
