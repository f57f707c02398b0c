"""Dependency injection container for Bucket Relay."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import structlog
from opentelemetry import trace

from bucket_relay import __version__
from bucket_relay.adapters.outbound.s3_storage import S3ObjectStorage
from bucket_relay.adapters.outbound.sql_ledger import SqlLedger
from bucket_relay.adapters.outbound.telegram_messenger import TelegramMessenger
from bucket_relay.application.file_processor import FileProcessor
from bucket_relay.application.heartbeat import HeartbeatService
from bucket_relay.application.polling_service import PollingService
from bucket_relay.application.retry_sweeper import RetrySweeper
from bucket_relay.domain.entities import utc_now
from bucket_relay.domain.services.chunker import Chunker
from bucket_relay.domain.services.rate_limiter import RateLimiter
from bucket_relay.domain.services.retry_scheduler import RetryScheduler
from bucket_relay.domain.value_objects.backoff import BackoffPolicy
from bucket_relay.infrastructure.config import Config, get_config
from bucket_relay.infrastructure.logging import get_logger
from bucket_relay.infrastructure.metrics import RelayMetrics, get_metrics
from bucket_relay.infrastructure.tracing import get_tracer
from bucket_relay.ports.outbound import LedgerPort, MessagingPort, ObjectStoragePort


@dataclass
class Container:
    """Dependency injection container for relay components.

    Clients are constructed once at startup and shared by reference
    across poll cycles.
    """

    config: Config
    logger: structlog.stdlib.BoundLogger
    tracer: trace.Tracer
    metrics: RelayMetrics
    ledger: LedgerPort
    storage: ObjectStoragePort
    messenger: MessagingPort
    backoff: BackoffPolicy
    rate_limiter: RateLimiter
    chunker: Chunker
    retry_scheduler: RetryScheduler
    processor: FileProcessor
    poller: PollingService
    sweeper: RetrySweeper
    heartbeat: HeartbeatService

    _instance: "Container | None" = None

    @classmethod
    def create(
        cls,
        config: Optional[Config] = None,
        storage: Optional[ObjectStoragePort] = None,
        messenger: Optional[MessagingPort] = None,
        ledger: Optional[LedgerPort] = None,
        metrics: Optional[RelayMetrics] = None,
        tracer: Optional[trace.Tracer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "Container":
        """Create and initialize the container with all dependencies.

        Adapters may be passed in (tests use the in-memory mocks); any
        that are not are built from configuration.

        Raises:
            ConfigurationError: If a real client is needed and its
                connection settings are missing.
        """
        if cls._instance is not None:
            return cls._instance

        config = config or get_config()
        if storage is None or messenger is None:
            config.require_complete()

        logger = get_logger("container")
        tracer = tracer or get_tracer()
        metrics = metrics or get_metrics()
        clock = clock or utc_now

        backoff = BackoffPolicy(tuple(config.retry.backoff_seconds))
        ledger = ledger or SqlLedger.from_url(
            config.ledger.database_url,
            echo=config.ledger.echo,
            backoff=backoff,
            clock=clock,
        )
        storage = storage or S3ObjectStorage(config.storage)
        messenger = messenger or TelegramMessenger(config.telegram)

        rate_limiter = RateLimiter(config.telegram.rate_limit_ms / 1000)
        chunker = Chunker(
            split_threshold=config.chunking.split_threshold_bytes,
            chunk_size=config.chunking.chunk_size_bytes,
        )
        retry_scheduler = RetryScheduler(ledger, backoff, clock=clock)

        processor = FileProcessor(
            storage=storage,
            messenger=messenger,
            ledger=ledger,
            chunker=chunker,
            rate_limiter=rate_limiter,
            retry_scheduler=retry_scheduler,
            chat_id=config.telegram.chat_id,
            staging_dir=config.chunking.staging_dir,
            caption_limit=config.telegram.caption_limit,
            metrics=metrics,
            tracer=tracer,
        )
        poller = PollingService(
            storage=storage,
            ledger=ledger,
            interval_minutes=config.polling.interval_minutes,
            metrics=metrics,
            tracer=tracer,
            clock=clock,
        )
        sweeper = RetrySweeper(
            storage=storage,
            ledger=ledger,
            processor=processor,
            retry_scheduler=retry_scheduler,
            metrics=metrics,
            tracer=tracer,
        )
        heartbeat = HeartbeatService(
            messenger=messenger,
            ledger=ledger,
            chat_id=config.telegram.chat_id,
            interval_hours=config.heartbeat.interval_hours,
            enabled=config.heartbeat.enabled,
            rate_limiter=rate_limiter,
            metrics=metrics,
            clock=clock,
        )

        metrics.system_info.info(
            {
                "version": __version__,
                "environment": config.observability.environment,
                "polling_interval_minutes": str(config.polling.interval_minutes),
            }
        )

        cls._instance = cls(
            config=config,
            logger=logger,
            tracer=tracer,
            metrics=metrics,
            ledger=ledger,
            storage=storage,
            messenger=messenger,
            backoff=backoff,
            rate_limiter=rate_limiter,
            chunker=chunker,
            retry_scheduler=retry_scheduler,
            processor=processor,
            poller=poller,
            sweeper=sweeper,
            heartbeat=heartbeat,
        )

        logger.info(
            "bucket_relay_container_initialized",
            environment=config.observability.environment,
            polling_interval_minutes=config.polling.interval_minutes,
            split_threshold_bytes=config.chunking.split_threshold_bytes,
            heartbeat_enabled=config.heartbeat.enabled,
        )

        return cls._instance

    @classmethod
    def get(cls) -> "Container":
        """Get the singleton container instance."""
        if cls._instance is None:
            return cls.create()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the container (useful for testing)."""
        cls._instance = None

    def close(self) -> None:
        """Release clients that hold connections."""
        for resource in (self.messenger, self.ledger):
            closer: Any = getattr(resource, "close", None) or getattr(resource, "dispose", None)
            if closer is not None:
                closer()


def get_container() -> Container:
    """Get the dependency injection container."""
    return Container.get()
