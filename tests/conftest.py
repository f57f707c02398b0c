"""Pytest configuration and shared fixtures for Bucket Relay tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from opentelemetry import trace
from prometheus_client import CollectorRegistry

from bucket_relay.adapters.outbound.mock_messenger import MockMessenger
from bucket_relay.adapters.outbound.mock_object_storage import MockObjectStorage
from bucket_relay.adapters.outbound.sql_ledger import SqlLedger
from bucket_relay.application.file_processor import FileProcessor
from bucket_relay.domain.services.chunker import Chunker
from bucket_relay.domain.services.rate_limiter import RateLimiter
from bucket_relay.domain.services.retry_scheduler import RetryScheduler
from bucket_relay.domain.value_objects.backoff import BackoffPolicy
from bucket_relay.infrastructure.config import (
    ChunkingConfig,
    Config,
    HeartbeatConfig,
    LedgerConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
    TelegramConfig,
)
from bucket_relay.infrastructure.container import Container
from bucket_relay.infrastructure.metrics import RelayMetrics

KIB = 1024

# Scaled-down sizes: 50 KiB stands in for the 50 MB upload ceiling
TEST_SPLIT_THRESHOLD = 50 * KIB
TEST_CHUNK_SIZE = 50 * KIB
TEST_CHAT_ID = "-1001234567890"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def reset_container():
    """Reset the DI container before each test."""
    Container.reset()
    yield
    Container.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def test_config(tmp_path: Path, staging_dir: Path) -> Config:
    """Provide a complete test configuration."""
    return Config(
        storage=StorageConfig(endpoint="http://localhost:9000", access_key="test", secret_key="test"),
        telegram=TelegramConfig(bot_token="123456:TEST-TOKEN", chat_id=TEST_CHAT_ID, rate_limit_ms=0),
        chunking=ChunkingConfig(
            split_threshold_bytes=TEST_SPLIT_THRESHOLD,
            chunk_size_bytes=TEST_CHUNK_SIZE,
            staging_dir=str(staging_dir),
        ),
        ledger=LedgerConfig(database_url=f"sqlite:///{tmp_path / 'relay.db'}"),
        heartbeat=HeartbeatConfig(enabled=False),
        server=ServerConfig(port=0),
        observability=ObservabilityConfig(metrics_port=0, log_format="console"),
    )


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> RelayMetrics:
    """Metrics on a private registry so tests don't collide."""
    return RelayMetrics(registry=registry)


@pytest.fixture
def tracer() -> trace.Tracer:
    return trace.get_tracer("bucket_relay.tests")


@pytest.fixture
def backoff() -> BackoffPolicy:
    return BackoffPolicy()


@pytest.fixture
def ledger(tmp_path: Path, backoff: BackoffPolicy, clock: FakeClock):
    """SQLite ledger in a per-test file."""
    ledger = SqlLedger.from_url(f"sqlite:///{tmp_path / 'ledger.db'}", backoff=backoff, clock=clock)
    yield ledger
    ledger.dispose()


@pytest.fixture
def storage() -> MockObjectStorage:
    return MockObjectStorage()


@pytest.fixture
def messenger() -> MockMessenger:
    return MockMessenger()


@pytest.fixture
def chunker() -> Chunker:
    return Chunker(split_threshold=TEST_SPLIT_THRESHOLD, chunk_size=TEST_CHUNK_SIZE)


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(min_interval_seconds=0)


@pytest.fixture
def retry_scheduler(ledger: SqlLedger, backoff: BackoffPolicy, clock: FakeClock) -> RetryScheduler:
    return RetryScheduler(ledger, backoff, clock=clock)


@pytest.fixture
def processor(
    storage, messenger, ledger, chunker, rate_limiter, retry_scheduler, staging_dir, metrics, tracer
) -> FileProcessor:
    return FileProcessor(
        storage=storage,
        messenger=messenger,
        ledger=ledger,
        chunker=chunker,
        rate_limiter=rate_limiter,
        retry_scheduler=retry_scheduler,
        chat_id=TEST_CHAT_ID,
        staging_dir=staging_dir,
        metrics=metrics,
        tracer=tracer,
    )


@pytest.fixture
def container(test_config, storage, messenger, ledger, metrics, tracer, clock) -> Container:
    """Provide a container wired to the in-memory adapters."""
    return Container.create(
        config=test_config,
        storage=storage,
        messenger=messenger,
        ledger=ledger,
        metrics=metrics,
        tracer=tracer,
        clock=clock,
    )


# Pytest markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
