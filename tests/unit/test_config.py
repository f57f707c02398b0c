"""Unit tests for Bucket Relay configuration."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from bucket_relay.domain.errors import ConfigurationError
from bucket_relay.infrastructure.config import (
    ChunkingConfig,
    Config,
    PollingConfig,
    RetryConfig,
    StorageConfig,
    TelegramConfig,
)

REQUIRED_ENV = (
    "RELAY_STORAGE_ENDPOINT",
    "RELAY_STORAGE_ACCESS_KEY",
    "RELAY_STORAGE_SECRET_KEY",
    "RELAY_TELEGRAM_BOT_TOKEN",
    "RELAY_TELEGRAM_CHAT_ID",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in REQUIRED_ENV + ("RELAY_POLLING_INTERVAL_MINUTES",):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.unit
class TestConfig:
    """Test configuration loading and validation."""

    def test_default_config(self, clean_env):
        """Test default configuration values."""
        config = Config()
        assert config.polling.interval_minutes == 5
        assert config.telegram.rate_limit_ms == 100
        assert config.telegram.caption_limit == 1024
        assert config.chunking.split_threshold_bytes == 50 * 1024 * 1024
        assert config.chunking.chunk_size_bytes == int(1.8 * 1024 * 1024 * 1024)
        assert config.retry.backoff_seconds == [60, 300, 900, 3600, 21600, 86400]
        assert config.storage.force_path_style is True

    def test_missing_required_lists_every_unset_variable(self, clean_env):
        """Test that an empty environment reports all connection settings."""
        config = Config()
        assert config.missing_required() == list(REQUIRED_ENV)

    def test_require_complete_raises_configuration_error(self, clean_env):
        """Test that a half-configured process refuses to start."""
        config = Config(storage=StorageConfig(endpoint="http://minio:9000"))
        with pytest.raises(ConfigurationError) as exc_info:
            config.require_complete()
        assert "RELAY_TELEGRAM_BOT_TOKEN" in str(exc_info.value)
        assert "RELAY_STORAGE_ENDPOINT" not in str(exc_info.value)

    def test_complete_config(self, test_config):
        """Test that a fully populated config passes validation."""
        assert test_config.missing_required() == []
        test_config.require_complete()

    def test_env_override(self, monkeypatch):
        """Test that group prefixes are read from the environment."""
        monkeypatch.setenv("RELAY_POLLING_INTERVAL_MINUTES", "10")
        monkeypatch.setenv("RELAY_TELEGRAM_CHAT_ID", "-10042")
        assert PollingConfig().interval_minutes == 10
        assert TelegramConfig().chat_id == "-10042"


@pytest.mark.unit
class TestConfigValidation:
    """Test rejection of invalid values at load time."""

    @pytest.mark.parametrize("minutes", [0, 1441, -5])
    def test_polling_interval_bounds(self, minutes):
        """Test that the interval must be within 1-1440 minutes."""
        with pytest.raises(PydanticValidationError):
            PollingConfig(interval_minutes=minutes)

    @pytest.mark.parametrize("minutes", [1, 1440])
    def test_polling_interval_edges_accepted(self, minutes):
        """Test the inclusive interval bounds."""
        assert PollingConfig(interval_minutes=minutes).interval_minutes == minutes

    def test_non_positive_chunk_size_rejected(self):
        """Test that chunk sizes must be positive."""
        with pytest.raises(PydanticValidationError):
            ChunkingConfig(chunk_size_bytes=0)
        with pytest.raises(PydanticValidationError):
            ChunkingConfig(split_threshold_bytes=-1)

    @pytest.mark.parametrize("table", [[], [300, 60], [0, 60], [60, -1]])
    def test_backoff_table_must_be_ascending_and_positive(self, table):
        """Test backoff table validation."""
        with pytest.raises(PydanticValidationError):
            RetryConfig(backoff_seconds=table)
