"""Configuration management for Bucket Relay using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bucket_relay.domain.errors import ConfigurationError


class StorageConfig(BaseSettings):
    """S3-compatible storage connection."""

    model_config = SettingsConfigDict(env_prefix="RELAY_STORAGE_")

    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    region: str = "us-east-1"
    timeout_seconds: float = Field(default=30.0, gt=0)
    force_path_style: bool = True  # MinIO/RustFS need path-style addressing


class TelegramConfig(BaseSettings):
    """Telegram Bot API delivery endpoint."""

    model_config = SettingsConfigDict(env_prefix="RELAY_TELEGRAM_")

    bot_token: str = ""
    chat_id: str = ""
    api_base_url: str = "https://api.telegram.org"
    timeout_seconds: float = Field(default=300.0, gt=0)
    rate_limit_ms: int = Field(default=100, ge=0)
    caption_limit: int = Field(default=1024, gt=3)


class ChunkingConfig(BaseSettings):
    """Split threshold, part size and local staging."""

    model_config = SettingsConfigDict(env_prefix="RELAY_CHUNKING_")

    split_threshold_bytes: int = Field(default=50 * 1024 * 1024, gt=0)
    chunk_size_bytes: int = Field(default=int(1.8 * 1024 * 1024 * 1024), gt=0)
    staging_dir: str = "./tmp/backups"


class PollingConfig(BaseSettings):
    """Bucket polling schedule."""

    model_config = SettingsConfigDict(env_prefix="RELAY_POLLING_")

    interval_minutes: int = Field(default=5, ge=1, le=1440)


class RetryConfig(BaseSettings):
    """Retry backoff table."""

    model_config = SettingsConfigDict(env_prefix="RELAY_RETRY_")

    backoff_seconds: list[int] = Field(default_factory=lambda: [60, 300, 900, 3600, 21600, 86400])

    @field_validator("backoff_seconds")
    @classmethod
    def _ascending(cls, value: list[int]) -> list[int]:
        if not value or any(v <= 0 for v in value) or value != sorted(value):
            raise ValueError("backoff_seconds must be a non-empty ascending list of positive ints")
        return value


class LedgerConfig(BaseSettings):
    """Ledger database."""

    model_config = SettingsConfigDict(env_prefix="RELAY_LEDGER_")

    database_url: str = "sqlite:///./data/relay.db"
    echo: bool = False


class HeartbeatConfig(BaseSettings):
    """Daily status message."""

    model_config = SettingsConfigDict(env_prefix="RELAY_HEARTBEAT_")

    enabled: bool = True
    interval_hours: int = Field(default=24, ge=1)


class ServerConfig(BaseSettings):
    """Operational REST API."""

    model_config = SettingsConfigDict(env_prefix="RELAY_SERVER_")

    host: str = "0.0.0.0"
    port: int = 8080


class ObservabilityConfig(BaseSettings):
    """Observability configuration."""

    model_config = SettingsConfigDict(env_prefix="RELAY_OBSERVABILITY_")

    log_level: str = "info"
    log_format: str = "json"
    persist_log_level: str = "warning"
    metrics_port: int = 9108  # 0 disables the metrics listener
    otlp_endpoint: str = ""
    otlp_insecure: bool = True
    trace_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    environment: str = "development"


class Config(BaseSettings):
    """Root configuration for Bucket Relay."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def missing_required(self) -> list[str]:
        """Names of required connection settings that are unset."""
        required = {
            "RELAY_STORAGE_ENDPOINT": self.storage.endpoint,
            "RELAY_STORAGE_ACCESS_KEY": self.storage.access_key,
            "RELAY_STORAGE_SECRET_KEY": self.storage.secret_key,
            "RELAY_TELEGRAM_BOT_TOKEN": self.telegram.bot_token,
            "RELAY_TELEGRAM_CHAT_ID": self.telegram.chat_id,
        }
        return [name for name, value in required.items() if not value]

    def require_complete(self) -> None:
        """Raise ConfigurationError if any required setting is missing."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")


@lru_cache
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config()
