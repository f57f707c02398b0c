"""Structured logging configuration for Bucket Relay."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, Optional

import structlog
from structlog.types import Processor

from bucket_relay.infrastructure.config import Config, get_config

if TYPE_CHECKING:
    from bucket_relay.ports.outbound import LedgerPort


def add_service_context(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add service name to log entries."""
    event_dict["service"] = "bucket_relay"
    return event_dict


def setup_logging(config: Optional[Config] = None) -> structlog.stdlib.BoundLogger:
    """Configure structured logging for the relay worker."""
    config = config or get_config()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if config.observability.log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(config.observability.log_level.upper())

    # Reduce noise from third-party libraries
    for noisy in ("botocore", "boto3", "urllib3", "s3transfer", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return structlog.get_logger()


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger instance with optional name binding."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(component=name)
    return logger


class LedgerLogHandler(logging.Handler):
    """Persist warnings and errors into the ledger's log table.

    Gives operators a recent-failures view that survives restarts without
    shipping stdout anywhere.
    """

    def __init__(self, ledger: "LedgerPort", level: int | str = logging.WARNING):
        super().__init__(level)
        self.ledger = ledger

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message, metadata = self._split(record)
            metadata["logger"] = record.name
            if record.exc_info and record.exc_info[1] is not None:
                metadata["exception"] = repr(record.exc_info[1])
            self.ledger.add_log(record.levelname.lower(), message, metadata)
        except Exception:
            self.handleError(record)

    @staticmethod
    def _split(record: logging.LogRecord) -> tuple[str, dict[str, Any]]:
        """Separate the event text from structured context."""
        if isinstance(record.msg, dict):
            event = dict(record.msg)
            message = str(event.pop("event", ""))
            metadata = {
                key: value if isinstance(value, (str, int, float, bool)) or value is None else str(value)
                for key, value in event.items()
                if not key.startswith("_")
            }
            return message, metadata
        return record.getMessage(), {}


def attach_ledger_handler(ledger: "LedgerPort", level: str = "warning") -> LedgerLogHandler:
    """Attach a LedgerLogHandler to the root logger."""
    handler = LedgerLogHandler(ledger, level.upper())
    logging.getLogger().addHandler(handler)
    return handler
