"""Outbound adapters - Implementations of outbound port interfaces.

Provides the boto3 storage client, the Telegram Bot API client, the
SQLAlchemy ledger, and in-memory mocks for testing and development.
"""

from bucket_relay.adapters.outbound.mock_messenger import MockMessenger, SentMessage
from bucket_relay.adapters.outbound.mock_object_storage import MockObject, MockObjectStorage
from bucket_relay.adapters.outbound.s3_storage import S3ObjectStorage, translate_client_error
from bucket_relay.adapters.outbound.sql_ledger import SqlLedger, create_ledger_engine
from bucket_relay.adapters.outbound.telegram_messenger import TelegramMessenger

__all__ = [
    # Storage
    "S3ObjectStorage",
    "translate_client_error",
    "MockObjectStorage",
    "MockObject",
    # Messaging
    "TelegramMessenger",
    "MockMessenger",
    "SentMessage",
    # Ledger
    "SqlLedger",
    "create_ledger_engine",
]
