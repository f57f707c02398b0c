"""Domain entities."""

from bucket_relay.domain.entities.chunk import ChunkDescriptor
from bucket_relay.domain.entities.ledger import (
    BucketSetting,
    DeliveryStats,
    LogEntry,
    RetryEntry,
    SentRecord,
)
from bucket_relay.domain.entities.object import ObjectIdentity, StoredObject, utc_now

__all__ = [
    "ObjectIdentity",
    "StoredObject",
    "SentRecord",
    "BucketSetting",
    "RetryEntry",
    "LogEntry",
    "DeliveryStats",
    "ChunkDescriptor",
    "utc_now",
]
