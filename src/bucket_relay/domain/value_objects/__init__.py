"""Domain value objects."""

from bucket_relay.domain.value_objects.backoff import BackoffPolicy, DEFAULT_BACKOFF_SECONDS

__all__ = [
    "BackoffPolicy",
    "DEFAULT_BACKOFF_SECONDS",
]
