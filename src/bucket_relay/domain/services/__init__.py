"""Domain services."""

from bucket_relay.domain.services.chunker import Chunker
from bucket_relay.domain.services.rate_limiter import RateLimiter
from bucket_relay.domain.services.retry_scheduler import RetryScheduler

__all__ = [
    "Chunker",
    "RateLimiter",
    "RetryScheduler",
]
