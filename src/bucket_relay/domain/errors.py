"""Error taxonomy for the relay pipeline.

Adapters translate library exceptions into these types at the port
boundary so the application layer can decide between retrying,
skipping and aborting without knowing which client raised.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay errors."""

    retryable: bool = True


class ConfigurationError(RelayError):
    """Raised when required connection parameters are missing or invalid.

    Fatal at startup: the worker must not run with a half-configured
    storage or delivery client.
    """

    retryable = False


class TransportError(RelayError):
    """Raised on network failures, timeouts and delivery endpoint refusals.

    Throttling (HTTP 429) from the messaging endpoint is reported as a
    TransportError as well and goes through the same backoff.
    """


class NotFoundError(RelayError):
    """Raised when a bucket or object vanished between listing and fetch."""


class AccessDeniedError(RelayError):
    """Raised when storage credentials lack permission for an operation."""


class ValidationError(RelayError):
    """Raised on malformed input: listing entries, identities, chunk sizes.

    Not expected at steady state. Logged and skipped, never retried.
    """

    retryable = False
