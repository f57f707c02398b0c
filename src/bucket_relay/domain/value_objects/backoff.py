"""Retry backoff table.

Delays grow through a fixed ascending table and then plateau at the last
step. There is no max-attempts eviction: a permanently broken object keeps
being retried once per plateau interval until an operator intervenes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from bucket_relay.domain.errors import ValidationError


# 1 min, 5 min, 15 min, 1 h, 6 h, 24 h
DEFAULT_BACKOFF_SECONDS: tuple[int, ...] = (60, 300, 900, 3600, 21600, 86400)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential-ish backoff indexed by the number of prior attempts."""

    delays_seconds: tuple[int, ...] = DEFAULT_BACKOFF_SECONDS

    def __post_init__(self) -> None:
        if not self.delays_seconds:
            raise ValidationError("Backoff table must not be empty")
        if any(d <= 0 for d in self.delays_seconds):
            raise ValidationError("Backoff delays must be positive")
        if list(self.delays_seconds) != sorted(self.delays_seconds):
            raise ValidationError("Backoff delays must be ascending")

    @property
    def max_delay(self) -> timedelta:
        """The plateau delay."""
        return timedelta(seconds=self.delays_seconds[-1])

    @property
    def plateau_attempts(self) -> int:
        """Attempt count at which the delay stops growing."""
        return len(self.delays_seconds)

    def delay_for(self, attempts: int) -> timedelta:
        """Delay before the next retry given the attempts made so far.

        Args:
            attempts: Prior failed attempts. Values below zero are treated
                as zero; values past the table use the last step.

        Returns:
            Delay until the entry becomes eligible again.
        """
        index = min(max(attempts, 0), len(self.delays_seconds) - 1)
        return timedelta(seconds=self.delays_seconds[index])

    def next_retry_at(self, attempts: int, now: datetime) -> datetime:
        """Next eligible time for an entry with `attempts` prior attempts."""
        return now + self.delay_for(attempts)
