"""Status heartbeat and operator alerts sent to the backup chat."""

from __future__ import annotations

import html
from datetime import datetime, timedelta
from typing import Callable, Optional

from bucket_relay.domain.entities import RetryEntry, utc_now
from bucket_relay.domain.services.captions import (
    format_admin_alert,
    format_daily_heartbeat,
    format_timestamp,
)
from bucket_relay.domain.services.rate_limiter import RateLimiter
from bucket_relay.infrastructure.logging import get_logger
from bucket_relay.infrastructure.metrics import RelayMetrics, get_metrics
from bucket_relay.ports.outbound import DeliveryReceipt, LedgerPort, MessagingPort

STATS_WINDOW = timedelta(hours=24)


class HeartbeatService:
    """Send a periodic status summary and plateau alerts.

    The first heartbeat goes out on the first cycle after start; later
    ones once `interval_hours` have elapsed since the previous send.
    Texts share the delivery rate limiter with file sends.
    """

    def __init__(
        self,
        messenger: MessagingPort,
        ledger: LedgerPort,
        chat_id: str,
        interval_hours: int = 24,
        enabled: bool = True,
        rate_limiter: Optional[RateLimiter] = None,
        metrics: Optional[RelayMetrics] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.messenger = messenger
        self.ledger = ledger
        self.chat_id = chat_id
        self.interval = timedelta(hours=interval_hours)
        self.enabled = enabled
        self.rate_limiter = rate_limiter or RateLimiter(0)
        self.metrics = metrics or get_metrics()
        self._clock = clock
        self._last_sent_at: Optional[datetime] = None
        self.logger = get_logger("heartbeat")

    @property
    def last_sent_at(self) -> Optional[datetime]:
        return self._last_sent_at

    def is_due(self, now: Optional[datetime] = None) -> bool:
        if not self.enabled:
            return False
        if self._last_sent_at is None:
            return True
        return (now or self._clock()) - self._last_sent_at >= self.interval

    def maybe_send(self, now: Optional[datetime] = None) -> bool:
        """Send a heartbeat if one is due.

        Returns:
            True if a heartbeat was sent.
        """
        now = now or self._clock()
        if not self.is_due(now):
            return False
        self.send(now)
        return True

    def send(self, now: Optional[datetime] = None) -> DeliveryReceipt:
        """Send a heartbeat summarising the last 24 hours."""
        now = now or self._clock()
        stats = self.ledger.delivery_stats(now - STATS_WINDOW)
        text = format_daily_heartbeat(stats, format_timestamp(now + self.interval))

        receipt = self._send_text(text)
        self._last_sent_at = now
        self.metrics.heartbeats_sent.inc()
        self.logger.info(
            "heartbeat_sent",
            files_sent=stats.files_sent,
            retry_queue_depth=stats.retry_queue_depth,
            message_id=receipt.delivery_ref,
        )
        return receipt

    def send_alert(self, message: str) -> DeliveryReceipt:
        """Send an operator alert."""
        receipt = self._send_text(format_admin_alert(message))
        self.logger.warning("admin_alert_sent", message=message)
        return receipt

    def _send_text(self, text: str) -> DeliveryReceipt:
        waited = self.rate_limiter.acquire()
        self.metrics.rate_limit_wait.observe(waited)
        return self.messenger.send_text(self.chat_id, text)

    def alert_plateau(self, entry: RetryEntry) -> None:
        """Alert when a retry entry reaches the longest backoff step."""
        path = html.escape(f"{entry.bucket}/{entry.key}", quote=False)
        error = html.escape(entry.error_message, quote=False)
        self.send_alert(
            f"Delivery of <code>{path}</code> has failed {entry.attempts} times.\n"
            f"Last error: {error}\n"
            f"Next retry: {format_timestamp(entry.next_retry_at)}"
        )
