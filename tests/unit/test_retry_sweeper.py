"""Unit tests for the retry sweeper and heartbeat."""

from datetime import datetime, timedelta, timezone

import pytest

from bucket_relay.application.heartbeat import HeartbeatService
from bucket_relay.application.retry_sweeper import RetrySweeper
from bucket_relay.domain.errors import TransportError, ValidationError
from bucket_relay.domain.services.rate_limiter import RateLimiter


@pytest.fixture
def sweeper(storage, ledger, processor, retry_scheduler, metrics, tracer) -> RetrySweeper:
    return RetrySweeper(
        storage=storage,
        ledger=ledger,
        processor=processor,
        retry_scheduler=retry_scheduler,
        metrics=metrics,
        tracer=tracer,
    )


@pytest.fixture
def heartbeat(messenger, ledger, metrics, clock) -> HeartbeatService:
    return HeartbeatService(
        messenger=messenger,
        ledger=ledger,
        chat_id="-100",
        interval_hours=24,
        metrics=metrics,
        clock=clock,
    )


@pytest.mark.unit
class TestRetrySweeper:
    """Test re-delivery of due entries."""

    def test_due_entry_is_delivered_and_resolved(self, sweeper, storage, messenger, ledger, retry_scheduler, clock):
        """Test that a successful retry removes the entry."""
        obj = storage.put_object("backups", "db.sql", b"data")
        retry_scheduler.record_failure("backups", "db.sql", obj.size, "timeout")
        clock.advance(seconds=61)

        result = sweeper.sweep()

        assert (result.due, result.delivered, result.failed) == (1, 1, 0)
        assert len(messenger.documents) == 1
        assert ledger.has_sent_record("backups", "db.sql", obj.etag)
        assert ledger.count_retry_entries() == 0

    def test_already_sent_entry_is_resolved_without_sending(
        self, sweeper, storage, messenger, ledger, retry_scheduler, clock
    ):
        """Test that an entry whose object is already delivered is just removed."""
        obj = storage.put_object("backups", "db.sql", b"data")
        retry_scheduler.record_failure("backups", "db.sql", obj.size, "timeout")
        ledger.write_sent_record("backups", "db.sql", obj.etag, obj.size, 1, ["1"])
        clock.advance(seconds=61)

        result = sweeper.sweep()

        assert result.already_sent == 1
        assert result.resolved == 1
        assert messenger.documents == []
        assert ledger.count_retry_entries() == 0

    def test_entry_not_yet_due_is_untouched(self, sweeper, storage, messenger, ledger, retry_scheduler, clock):
        """Test that entries wait for their backoff."""
        storage.put_object("backups", "db.sql", b"data")
        retry_scheduler.record_failure("backups", "db.sql", 4, "timeout")
        clock.advance(seconds=30)

        result = sweeper.sweep()

        assert result.due == 0
        assert messenger.document_calls == 0
        assert ledger.list_retry_entries()[0].attempts == 1

    def test_stat_failure_advances_backoff(self, sweeper, storage, ledger, retry_scheduler, clock):
        """Test that an object that can't be re-stat'ed stays in the backlog."""
        retry_scheduler.record_failure("backups", "gone.sql", 4, "timeout")
        storage.create_bucket("backups")
        clock.advance(seconds=61)

        result = sweeper.sweep()

        assert result.failed == 1
        entry = ledger.list_retry_entries()[0]
        assert entry.attempts == 2
        assert entry.next_retry_at == clock.now + timedelta(seconds=300)

    def test_failed_redelivery_advances_once(self, sweeper, storage, messenger, ledger, retry_scheduler, clock):
        """Test that a repeat delivery failure bumps attempts by exactly one."""
        storage.put_object("backups", "db.sql", b"data")
        retry_scheduler.record_failure("backups", "db.sql", 4, "timeout")
        messenger.fail_always(TransportError("still down"))
        clock.advance(seconds=61)

        result = sweeper.sweep()

        assert result.failed == 1
        entry = ledger.list_retry_entries()[0]
        assert entry.attempts == 2
        assert entry.error_message == "still down"

    def test_non_retryable_failure_still_advances(self, sweeper, storage, messenger, ledger, retry_scheduler, clock):
        """Test that validation failures keep the backoff moving."""
        storage.put_object("backups", "db.sql", b"data")
        retry_scheduler.record_failure("backups", "db.sql", 4, "timeout")
        messenger.fail_always(ValidationError("caption rejected"))
        clock.advance(seconds=61)

        sweeper.sweep()

        assert ledger.list_retry_entries()[0].attempts == 2

    def test_queue_depth_gauge(self, sweeper, retry_scheduler, registry):
        """Test that the sweep publishes the backlog size."""
        retry_scheduler.record_failure("b", "k1", 1, "x")
        retry_scheduler.record_failure("b", "k2", 1, "x")
        sweeper.sweep()
        assert registry.get_sample_value("bucket_relay_retry_queue_depth") == 2


@pytest.mark.unit
class TestHeartbeat:
    """Test the status heartbeat and alerts."""

    def test_first_heartbeat_is_due(self, heartbeat, messenger, ledger, clock):
        """Test that the first cycle sends a heartbeat."""
        ledger.upsert_bucket("backups")
        ledger.write_sent_record("backups", "db.sql", "e", 2048, 1, ["1"])

        assert heartbeat.maybe_send() is True

        text = messenger.texts[0].text
        assert text.startswith("✅ <b>Bucket Relay Operational</b>")
        assert "• Backups Sent: 1 files (2 KB)" in text
        assert "• Buckets Active: 1/1" in text
        assert "⏰ Next heartbeat: 2025-01-16T12:00:00.000Z" in text
        assert heartbeat.last_sent_at == clock.now

    def test_not_due_within_interval(self, heartbeat, messenger, clock):
        """Test that a second heartbeat waits for the interval."""
        heartbeat.maybe_send()
        clock.advance(hours=23)
        assert heartbeat.maybe_send() is False
        clock.advance(hours=1)
        assert heartbeat.maybe_send() is True
        assert len(messenger.texts) == 2

    def test_disabled(self, messenger, ledger, metrics, clock):
        """Test that a disabled heartbeat never sends."""
        service = HeartbeatService(messenger, ledger, "-100", enabled=False, metrics=metrics, clock=clock)
        assert service.maybe_send() is False
        assert messenger.texts == []

    def test_send_failure_leaves_heartbeat_due(self, heartbeat, messenger):
        """Test that a failed send is attempted again next cycle."""
        messenger.fail_always()
        with pytest.raises(TransportError):
            heartbeat.maybe_send()
        assert heartbeat.is_due()

    def test_plateau_alert(self, heartbeat, messenger, ledger):
        """Test the alert text for an entry stuck at the longest backoff."""
        entry = ledger.upsert_retry_entry(
            "backups", "a<b>.sql", 1, "HTTP 413 & friends",
            now=datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc),
        )

        heartbeat.alert_plateau(entry)

        assert messenger.texts[0].text == (
            "⚠️ <b>Admin Alert</b>\n\n"
            "Delivery of <code>backups/a&lt;b&gt;.sql</code> has failed 1 times.\n"
            "Last error: HTTP 413 &amp; friends\n"
            "Next retry: 2025-01-15T12:01:00.000Z"
        )

    def test_texts_wait_on_shared_limiter(self, messenger, ledger, metrics, clock):
        """Test that heartbeat and alert texts keep the delivery spacing."""
        now = [10.0]
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        limiter = RateLimiter(0.5, clock=lambda: now[0], sleep=sleep)
        service = HeartbeatService(messenger, ledger, "-100", rate_limiter=limiter, metrics=metrics, clock=clock)

        limiter.acquire()
        service.send()
        service.send_alert("disk full")

        assert sleeps == [pytest.approx(0.5), pytest.approx(0.5)]
        assert len(messenger.texts) == 2
