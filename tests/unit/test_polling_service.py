"""Unit tests for the bucket poller."""

import pytest

from bucket_relay.application.polling_service import PollingService
from bucket_relay.domain.entities import StoredObject
from bucket_relay.domain.errors import AccessDeniedError, TransportError, ValidationError


@pytest.fixture
def poller(storage, ledger, metrics, tracer, clock) -> PollingService:
    return PollingService(
        storage=storage,
        ledger=ledger,
        interval_minutes=5,
        metrics=metrics,
        tracer=tracer,
        clock=clock,
    )


@pytest.fixture
def events(poller) -> list:
    collected = []
    poller.on_new_object(collected.append)
    return collected


@pytest.mark.unit
class TestBucketDiscovery:
    """Test bucket registration."""

    def test_discovered_buckets_are_enabled(self, poller, storage, ledger):
        """Test that first sight of a bucket creates an enabled setting."""
        storage.create_bucket("backups")
        storage.create_bucket("logs")

        result = poller.poll()

        assert result.buckets_discovered == ["backups", "logs"]
        assert [(b.bucket, b.enabled) for b in ledger.list_buckets()] == [
            ("backups", True),
            ("logs", True),
        ]

    def test_rediscovery_is_not_reported(self, poller, storage):
        """Test that known buckets are not discovered twice."""
        storage.create_bucket("backups")
        poller.poll()
        assert poller.poll().buckets_discovered == []

    def test_disabled_bucket_is_not_scanned(self, poller, storage, ledger, events):
        """Test that an operator-disabled bucket is skipped."""
        storage.put_object("backups", "a.sql", b"a")
        storage.put_object("private", "b.sql", b"b")
        poller.poll()
        events.clear()
        ledger.set_bucket_enabled("private", False)
        storage.put_object("private", "c.sql", b"c")

        result = poller.poll()

        assert "private" not in result.buckets_scanned
        assert all(e.bucket != "private" for e in events)

    def test_last_checked_is_stamped(self, poller, storage, ledger, clock):
        """Test that every scanned bucket records when it was checked."""
        storage.create_bucket("backups")
        poller.poll()
        assert ledger.list_buckets()[0].last_checked_at == clock.now


@pytest.mark.unit
class TestObjectDetection:
    """Test new-object events."""

    def test_events_in_listing_order(self, poller, storage, events):
        """Test one event per undelivered object, in listing order."""
        for key in ("z.sql", "a.sql", "m.sql"):
            storage.put_object("backups", key, key.encode())

        result = poller.poll()

        assert [e.key for e in events] == ["z.sql", "a.sql", "m.sql"]
        assert result.new_objects == 3
        assert events[0].bucket == "backups"
        assert events[0].size == len(b"z.sql")

    def test_incomplete_entries_are_skipped(self, poller, storage, events):
        """Test that listing entries without key or etag produce no events."""
        storage.put_object("backups", "good.sql", b"x")
        storage.add_listing_entry("backups", StoredObject(key=None, etag='"e"'))
        storage.add_listing_entry("backups", StoredObject(key="no-etag.sql", etag=""))

        result = poller.poll()

        assert [e.key for e in events] == ["good.sql"]
        assert result.objects_skipped == 2

    def test_missing_timestamp_uses_cycle_time(self, poller, storage, events, clock):
        """Test the timestamp default for entries without one."""
        storage.add_listing_entry("backups", StoredObject(key="k", etag='"e"', size=3))
        poller.poll()
        assert events[0].last_modified == clock.now

    def test_sent_objects_are_skipped(self, poller, storage, ledger, events):
        """Test that delivered identities produce no event."""
        obj = storage.put_object("backups", "db.sql", b"data")
        ledger.write_sent_record("backups", "db.sql", obj.etag, obj.size, 1, ["1"])

        poller.poll()

        assert events == []

    def test_changed_etag_is_new(self, poller, storage, ledger, events):
        """Test that an overwritten object is delivered again."""
        obj = storage.put_object("backups", "db.sql", b"v1")
        ledger.write_sent_record("backups", "db.sql", obj.etag, obj.size, 1, ["1"])
        storage.put_object("backups", "db.sql", b"v2")

        poller.poll()

        assert [e.key for e in events] == ["db.sql"]
        assert events[0].etag != obj.etag

    def test_undelivered_object_is_reemitted(self, poller, storage, events):
        """Test that an object without a SentRecord is reported every cycle."""
        storage.put_object("backups", "db.sql", b"data")
        poller.poll()
        poller.poll()
        assert [e.key for e in events] == ["db.sql", "db.sql"]

    def test_delivered_object_is_not_reemitted(self, poller, storage, ledger):
        """Test dedup across cycles once a handler records delivery."""
        storage.put_object("backups", "db.sql", b"data")
        seen = []

        def deliver(identity):
            seen.append(identity.key)
            ledger.write_sent_record(*identity.identity, identity.size, 1, ["1"])

        poller.on_new_object(deliver)
        poller.poll()
        poller.poll()

        assert seen == ["db.sql"]

    def test_callback_failure_does_not_abort_batch(self, poller, storage, events):
        """Test that a raising handler does not stop later events."""
        storage.put_object("backups", "a.sql", b"a")
        storage.put_object("backups", "b.sql", b"b")

        def explode(identity):
            raise RuntimeError("handler bug")

        poller._new_object_callbacks.insert(0, explode)
        result = poller.poll()

        assert [e.key for e in events] == ["a.sql", "b.sql"]
        assert result.succeeded


@pytest.mark.unit
class TestFailureIsolation:
    """Test error handling within a cycle."""

    def test_bucket_failure_is_isolated(self, poller, storage, ledger, events, clock):
        """Test that one failing bucket doesn't stop the others."""
        storage.put_object("alpha", "a.sql", b"a")
        storage.put_object("broken", "b.sql", b"b")
        storage.put_object("gamma", "c.sql", b"c")
        storage.inject_failure("list_objects", AccessDeniedError("denied"), bucket="broken")
        errors = []
        poller.on_error(errors.append)

        result = poller.poll()

        assert [e.bucket for e in events] == ["alpha", "gamma"]
        assert result.buckets_failed == ["broken"]
        assert result.succeeded
        assert errors == []
        checked = {b.bucket: b.last_checked_at for b in ledger.list_buckets()}
        assert checked["broken"] == clock.now

    def test_bucket_listing_failure_reports_error(self, poller, storage, events):
        """Test that a failed bucket enumeration aborts the cycle."""
        storage.put_object("backups", "a.sql", b"a")
        storage.inject_failure("list_buckets", TransportError("connection refused"))
        errors = []
        poller.on_error(errors.append)

        result = poller.poll()

        assert not result.succeeded
        assert "connection refused" in result.error
        assert len(errors) == 1
        assert isinstance(errors[0], TransportError)
        assert events == []

    def test_failing_error_callback_is_contained(self, poller, storage):
        """Test that a raising error callback doesn't escape poll()."""
        storage.inject_failure("list_buckets")

        def explode(exc):
            raise RuntimeError("alerting down")

        poller.on_error(explode)
        assert poller.poll().error is not None


@pytest.mark.unit
class TestOverlapGuard:
    """Test that cycles never overlap."""

    def test_nested_poll_is_skipped(self, poller, storage, registry):
        """Test that a cycle started during another one is skipped."""
        storage.put_object("backups", "a.sql", b"a")
        nested = []
        poller.on_new_object(lambda identity: nested.append(poller.poll()))

        result = poller.poll()

        assert result is not None
        assert nested == [None]
        assert registry.get_sample_value("bucket_relay_poll_cycles_total", {"result": "skipped"}) == 1
        assert registry.get_sample_value("bucket_relay_poll_cycles_total", {"result": "completed"}) == 1

    def test_hooks_run_inside_guard(self, poller, storage):
        """Test that cycle hooks see the guard held."""
        observed = []
        poller.add_cycle_hook(lambda: observed.append(poller.is_polling))

        poller.poll()

        assert observed == [True]
        assert poller.is_polling is False

    def test_failing_hook_is_contained(self, poller, storage):
        """Test that a raising hook doesn't fail the cycle."""
        later = []

        def explode():
            raise RuntimeError("hook bug")

        poller.add_cycle_hook(explode)
        poller.add_cycle_hook(lambda: later.append(True))

        assert poller.poll().succeeded
        assert later == [True]


@pytest.mark.unit
class TestLifecycle:
    """Test interval validation and start/stop."""

    @pytest.mark.parametrize("minutes", [0, 1441, -1])
    def test_interval_bounds(self, storage, ledger, metrics, minutes):
        """Test that out-of-range intervals are rejected."""
        with pytest.raises(ValidationError):
            PollingService(storage, ledger, interval_minutes=minutes, metrics=metrics)

    def test_start_runs_first_cycle_immediately(self, poller, storage, events):
        """Test that start() polls synchronously, then stop() halts the ticker."""
        storage.put_object("backups", "a.sql", b"a")

        poller.start()
        try:
            assert poller.is_running
            assert [e.key for e in events] == ["a.sql"]
            assert poller.last_cycle is not None
        finally:
            poller.stop(timeout=5)

        assert not poller.is_running

    def test_double_start_is_ignored(self, poller, storage, events):
        """Test that starting twice runs only one immediate cycle."""
        storage.put_object("backups", "a.sql", b"a")
        poller.start()
        try:
            poller.start()
            assert len(events) == 1
        finally:
            poller.stop(timeout=5)
