"""End-to-end delivery through the wired worker, on in-memory adapters."""

from datetime import datetime, timedelta, timezone

import pytest

from bucket_relay.adapters.outbound.sql_ledger import SqlLedger
from bucket_relay.application.worker import RelayWorker
from bucket_relay.domain.errors import TransportError
from bucket_relay.infrastructure.config import ChunkingConfig
from bucket_relay.infrastructure.container import Container

KIB = 1024
UPLOADED = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def relay(container) -> RelayWorker:
    return RelayWorker(container)


@pytest.mark.integration
class TestDeliveryPipeline:
    """Poll, deliver, record and retry across cycles."""

    def test_small_file_end_to_end(self, relay, container, storage, messenger, ledger, staging_dir):
        """A small backup is delivered once with its caption and recorded."""
        storage.put_object("backups", "nightly/db.sql", b"d" * 1024, etag='"abc123"', last_modified=UPLOADED)

        result = container.poller.poll()

        assert result.new_objects == 1
        assert len(messenger.documents) == 1
        doc = messenger.documents[0]
        assert doc.file_name == "db.sql"
        assert doc.text == (
            "📦 Bucket: <code>backups</code>\n"
            "📄 File: <code>db.sql</code>\n"
            "💾 Size: 1 KB\n"
            "🕐 Uploaded: 2025-01-15T10:30:00.000Z\n"
            '🔐 ETag: <code>"abc123"...</code>'
        )
        record = ledger.recent_sent_records()[0]
        assert (record.bucket, record.key, record.etag) == ("backups", "nightly/db.sql", '"abc123"')
        assert record.delivery_refs == (doc.delivery_ref,)
        assert list(staging_dir.iterdir()) == []

        container.poller.poll()
        assert len(messenger.documents) == 1

    def test_large_file_is_chunked(self, relay, container, storage, messenger, ledger):
        """An oversized backup is delivered as ordered parts that reassemble."""
        data = bytes(i % 253 for i in range(120 * KIB))
        storage.put_object("backups", "full.tar", data)

        container.poller.poll()

        docs = messenger.documents
        assert [d.size for d in docs] == [51200, 51200, 20480]
        assert [d.text.split("\n")[0] for d in docs] == [
            "[Part 1/3] <b>backups/full.tar</b>",
            "[Part 2/3] <b>backups/full.tar</b>",
            "[Part 3/3] <b>backups/full.tar</b>",
        ]
        assert b"".join(d.data for d in docs) == data
        record = ledger.recent_sent_records()[0]
        assert record.chunk_count == 3
        assert list(record.delivery_refs) == [d.delivery_ref for d in docs]

    def test_partial_failure_is_retried_whole(self, relay, container, storage, messenger, ledger, staging_dir, clock):
        """A failed part leaves no record; the next attempt resends every part."""
        data = b"p" * (120 * KIB)
        obj = storage.put_object("backups", "full.tar", data)
        messenger.fail_call(1)

        container.poller.poll()

        assert messenger.document_calls == 2
        assert not ledger.has_sent_record("backups", "full.tar", obj.etag)
        entry = ledger.list_retry_entries()[0]
        assert entry.attempts == 1
        assert entry.next_retry_at == clock.now + timedelta(seconds=60)
        assert list(staging_dir.iterdir()) == []

        clock.advance(seconds=61)
        container.poller.poll()

        assert ledger.has_sent_record("backups", "full.tar", obj.etag)
        assert ledger.count_retry_entries() == 0
        resent = messenger.documents[1:]
        assert [d.file_name for d in resent] == ["full.tar.part1", "full.tar.part2", "full.tar.part3"]
        assert b"".join(d.data for d in resent) == data

    def test_persistent_failure_advances_one_entry(self, relay, container, storage, ledger):
        """Every failed attempt advances the same entry."""
        storage.put_object("backups", "db.sql", b"data")
        storage.inject_failure("download_object", TransportError("connection reset"))

        container.poller.poll()
        container.poller.poll()

        entries = ledger.list_retry_entries()
        assert len(entries) == 1
        assert entries[0].attempts == 2
        assert entries[0].error_message == "connection reset"

    def test_sweeper_recovers_after_backoff(self, relay, container, storage, messenger, ledger, clock):
        """A failed object is delivered by a later cycle and its entry removed."""
        obj = storage.put_object("backups", "db.sql", b"data")
        storage.inject_failure("download_object", count=1)

        container.poller.poll()
        assert ledger.count_retry_entries() == 1

        clock.advance(seconds=61)
        container.poller.poll()

        assert ledger.has_sent_record("backups", "db.sql", obj.etag)
        assert ledger.count_retry_entries() == 0
        assert len(messenger.documents) == 1

    def test_rediscovered_delivery_clears_backlog_early(self, relay, container, storage, messenger, ledger, clock):
        """A scan that delivers before the entry is due leaves no backlog."""
        obj = storage.put_object("backups", "report.txt", b"data")
        messenger.fail_call(0)

        container.poller.poll()
        assert ledger.count_retry_entries() == 1

        clock.advance(seconds=30)
        container.poller.poll()

        assert ledger.has_sent_record("backups", "report.txt", obj.etag)
        assert ledger.count_retry_entries() == 0
        assert container.retry_scheduler.queue_depth() == 0

    def test_failing_bucket_does_not_block_others(self, relay, container, storage, messenger):
        """One broken bucket does not stop delivery from the rest."""
        storage.put_object("alpha", "a.sql", b"a")
        storage.put_object("beta", "b.sql", b"b")
        storage.inject_failure("list_objects", bucket="alpha")

        result = container.poller.poll()

        assert result.buckets_failed == ["alpha"]
        assert [d.file_name for d in messenger.documents] == ["b.sql"]

    def test_state_survives_restart(self, test_config, storage, messenger, metrics, tracer, clock, tmp_path):
        """Delivered objects stay delivered across a process restart."""
        url = f"sqlite:///{tmp_path / 'restart.db'}"
        storage.put_object("backups", "db.sql", b"data")

        for _ in range(2):
            Container.reset()
            ledger = SqlLedger.from_url(url, clock=clock)
            container = Container.create(
                config=test_config,
                storage=storage,
                messenger=messenger,
                ledger=ledger,
                metrics=metrics,
                tracer=tracer,
                clock=clock,
            )
            RelayWorker(container)
            container.poller.poll()
            ledger.dispose()

        assert len(messenger.documents) == 1


@pytest.mark.integration
class TestLargeChunkSize:
    """Split threshold below the part size."""

    def test_single_part_when_chunk_exceeds_file(self, test_config, storage, messenger, ledger, metrics, tracer, clock):
        """A file over the threshold but under the part size goes as one part."""
        test_config.chunking = ChunkingConfig(
            split_threshold_bytes=50 * KIB,
            chunk_size_bytes=1024 * KIB,
            staging_dir=test_config.chunking.staging_dir,
        )
        container = Container.create(
            config=test_config,
            storage=storage,
            messenger=messenger,
            ledger=ledger,
            metrics=metrics,
            tracer=tracer,
            clock=clock,
        )
        RelayWorker(container)
        storage.put_object("backups", "full.tar", b"q" * (120 * KIB))

        container.poller.poll()

        assert [d.file_name for d in messenger.documents] == ["full.tar.part1"]
        assert messenger.documents[0].text.startswith("[Part 1/1]")
        assert ledger.recent_sent_records()[0].chunk_count == 1
