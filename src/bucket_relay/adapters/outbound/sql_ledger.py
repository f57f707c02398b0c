"""SQLAlchemy ledger - implements LedgerPort on SQLite or PostgreSQL.

Tables:
    sent_files      append-only delivery log, unique on (bucket, object_key, etag)
    bucket_settings one row per discovered bucket
    retry_queue     one row per failing (bucket, object_key)
    logs            operator-facing log lines

Every public method runs in its own transaction so each write is atomic.
Datetimes are stored as naive UTC and returned as aware UTC.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.types import JSON

from bucket_relay.domain.entities import (
    BucketSetting,
    DeliveryStats,
    LogEntry,
    RetryEntry,
    SentRecord,
    utc_now,
)
from bucket_relay.domain.value_objects.backoff import BackoffPolicy
from bucket_relay.ports.outbound import BucketFilter

logger = logging.getLogger(__name__)

metadata = MetaData()

# ============================================================================
# SENT FILES TABLE (append-only)
# ============================================================================
sent_files_table = Table(
    "sent_files",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("bucket", String, nullable=False),
    Column("object_key", String, nullable=False),
    Column("etag", String, nullable=False),
    Column("file_size", BigInteger, nullable=False),
    Column("chunk_count", Integer, nullable=False, default=1),
    Column("telegram_message_ids", JSON, nullable=False),
    Column("sent_at", DateTime, nullable=False),
    UniqueConstraint("bucket", "object_key", "etag", name="uq_sent_files_identity"),
)

Index("idx_sent_files_sent_at", sent_files_table.c.sent_at)

# ============================================================================
# BUCKET SETTINGS TABLE
# ============================================================================
bucket_settings_table = Table(
    "bucket_settings",
    metadata,
    Column("bucket", String, primary_key=True),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("discovered_at", DateTime, nullable=False),
    Column("last_checked", DateTime, nullable=True),
)

# ============================================================================
# RETRY QUEUE TABLE
# ============================================================================
retry_queue_table = Table(
    "retry_queue",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("bucket", String, nullable=False),
    Column("object_key", String, nullable=False),
    Column("file_size", BigInteger, nullable=False),
    Column("attempts", Integer, nullable=False, default=0),
    Column("last_attempt", DateTime, nullable=True),
    Column("next_retry", DateTime, nullable=False),
    Column("error_message", Text, nullable=False),
    Column("created_at", DateTime, nullable=False),
    UniqueConstraint("bucket", "object_key", name="uq_retry_queue_object"),
)

Index("idx_retry_queue_next_retry", retry_queue_table.c.next_retry)

# ============================================================================
# LOGS TABLE
# ============================================================================
logs_table = Table(
    "logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("level", String(16), nullable=False),
    Column("message", Text, nullable=False),
    Column("metadata", JSON, nullable=True),
    Column("created_at", DateTime, nullable=False),
)

Index("idx_logs_created_at", logs_table.c.created_at)


def _to_db(moment: datetime) -> datetime:
    """Aware datetime -> naive UTC for storage."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _from_db(moment: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC from storage -> aware UTC."""
    if moment is None:
        return None
    return moment.replace(tzinfo=timezone.utc)


def create_ledger_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine, preparing SQLite files and pragmas.

    SQLite runs in WAL mode so the REST API can read while the worker writes.
    """
    url = make_url(database_url)
    is_sqlite = url.get_backend_name() == "sqlite"

    if is_sqlite and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    connect_args = {"check_same_thread": False} if is_sqlite else {}
    engine = create_engine(database_url, echo=echo, pool_pre_ping=True, connect_args=connect_args)

    if is_sqlite:

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


class SqlLedger:
    """LedgerPort implementation on SQLAlchemy Core."""

    def __init__(
        self,
        engine: Engine,
        backoff: Optional[BackoffPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        create_schema: bool = True,
    ):
        """Initialize the ledger.

        Args:
            engine: SQLAlchemy engine.
            backoff: Backoff table used to compute next_retry.
            clock: Source of the current time.
            create_schema: Create missing tables on startup.
        """
        self._engine = engine
        self._backoff = backoff or BackoffPolicy()
        self._clock = clock
        if create_schema:
            metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False, **kwargs: Any) -> "SqlLedger":
        """Build a ledger from a database URL."""
        return cls(create_ledger_engine(database_url, echo=echo), **kwargs)

    @property
    def engine(self) -> Engine:
        return self._engine

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    def ping(self) -> bool:
        with self._engine.connect() as conn:
            conn.execute(select(1))
        return True

    # ------------------------------------------------------------------
    # Sent records
    # ------------------------------------------------------------------

    def has_sent_record(self, bucket: str, key: str, etag: str) -> bool:
        stmt = select(sent_files_table.c.id).where(
            sent_files_table.c.bucket == bucket,
            sent_files_table.c.object_key == key,
            sent_files_table.c.etag == etag,
        )
        with self._engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def write_sent_record(
        self,
        bucket: str,
        key: str,
        etag: str,
        size: int,
        chunk_count: int,
        delivery_refs: Sequence[str],
    ) -> SentRecord:
        if chunk_count < 1 or len(delivery_refs) != chunk_count:
            raise ValueError(
                f"chunk_count={chunk_count} does not match {len(delivery_refs)} delivery refs"
            )

        sent_at = self._clock()
        values = {
            "bucket": bucket,
            "object_key": key,
            "etag": etag,
            "file_size": size,
            "chunk_count": chunk_count,
            "telegram_message_ids": list(delivery_refs),
            "sent_at": _to_db(sent_at),
        }
        try:
            with self._engine.begin() as conn:
                result = conn.execute(insert(sent_files_table).values(**values))
                record_id = result.inserted_primary_key[0]
        except IntegrityError:
            # Delivered twice (crash between send and commit); first record wins
            logger.warning(f"Sent record already exists for {bucket}/{key} ({etag})")
            existing = self._find_sent_record(bucket, key, etag)
            if existing is None:
                raise
            return existing

        return SentRecord(
            bucket=bucket,
            key=key,
            etag=etag,
            file_size=size,
            chunk_count=chunk_count,
            delivery_refs=tuple(delivery_refs),
            sent_at=sent_at,
            record_id=record_id,
        )

    def recent_sent_records(self, limit: int = 100) -> list[SentRecord]:
        stmt = (
            select(sent_files_table)
            .order_by(sent_files_table.c.sent_at.desc(), sent_files_table.c.id.desc())
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return [self._row_to_sent_record(row) for row in conn.execute(stmt)]

    def _find_sent_record(self, bucket: str, key: str, etag: str) -> Optional[SentRecord]:
        stmt = select(sent_files_table).where(
            sent_files_table.c.bucket == bucket,
            sent_files_table.c.object_key == key,
            sent_files_table.c.etag == etag,
        )
        with self._engine.connect() as conn:
            row = conn.execute(stmt).first()
        return self._row_to_sent_record(row) if row else None

    @staticmethod
    def _row_to_sent_record(row) -> SentRecord:
        return SentRecord(
            bucket=row.bucket,
            key=row.object_key,
            etag=row.etag,
            file_size=row.file_size,
            chunk_count=row.chunk_count,
            delivery_refs=tuple(row.telegram_message_ids or ()),
            sent_at=_from_db(row.sent_at),
            record_id=row.id,
        )

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    def upsert_bucket(self, bucket: str, enabled_default: bool = True) -> bool:
        exists = select(bucket_settings_table.c.bucket).where(bucket_settings_table.c.bucket == bucket)
        try:
            with self._engine.begin() as conn:
                if conn.execute(exists).first() is not None:
                    return False
                conn.execute(
                    insert(bucket_settings_table).values(
                        bucket=bucket,
                        enabled=enabled_default,
                        discovered_at=_to_db(self._clock()),
                        last_checked=None,
                    )
                )
        except IntegrityError:
            # Inserted concurrently by another process
            return False
        return True

    def list_buckets(self, bucket_filter: BucketFilter = "all") -> list[BucketSetting]:
        stmt = select(bucket_settings_table).order_by(bucket_settings_table.c.bucket)
        if bucket_filter == "enabled":
            stmt = stmt.where(bucket_settings_table.c.enabled == True)  # noqa: E712
        with self._engine.connect() as conn:
            return [
                BucketSetting(
                    bucket=row.bucket,
                    enabled=bool(row.enabled),
                    discovered_at=_from_db(row.discovered_at),
                    last_checked_at=_from_db(row.last_checked),
                )
                for row in conn.execute(stmt)
            ]

    def set_bucket_enabled(self, bucket: str, enabled: bool) -> bool:
        """Flip a bucket's enabled flag. Operator action, not used by the poller."""
        stmt = (
            update(bucket_settings_table)
            .where(bucket_settings_table.c.bucket == bucket)
            .values(enabled=enabled)
        )
        with self._engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def touch_bucket_checked(self, bucket: str) -> None:
        stmt = (
            update(bucket_settings_table)
            .where(bucket_settings_table.c.bucket == bucket)
            .values(last_checked=_to_db(self._clock()))
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)

    # ------------------------------------------------------------------
    # Retry entries
    # ------------------------------------------------------------------

    def upsert_retry_entry(
        self,
        bucket: str,
        key: str,
        size: int,
        error_message: str,
        now: Optional[datetime] = None,
    ) -> RetryEntry:
        now = now or self._clock()
        for _ in range(2):
            try:
                return self._upsert_retry_entry(bucket, key, size, error_message, now)
            except IntegrityError:
                # Lost an insert race for the same (bucket, key); update instead
                continue
        raise RuntimeError(f"Could not upsert retry entry for {bucket}/{key}")

    def _upsert_retry_entry(
        self, bucket: str, key: str, size: int, error_message: str, now: datetime
    ) -> RetryEntry:
        table = retry_queue_table
        with self._engine.begin() as conn:
            row = conn.execute(
                select(table).where(table.c.bucket == bucket, table.c.object_key == key)
            ).first()

            if row is None:
                attempts = 1
                next_retry = self._backoff.next_retry_at(0, now)
                created_at = now
                result = conn.execute(
                    insert(table).values(
                        bucket=bucket,
                        object_key=key,
                        file_size=size,
                        attempts=attempts,
                        last_attempt=_to_db(now),
                        next_retry=_to_db(next_retry),
                        error_message=error_message,
                        created_at=_to_db(now),
                    )
                )
                entry_id = result.inserted_primary_key[0]
            else:
                attempts = row.attempts + 1
                next_retry = self._backoff.next_retry_at(row.attempts, now)
                created_at = _from_db(row.created_at)
                entry_id = row.id
                conn.execute(
                    update(table)
                    .where(table.c.id == row.id)
                    .values(
                        file_size=size,
                        attempts=attempts,
                        last_attempt=_to_db(now),
                        next_retry=_to_db(next_retry),
                        error_message=error_message,
                    )
                )

        return RetryEntry(
            entry_id=entry_id,
            bucket=bucket,
            key=key,
            file_size=size,
            attempts=attempts,
            next_retry_at=next_retry,
            error_message=error_message,
            last_attempt_at=now,
            created_at=created_at,
        )

    def list_retry_entries_due(self, now: datetime) -> list[RetryEntry]:
        table = retry_queue_table
        stmt = (
            select(table)
            .where(table.c.next_retry <= _to_db(now))
            .order_by(table.c.next_retry.asc(), table.c.id.asc())
        )
        with self._engine.connect() as conn:
            return [self._row_to_retry_entry(row) for row in conn.execute(stmt)]

    def list_retry_entries(self) -> list[RetryEntry]:
        """All retry entries, soonest first."""
        table = retry_queue_table
        stmt = select(table).order_by(table.c.next_retry.asc(), table.c.id.asc())
        with self._engine.connect() as conn:
            return [self._row_to_retry_entry(row) for row in conn.execute(stmt)]

    def delete_retry_entry(self, entry_id: int) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(delete(retry_queue_table).where(retry_queue_table.c.id == entry_id))
            return result.rowcount > 0

    def delete_retry_entries_for(self, bucket: str, key: str) -> int:
        table = retry_queue_table
        with self._engine.begin() as conn:
            result = conn.execute(delete(table).where(table.c.bucket == bucket, table.c.object_key == key))
            return result.rowcount

    def count_retry_entries(self) -> int:
        with self._engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(retry_queue_table)).scalar_one()

    @staticmethod
    def _row_to_retry_entry(row) -> RetryEntry:
        return RetryEntry(
            entry_id=row.id,
            bucket=row.bucket,
            key=row.object_key,
            file_size=row.file_size,
            attempts=row.attempts,
            next_retry_at=_from_db(row.next_retry),
            error_message=row.error_message,
            last_attempt_at=_from_db(row.last_attempt),
            created_at=_from_db(row.created_at),
        )

    # ------------------------------------------------------------------
    # Logs and statistics
    # ------------------------------------------------------------------

    def add_log(self, level: str, message: str, metadata: Optional[dict[str, Any]] = None) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                insert(logs_table).values(
                    level=level,
                    message=message,
                    metadata=metadata or None,
                    created_at=_to_db(self._clock()),
                )
            )

    def recent_logs(self, limit: int = 100) -> list[LogEntry]:
        stmt = (
            select(logs_table)
            .order_by(logs_table.c.created_at.desc(), logs_table.c.id.desc())
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return [
                LogEntry(
                    level=row.level,
                    message=row.message,
                    metadata=row.metadata or {},
                    created_at=_from_db(row.created_at),
                    entry_id=row.id,
                )
                for row in conn.execute(stmt)
            ]

    def delivery_stats(self, since: datetime) -> DeliveryStats:
        since_db = _to_db(since)
        sent = sent_files_table
        retry = retry_queue_table
        buckets = bucket_settings_table

        with self._engine.connect() as conn:
            files_sent, bytes_sent = conn.execute(
                select(func.count(sent.c.id), func.coalesce(func.sum(sent.c.file_size), 0)).where(
                    sent.c.sent_at >= since_db
                )
            ).one()
            last_sent_at = conn.execute(select(func.max(sent.c.sent_at))).scalar()
            buckets_total = conn.execute(select(func.count()).select_from(buckets)).scalar_one()
            buckets_active = conn.execute(
                select(func.count()).select_from(buckets).where(buckets.c.enabled == True)  # noqa: E712
            ).scalar_one()
            failed_uploads = conn.execute(
                select(func.count()).select_from(retry).where(retry.c.last_attempt >= since_db)
            ).scalar_one()
            depth = conn.execute(select(func.count()).select_from(retry)).scalar_one()

        return DeliveryStats(
            files_sent=files_sent,
            bytes_sent=int(bytes_sent),
            buckets_active=buckets_active,
            buckets_total=buckets_total,
            failed_uploads=failed_uploads,
            retry_queue_depth=depth,
            last_sent_at=_from_db(last_sent_at),
        )
