"""FastAPI REST adapter for Bucket Relay.

Read-only operational endpoints: health, delivery status and Prometheus
metrics. The worker serves this app on a background thread.

Usage:
    from bucket_relay.adapters.inbound.rest_api import create_app

    app = create_app(container)
    # Run with: uvicorn module:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Query, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from bucket_relay import __version__
from bucket_relay.domain.entities import utc_now
from bucket_relay.infrastructure.container import Container


# Pydantic models for response serialization


class ComponentHealth(BaseModel):
    """Health of one dependency."""

    status: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str = __version__
    uptime_seconds: int
    last_check: datetime
    components: dict[str, ComponentHealth]


class BucketResponse(BaseModel):
    """Bucket setting."""

    bucket: str
    enabled: bool
    discovered_at: datetime
    last_checked_at: Optional[datetime] = None


class RetryEntryResponse(BaseModel):
    """Outstanding retry entry."""

    id: int
    bucket: str
    key: str
    file_size: int
    attempts: int
    next_retry_at: datetime
    last_attempt_at: Optional[datetime] = None
    error_message: str


class SentRecordResponse(BaseModel):
    """Delivered object."""

    bucket: str
    key: str
    etag: str
    file_size: int
    chunk_count: int
    delivery_refs: list[str]
    sent_at: datetime


class LogEntryResponse(BaseModel):
    """Persisted log line."""

    level: str
    message: str
    metadata: dict = Field(default_factory=dict)
    created_at: datetime


class StatusResponse(BaseModel):
    """Delivery status overview."""

    polling: bool
    polling_interval_minutes: int
    last_cycle_at: Optional[datetime] = None
    last_cycle_error: Optional[str] = None
    buckets: list[BucketResponse]
    retry_queue_depth: int
    retries_due: list[RetryEntryResponse]
    recent_deliveries: list[SentRecordResponse]
    recent_logs: list[LogEntryResponse]


_STATUS_CODES = {"healthy": 200, "degraded": 207, "error": 503}


def create_app(container: Container) -> FastAPI:
    """Create FastAPI application with the operational endpoints.

    Args:
        container: Wired relay components.

    Returns:
        Configured FastAPI application.
    """
    started = time.monotonic()
    config = container.config
    ledger = container.ledger
    poller = container.poller

    app = FastAPI(
        title="Bucket Relay API",
        description="Operational status for the bucket-to-Telegram relay",
        version=__version__,
    )

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    def health_check():
        """Check ledger reachability, configuration and polling state."""
        components: dict[str, ComponentHealth] = {}

        try:
            ledger.ping()
            components["ledger"] = ComponentHealth(status="healthy")
        except Exception as exc:
            components["ledger"] = ComponentHealth(status="error", detail=str(exc))

        missing = config.missing_required()
        storage_missing = [name for name in missing if name.startswith("RELAY_STORAGE_")]
        telegram_missing = [name for name in missing if name.startswith("RELAY_TELEGRAM_")]
        components["storage"] = ComponentHealth(
            status="error" if storage_missing else "healthy",
            detail=f"{', '.join(storage_missing)} not configured" if storage_missing else config.storage.endpoint,
        )
        components["telegram"] = ComponentHealth(
            status="error" if telegram_missing else "healthy",
            detail=f"{', '.join(telegram_missing)} not configured" if telegram_missing else None,
        )

        polling_status = "healthy" if poller.is_running else "degraded"
        last = poller.last_cycle
        if last is not None and not last.succeeded:
            polling_status = "degraded"
        components["polling"] = ComponentHealth(
            status=polling_status,
            detail=f"{poller.interval_minutes}min interval" + ("" if poller.is_running else ", stopped"),
        )

        statuses = {c.status for c in components.values()}
        overall = "error" if "error" in statuses else "degraded" if "degraded" in statuses else "healthy"

        body = HealthResponse(
            status=overall,
            uptime_seconds=int(time.monotonic() - started),
            last_check=utc_now(),
            components=components,
        )
        return JSONResponse(content=body.model_dump(mode="json"), status_code=_STATUS_CODES[overall])

    @app.get("/status", response_model=StatusResponse, tags=["Status"])
    def get_status(
        deliveries: int = Query(default=20, ge=1, le=500),
        logs: int = Query(default=100, ge=1, le=1000),
    ):
        """Buckets, retry backlog, recent deliveries and recent log lines."""
        last = poller.last_cycle
        return StatusResponse(
            polling=poller.is_running,
            polling_interval_minutes=poller.interval_minutes,
            last_cycle_at=last.started_at if last else None,
            last_cycle_error=last.error if last else None,
            buckets=[
                BucketResponse(
                    bucket=b.bucket,
                    enabled=b.enabled,
                    discovered_at=b.discovered_at,
                    last_checked_at=b.last_checked_at,
                )
                for b in ledger.list_buckets("all")
            ],
            retry_queue_depth=ledger.count_retry_entries(),
            retries_due=[
                RetryEntryResponse(
                    id=e.entry_id,
                    bucket=e.bucket,
                    key=e.key,
                    file_size=e.file_size,
                    attempts=e.attempts,
                    next_retry_at=e.next_retry_at,
                    last_attempt_at=e.last_attempt_at,
                    error_message=e.error_message,
                )
                for e in ledger.list_retry_entries_due(utc_now())
            ],
            recent_deliveries=[
                SentRecordResponse(
                    bucket=r.bucket,
                    key=r.key,
                    etag=r.etag,
                    file_size=r.file_size,
                    chunk_count=r.chunk_count,
                    delivery_refs=list(r.delivery_refs),
                    sent_at=r.sent_at,
                )
                for r in ledger.recent_sent_records(deliveries)
            ],
            recent_logs=[
                LogEntryResponse(
                    level=entry.level,
                    message=entry.message,
                    metadata=entry.metadata,
                    created_at=entry.created_at,
                )
                for entry in ledger.recent_logs(logs)
            ],
        )

    @app.get("/metrics", tags=["System"])
    def get_metrics():
        """Prometheus exposition of the relay metrics."""
        return Response(content=generate_latest(container.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    return app
