"""Message text for deliveries, heartbeats and alerts.

Captions use Telegram's HTML parse mode. The file captions are read by
people reassembling split backups, so their layout is kept stable.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bucket_relay.domain.entities import DeliveryStats
from bucket_relay.domain.errors import ValidationError

# Telegram caption ceiling, counted in UTF-16 code units
CAPTION_LIMIT = 1024
TRUNCATION_MARKER = "..."
ETAG_PREVIEW_LENGTH = 16

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


@dataclass(frozen=True)
class ChunkInfo:
    """Position of a part within a split delivery."""

    current: int
    total: int
    chunk_size: int


def format_bytes(num_bytes: int) -> str:
    """Human-readable size with up to two decimals, e.g. "1.5 MB"."""
    if num_bytes < 0:
        raise ValidationError("Bytes must be non-negative")
    if num_bytes == 0:
        return "0 Bytes"

    index = 0
    while index < len(_SIZE_UNITS) - 1 and num_bytes >= 1024 ** (index + 1):
        index += 1

    value = f"{num_bytes / 1024 ** index:.2f}".rstrip("0").rstrip(".")
    return f"{value} {_SIZE_UNITS[index]}"


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def caption_length(text: str) -> int:
    """Length in UTF-16 code units, the unit Telegram counts captions in."""
    return len(text.encode("utf-16-le")) // 2


def truncate_caption(caption: str, limit: int = CAPTION_LIMIT) -> str:
    """Cut a caption to `limit` units, ending with a truncation marker.

    Never splits a surrogate pair.
    """
    if caption_length(caption) <= limit:
        return caption

    budget = limit - caption_length(TRUNCATION_MARKER)
    kept = []
    used = 0
    for char in caption:
        width = 2 if ord(char) > 0xFFFF else 1
        if used + width > budget:
            break
        kept.append(char)
        used += width
    return "".join(kept) + TRUNCATION_MARKER


def format_file_caption(
    bucket: str,
    file_name: str,
    file_size: int,
    upload_time: str,
    etag: str,
    chunk_info: Optional[ChunkInfo] = None,
) -> str:
    """Caption for a delivered file or one part of a split file.

    Args:
        bucket: Bucket the object came from.
        file_name: Base name of the object key.
        file_size: Total object size in bytes.
        upload_time: ISO-8601 upload timestamp.
        etag: Object etag as listed.
        chunk_info: Part position when the object was split.

    Returns:
        Caption text (not truncated).

    Raises:
        ValidationError: On missing fields or inconsistent chunk info.
    """
    if not bucket or not file_name or file_size is None or not upload_time or not etag:
        raise ValidationError("Missing required fields for file caption")

    bucket_text = html.escape(bucket, quote=False)
    name_text = html.escape(file_name, quote=False)

    if chunk_info is not None:
        current, total, chunk_size = chunk_info.current, chunk_info.total, chunk_info.chunk_size
        if current < 1 or total < 1 or current > total or chunk_size < 1:
            raise ValidationError("Invalid chunk information")

        return (
            f"[Part {current}/{total}] <b>{bucket_text}/{name_text}</b>\n"
            "\n"
            f"📦 Bucket: <code>{bucket_text}</code>\n"
            f"📄 Original File: <code>{name_text}</code>\n"
            f"💾 Part Size: {format_bytes(chunk_size)}\n"
            f"📊 Total Size: {format_bytes(file_size)}\n"
            f"🕐 Uploaded: {upload_time}\n"
            "\n"
            "🔧 Reassembly (Linux/Mac):\n"
            f"<code>cat {name_text}.part* &gt; {name_text}</code>\n"
            "\n"
            "🔧 Reassembly (Windows):\n"
            f"<code>copy /b {name_text}.part* {name_text}</code>"
        )

    etag_preview = html.escape(etag[:ETAG_PREVIEW_LENGTH], quote=False)
    return (
        f"📦 Bucket: <code>{bucket_text}</code>\n"
        f"📄 File: <code>{name_text}</code>\n"
        f"💾 Size: {format_bytes(file_size)}\n"
        f"🕐 Uploaded: {upload_time}\n"
        f"🔐 ETag: <code>{etag_preview}...</code>"
    )


def format_admin_alert(message: str) -> str:
    """Wrap an operator alert."""
    if not message:
        raise ValidationError("Alert message is required")
    return f"⚠️ <b>Admin Alert</b>\n\n{message}"


def format_daily_heartbeat(stats: DeliveryStats, next_heartbeat: str) -> str:
    """Daily status summary sent to the backup chat.

    Raises:
        ValidationError: If counters are negative or inconsistent.
    """
    counters = (
        stats.files_sent,
        stats.bytes_sent,
        stats.buckets_active,
        stats.buckets_total,
        stats.failed_uploads,
        stats.retry_queue_depth,
    )
    if any(value < 0 for value in counters):
        raise ValidationError("Invalid stats: all numbers must be non-negative")
    if stats.buckets_active > stats.buckets_total:
        raise ValidationError("Active buckets cannot exceed total buckets")

    retry_text = f"{stats.retry_queue_depth} pending" if stats.retry_queue_depth > 0 else "Empty"
    last_backup = format_timestamp(stats.last_sent_at) if stats.last_sent_at else "None"

    return (
        "✅ <b>Bucket Relay Operational</b>\n"
        "\n"
        "📊 Last 24 Hours:\n"
        f"• Backups Sent: {stats.files_sent} files ({format_bytes(stats.bytes_sent)})\n"
        f"• Buckets Active: {stats.buckets_active}/{stats.buckets_total}\n"
        f"• Failed Uploads: {stats.failed_uploads}\n"
        f"• Retry Queue: {retry_text}\n"
        "\n"
        f"🔍 Last Backup: {last_backup}\n"
        "\n"
        f"⏰ Next heartbeat: {next_heartbeat}"
    )
