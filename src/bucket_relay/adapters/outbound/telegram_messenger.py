"""Telegram Bot API adapter built on httpx.

Uses the plain HTTP Bot API: sendDocument (multipart upload) and
sendMessage, both with HTML parse mode. The bot token is part of the
request path and is never included in raised error messages.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import httpx

from bucket_relay.domain.errors import TransportError, ValidationError
from bucket_relay.infrastructure.config import TelegramConfig
from bucket_relay.ports.outbound import DeliveryReceipt

logger = logging.getLogger(__name__)


class TelegramMessenger:
    """MessagingPort implementation for the Telegram Bot API."""

    def __init__(self, config: TelegramConfig, http_client: Optional[httpx.Client] = None):
        """Initialize the messenger.

        Args:
            config: Bot token, API base URL and timeouts.
            http_client: Pre-built client (tests inject one with a MockTransport).
        """
        if not config.bot_token:
            raise ValidationError("Telegram bot token is not set")
        self.config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(config.timeout_seconds, connect=10.0),
        )
        self._base_url = f"{config.api_base_url.rstrip('/')}/bot{config.bot_token}"

    def close(self) -> None:
        """Close the underlying HTTP client if this adapter created it."""
        if self._owns_client:
            self._client.close()

    def send_document(self, chat_id: str, file_path: Path, caption: str) -> DeliveryReceipt:
        file_path = Path(file_path)
        if not chat_id or not caption:
            raise ValidationError("Chat ID, file path, and caption are required")
        if not file_path.is_file():
            raise ValidationError(f"File to send does not exist: {file_path}")

        logger.info(f"Sending file to Telegram: {file_path.name}")
        with open(file_path, "rb") as fh:
            payload = self._call(
                "sendDocument",
                chat_id,
                data={"chat_id": chat_id, "caption": caption, "parse_mode": "HTML"},
                files={"document": (file_path.name, fh, "application/octet-stream")},
            )

        receipt = self._receipt(payload, chat_id)
        logger.info(f"File sent, message ID: {receipt.delivery_ref}")
        return receipt

    def send_text(self, chat_id: str, text: str) -> DeliveryReceipt:
        if not chat_id or not text:
            raise ValidationError("Chat ID and text are required")

        payload = self._call(
            "sendMessage",
            chat_id,
            json={"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
        )
        return self._receipt(payload, chat_id)

    def _call(self, method: str, chat_id: str, **request: Any) -> dict[str, Any]:
        """POST a Bot API method and return its decoded result object."""
        try:
            response = self._client.post(f"{self._base_url}/{method}", **request)
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Failed to {method} to Telegram chat {chat_id}: {type(exc).__name__}"
            ) from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code == 429:
            retry_after = body.get("parameters", {}).get("retry_after")
            raise TransportError(
                f"Telegram rate limited {method} to chat {chat_id}"
                + (f" (retry after {retry_after}s)" if retry_after else "")
            )

        if response.status_code >= 400 or not body.get("ok"):
            description = body.get("description") or response.reason_phrase
            raise TransportError(
                f"Failed to {method} to Telegram chat {chat_id}: "
                f"{response.status_code} {description}"
            )

        return body.get("result") or {}

    @staticmethod
    def _receipt(result: dict[str, Any], chat_id: str) -> DeliveryReceipt:
        message_id = result.get("message_id")
        if message_id is None:
            raise TransportError("Telegram response did not include a message_id")
        return DeliveryReceipt(delivery_ref=str(message_id), chat_id=chat_id)
