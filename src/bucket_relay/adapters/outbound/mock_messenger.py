"""Mock messenger for testing and development.

Records every message in memory instead of calling the Bot API.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from bucket_relay.domain.errors import TransportError, ValidationError
from bucket_relay.ports.outbound import DeliveryReceipt


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentMessage:
    """A message captured by the mock."""

    kind: str  # document, text
    chat_id: str
    delivery_ref: str
    text: str
    file_name: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0


class MockMessenger:
    """Mock implementation of MessagingPort for testing.

    Failures are scheduled by document call index (0-based, counting
    failed calls too), or applied to every call with fail_always().

    Example:
        messenger = MockMessenger()
        messenger.fail_call(1)   # second send_document raises
    """

    def __init__(self, first_message_id: int = 1000):
        """Initialize mock messenger."""
        self.messages: list[SentMessage] = []
        self._ids = itertools.count(first_message_id)
        self._document_calls = 0
        self._failures: dict[int, Exception] = {}
        self._fail_always: Optional[Exception] = None
        self._lock = threading.Lock()

    @property
    def documents(self) -> list[SentMessage]:
        return [m for m in self.messages if m.kind == "document"]

    @property
    def texts(self) -> list[SentMessage]:
        return [m for m in self.messages if m.kind == "text"]

    @property
    def document_calls(self) -> int:
        """Number of send_document calls, successful or not."""
        return self._document_calls

    def fail_call(self, index: int, error: Optional[Exception] = None) -> None:
        """Fail the send_document call with the given index."""
        self._failures[index] = error or TransportError(f"Injected send failure on call {index}")

    def fail_always(self, error: Optional[Exception] = None) -> None:
        """Fail every subsequent send (documents and text)."""
        self._fail_always = error or TransportError("Injected send failure")

    def clear_failures(self) -> None:
        self._failures.clear()
        self._fail_always = None

    def send_document(self, chat_id: str, file_path: Path, caption: str) -> DeliveryReceipt:
        file_path = Path(file_path)
        if not chat_id or not caption:
            raise ValidationError("Chat ID, file path, and caption are required")

        with self._lock:
            index = self._document_calls
            self._document_calls += 1
            failure = self._failures.pop(index, None) or self._fail_always
            if failure is not None:
                raise failure
            if not file_path.is_file():
                raise ValidationError(f"File to send does not exist: {file_path}")

            ref = str(next(self._ids))
            self.messages.append(
                SentMessage(
                    kind="document",
                    chat_id=chat_id,
                    delivery_ref=ref,
                    text=caption,
                    file_name=file_path.name,
                    data=file_path.read_bytes(),
                )
            )

        logger.debug(f"Mock sent document {file_path.name} as message {ref}")
        return DeliveryReceipt(delivery_ref=ref, chat_id=chat_id)

    def send_text(self, chat_id: str, text: str) -> DeliveryReceipt:
        if not chat_id or not text:
            raise ValidationError("Chat ID and text are required")

        with self._lock:
            if self._fail_always is not None:
                raise self._fail_always
            ref = str(next(self._ids))
            self.messages.append(SentMessage(kind="text", chat_id=chat_id, delivery_ref=ref, text=text))

        return DeliveryReceipt(delivery_ref=ref, chat_id=chat_id)
