"""Inbound ports - Contracts offered to the background driver.

The poller reports discoveries through plain callbacks; the driver hands
each discovered object to a FileProcessorPort.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Callable, Protocol

from bucket_relay.domain.entities import ObjectIdentity, SentRecord


# =============================================================================
# Poller Events
# =============================================================================

# Fired once per undelivered object, in listing order
NewObjectCallback = Callable[[ObjectIdentity], None]

# Fired when a cycle-level step fails (bucket enumeration, enabled-bucket lookup)
ErrorCallback = Callable[[Exception], None]

# Runs inside the poll guard after every bucket has been scanned
CycleHook = Callable[[], None]


# =============================================================================
# File Processor Port
# =============================================================================


class FileProcessorPort(Protocol):
    """Protocol for delivering one discovered object.

    Thread Safety:
        Called from the poll thread only; one object at a time.

    Example:
        poller.on_new_object(lambda identity: processor.process_file(identity))
    """

    @abstractmethod
    def process_file(self, identity: ObjectIdentity) -> SentRecord:
        """Fetch, deliver and record one object.

        Args:
            identity: Object to deliver.

        Returns:
            The SentRecord written once every part was delivered.

        Raises:
            ValidationError: If the identity is incomplete (no retry entry).
            RelayError: Any other failure, after the retry entry was written.
        """
        ...


__all__ = [
    "NewObjectCallback",
    "ErrorCallback",
    "CycleHook",
    "FileProcessorPort",
]
