"""Chunk entity for split deliveries."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ChunkDescriptor:
    """One byte-exact slice of a staged file, written to its own part file.

    Lives only for the processing of a single object; the part file is
    removed as soon as its delivery is confirmed.
    """

    part_number: int
    byte_offset: int
    byte_length: int
    local_path: Path

    @property
    def end_offset(self) -> int:
        """Offset one past the last byte of the slice."""
        return self.byte_offset + self.byte_length
