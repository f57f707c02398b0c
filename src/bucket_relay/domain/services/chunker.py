"""Size-based file splitting.

Files at or above the messaging endpoint's single-message ceiling are cut
into fixed-size, byte-exact part files. Parts are neither compressed nor
framed: the original is rebuilt by concatenating them in part order.
"""

from __future__ import annotations

import logging
from pathlib import Path

from bucket_relay.domain.entities.chunk import ChunkDescriptor
from bucket_relay.domain.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Telegram Bot API upload ceiling
DEFAULT_SPLIT_THRESHOLD = 50 * 1024 * 1024
# Local Bot API servers accept up to 2 GB; leave headroom
DEFAULT_CHUNK_SIZE = int(1.8 * 1024 * 1024 * 1024)

COPY_BUFFER_SIZE = 1024 * 1024


class Chunker:
    """Split oversized files into ordered part files."""

    def __init__(
        self,
        split_threshold: int = DEFAULT_SPLIT_THRESHOLD,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize chunker.

        Args:
            split_threshold: Size in bytes at or above which a file is split.
            chunk_size: Size in bytes of every part except the last.

        Raises:
            ValidationError: If either size is not a positive integer.
        """
        if split_threshold <= 0:
            raise ValidationError(f"Split threshold must be positive, got {split_threshold}")
        if chunk_size <= 0:
            raise ValidationError(f"Chunk size must be positive, got {chunk_size}")
        self.split_threshold = split_threshold
        self.chunk_size = chunk_size

    def should_split(self, file_path: str | Path) -> bool:
        """Check whether a file must be split before delivery.

        Args:
            file_path: Local file to check.

        Returns:
            True if the file size is at or above the split threshold.

        Raises:
            NotFoundError: If the path does not exist.
            ValidationError: If the path is not a regular file.
        """
        path = Path(file_path)
        if not path.exists():
            raise NotFoundError(f"File does not exist: {path}")
        if not path.is_file():
            raise ValidationError(f"Path is not a file: {path}")
        return path.stat().st_size >= self.split_threshold

    def plan(self, total_size: int) -> list[tuple[int, int]]:
        """Compute (offset, length) ranges partitioning `total_size` bytes.

        Every range is `chunk_size` long except the last, which holds the
        remainder (or a full chunk when the size divides evenly).
        """
        ranges = []
        offset = 0
        while offset < total_size:
            length = min(self.chunk_size, total_size - offset)
            ranges.append((offset, length))
            offset += length
        return ranges

    @staticmethod
    def part_path(output_dir: Path, file_name: str, part_number: int) -> Path:
        """Path of a part file. The `.partN` suffix matches the reassembly hint."""
        return output_dir / f"{file_name}.part{part_number}"

    def split(self, file_path: str | Path, output_dir: str | Path) -> list[ChunkDescriptor]:
        """Split a file into part files.

        Args:
            file_path: File to split.
            output_dir: Directory for part files; created if missing.

        Returns:
            Chunk descriptors in part order.

        Raises:
            NotFoundError: If the source file does not exist.
            ValidationError: If the source file is empty.
        """
        source = Path(file_path)
        if not source.is_file():
            raise NotFoundError(f"Source file does not exist: {source}")

        total_size = source.stat().st_size
        if total_size == 0:
            raise ValidationError(f"Cannot split an empty file: {source}")

        out_dir = Path(output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Splitting {source.name} ({total_size} bytes) into {self.chunk_size}-byte parts")

        chunks: list[ChunkDescriptor] = []
        written: list[Path] = []
        try:
            with source.open("rb") as src:
                for index, (offset, length) in enumerate(self.plan(total_size), start=1):
                    part = self.part_path(out_dir, source.name, index)
                    written.append(part)
                    self._copy_range(src, part, offset, length)
                    chunks.append(
                        ChunkDescriptor(
                            part_number=index,
                            byte_offset=offset,
                            byte_length=length,
                            local_path=part,
                        )
                    )
        except OSError:
            # Don't leave a partial part set behind
            for path in written:
                path.unlink(missing_ok=True)
            raise

        logger.info(f"Split {source.name} into {len(chunks)} parts")
        return chunks

    def _copy_range(self, src, destination: Path, offset: int, length: int) -> None:
        """Copy `length` bytes starting at `offset` into `destination`."""
        src.seek(offset)
        remaining = length
        with destination.open("wb") as dst:
            while remaining > 0:
                block = src.read(min(COPY_BUFFER_SIZE, remaining))
                if not block:
                    raise OSError(f"Unexpected end of file while writing {destination.name}")
                dst.write(block)
                remaining -= len(block)
