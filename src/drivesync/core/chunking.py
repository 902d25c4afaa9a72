"""Fixed-size chunking for streaming transfers.

Uploads are sent in fixed-size chunks so that memory use stays bounded
regardless of file size. The last chunk of a file may be shorter.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

# Nominal upload chunk size (in bytes)
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024  # 5 MiB


@dataclass
class Chunk:
    """A contiguous slice of a byte stream."""

    index: int
    offset: int
    data: bytes

    @property
    def size(self) -> int:
        """Return the size of this chunk in bytes."""
        return len(self.data)

    @property
    def end(self) -> int:
        """Offset one past the last byte of this chunk."""
        return self.offset + len(self.data)


def iter_chunks(stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Chunk]:
    """Read a binary stream as a sequence of fixed-size chunks.

    Args:
        stream: Binary file object to read from.
        chunk_size: Maximum chunk size in bytes.

    Yields:
        Chunk objects in stream order. Nothing is yielded for empty input.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    index = 0
    offset = 0
    while True:
        data = stream.read(chunk_size)
        if not data:
            return
        yield Chunk(index=index, offset=offset, data=data)
        index += 1
        offset += len(data)


def chunk_file(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Chunk]:
    """Split a file into fixed-size chunks without reading it fully.

    Args:
        path: Path to the file to chunk.
        chunk_size: Maximum chunk size in bytes.

    Yields:
        Chunk objects with index, offset and data.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    with open(path, "rb") as f:
        yield from iter_chunks(f, chunk_size)


def count_chunks(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Number of chunks a payload of ``size`` bytes is split into."""
    if size <= 0:
        return 0
    return (size + chunk_size - 1) // chunk_size
