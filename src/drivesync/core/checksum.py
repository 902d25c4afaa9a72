"""Content checksums for change detection.

This module provides:
- checksum: Streaming MD5 digest of a file, file object, or buffer
- file_checksum: Convenience wrapper for paths

MD5 is used because it is what the remote store reports natively for
file content; it is a change-detection signal, not a security primitive.
"""

from __future__ import annotations

import hashlib
import io
from pathlib import Path
from typing import BinaryIO

# Read buffer for streaming hashes
HASH_BLOCK_SIZE = 64 * 1024


def _hash_stream(stream: BinaryIO) -> str:
    hasher = hashlib.md5(usedforsecurity=False)
    for block in iter(lambda: stream.read(HASH_BLOCK_SIZE), b""):
        hasher.update(block)
    return hasher.hexdigest()


def checksum(source: Path | str | bytes | bytearray | memoryview | BinaryIO) -> str:
    """Compute the content checksum of a byte source in a single pass.

    Args:
        source: A filesystem path, an in-memory buffer, or a binary file
            object positioned where hashing should start.

    Returns:
        Hex-encoded 128-bit digest (32 characters).

    Raises:
        OSError: If the source cannot be read. Errors are not wrapped.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return _hash_stream(io.BytesIO(source))

    if isinstance(source, (str, Path)):
        with open(source, "rb") as f:
            return _hash_stream(f)

    return _hash_stream(source)


def file_checksum(path: Path) -> str:
    """Compute the checksum of a local file."""
    return checksum(Path(path))
