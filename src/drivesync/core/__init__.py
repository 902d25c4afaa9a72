"""Core module - Shared checksums, chunking, config and types."""

from drivesync.core.checksum import checksum, file_checksum
from drivesync.core.chunking import (
    DEFAULT_CHUNK_SIZE,
    Chunk,
    chunk_file,
    count_chunks,
    iter_chunks,
)
from drivesync.core.config import RemoteConfig, SyncConfig
from drivesync.core.types import SessionStatus, SyncMode

__all__ = [
    # Checksum
    "checksum",
    "file_checksum",
    # Chunking
    "DEFAULT_CHUNK_SIZE",
    "Chunk",
    "chunk_file",
    "count_chunks",
    "iter_chunks",
    # Config
    "RemoteConfig",
    "SyncConfig",
    # Types
    "SessionStatus",
    "SyncMode",
]
