"""Fixed-size chunking for Helix Connect transfers.

This module provides:
- Chunk: One block of a source with its plaintext digest
- chunk_bytes / chunk_stream: Split a payload into chunk_size blocks
- get_chunk_hash: SHA-256 digest used for chunk checksums
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024  # 4 MB
MIN_CHUNK_SIZE = 64 * 1024  # 64 KB
MAX_CHUNK_SIZE = 64 * 1024 * 1024  # 64 MB


@dataclass
class Chunk:
    """Represents a chunk of data with metadata."""

    index: int
    offset: int
    data: bytes
    hash: str

    @property
    def size(self) -> int:
        """Return the size of this chunk in bytes."""
        return len(self.data)


def get_chunk_hash(data: bytes) -> str:
    """Compute SHA-256 hash of data.

    Args:
        data: Raw bytes to hash.

    Returns:
        Hex-encoded SHA-256 hash string (64 characters).
    """
    return hashlib.sha256(data).hexdigest()


def chunk_count(total_bytes: int, chunk_size: int) -> int:
    """Number of chunks a payload of total_bytes splits into."""
    return -(-total_bytes // chunk_size)


def chunk_bytes(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Chunk]:
    """Split data into chunk_size blocks.

    Args:
        data: Raw bytes to chunk.
        chunk_size: Block size; the last block may be shorter.

    Yields:
        Chunk objects with index, offset, data, and hash.
    """
    for index, offset in enumerate(range(0, len(data), chunk_size)):
        block = data[offset : offset + chunk_size]
        yield Chunk(index=index, offset=offset, data=block, hash=get_chunk_hash(block))


def chunk_stream(stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Chunk]:
    """Read a binary stream lazily in chunk_size blocks.

    Only one block is held in memory per yielded chunk.

    Args:
        stream: Readable binary stream positioned at the start of the payload.
        chunk_size: Block size; the last block may be shorter.

    Yields:
        Chunk objects with index, offset, data, and hash.
    """
    offset = 0
    index = 0
    while True:
        block = _read_exact(stream, chunk_size)
        if not block:
            return
        yield Chunk(index=index, offset=offset, data=block, hash=get_chunk_hash(block))
        offset += len(block)
        index += 1


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    # Raw and socket-backed streams may return short reads before EOF
    parts = []
    remaining = size
    while remaining > 0:
        part = stream.read(remaining)
        if not part:
            break
        parts.append(part)
        remaining -= len(part)
    return b"".join(parts)
