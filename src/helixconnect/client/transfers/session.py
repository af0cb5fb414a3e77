"""Transfer session state and resume tokens.

This module provides:
- TransferSession: Progress of one in-flight upload or download
- ResumeState: Decoded contents of a resume token
- encode_resume_token / decode_resume_token: Opaque token codec
- manifest_fingerprint: Digest binding a download token to remote state
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from helixconnect.core.errors import ResumeInvalidError
from helixconnect.core.types import TransferDirection, TransferState

if TYPE_CHECKING:
    from helixconnect.client.api import Manifest

logger = logging.getLogger(__name__)

TOKEN_VERSION = 1

# Callback signature: (bytes_transferred, total_bytes)
ProgressCallback = Callable[[int, int], None]


def report_progress(callback: ProgressCallback | None, done: int, total: int) -> None:
    """Invoke a progress callback, isolating the transfer from its failures."""
    if callback is None:
        return
    try:
        callback(done, total)
    except Exception:
        logger.warning("Progress callback failed", exc_info=True)


def manifest_fingerprint(manifest: Manifest) -> str:
    """Digest of size and chunk checksums of a manifest."""
    hasher = hashlib.sha256(str(manifest.size).encode())
    for checksum in manifest.chunk_checksums:
        hasher.update(b"\x00" + checksum.encode())
    return hasher.hexdigest()


@dataclass
class ResumeState:
    """Decoded resume token.

    Download tokens record the number of contiguous chunks written and the
    manifest they were written against. Upload tokens record, per
    acknowledged chunk, the plaintext digest and the sealed checksum.
    """

    direction: TransferDirection
    object_id: str
    next_index: int = 0
    bytes_written: int = 0
    fingerprint: str | None = None
    chunk_size: int | None = None
    acknowledged: dict[int, tuple[str, str]] = field(default_factory=dict)


def encode_resume_token(state: ResumeState) -> str:
    """Serialize resume state to an opaque token."""
    payload = {
        "v": TOKEN_VERSION,
        "d": state.direction.value,
        "o": state.object_id,
        "n": state.next_index,
        "b": state.bytes_written,
        "f": state.fingerprint,
        "c": state.chunk_size,
        "a": {str(i): list(pair) for i, pair in sorted(state.acknowledged.items())},
    }
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
    return base64.urlsafe_b64encode(raw).decode()


def decode_resume_token(token: str) -> ResumeState:
    """Parse an opaque token.

    Raises:
        ResumeInvalidError: If the token is malformed or from another version.
    """
    try:
        payload: dict[str, Any] = json.loads(base64.urlsafe_b64decode(token.encode()))
        if payload["v"] != TOKEN_VERSION:
            raise ResumeInvalidError(f"Unsupported resume token version {payload['v']}")
        return ResumeState(
            direction=TransferDirection(payload["d"]),
            object_id=payload["o"],
            next_index=int(payload["n"]),
            bytes_written=int(payload["b"]),
            fingerprint=payload["f"],
            chunk_size=payload["c"],
            acknowledged={int(i): (p[0], p[1]) for i, p in payload["a"].items()},
        )
    except ResumeInvalidError:
        raise
    except (ValueError, KeyError, TypeError, IndexError, AttributeError) as e:
        raise ResumeInvalidError(f"Malformed resume token: {e}") from e


class TransferSession:
    """Progress of one upload or download.

    Owned by the TransferEngine call that created it. Chunk workers report
    into it through record_upload()/record_download(), which serialize on
    an internal lock.

    Attributes:
        object_id: Object being transferred.
        direction: Upload or download.
        total_bytes: Plaintext size of the object.
        bytes_transferred: Plaintext bytes acknowledged (upload) or written (download).
        chunk_checksums: Sealed-chunk checksums by index (None until known).
        chunk_retries: Retries spent per chunk index.
        state: Lifecycle state.
    """

    def __init__(
        self,
        object_id: str,
        direction: TransferDirection,
        total_bytes: int = 0,
        chunk_count: int = 0,
        chunk_size: int | None = None,
    ) -> None:
        self.object_id = object_id
        self.direction = direction
        self.total_bytes = total_bytes
        self.chunk_size = chunk_size
        self.bytes_transferred = 0
        self.chunk_checksums: list[str | None] = [None] * chunk_count
        self.chunk_retries: dict[int, int] = {}
        self.state = TransferState.PENDING
        self._lock = threading.Lock()

        # Download bookkeeping
        self._next_index = 0
        self._fingerprint: str | None = None

        # Upload bookkeeping: index -> (plaintext hash, sealed checksum)
        self._acknowledged: dict[int, tuple[str, str]] = {}

    def __repr__(self) -> str:
        return (
            f"TransferSession({self.direction.value} {self.object_id}: "
            f"{self.bytes_transferred}/{self.total_bytes} bytes, {self.state.value})"
        )

    @property
    def completed(self) -> bool:
        return self.state == TransferState.COMPLETED

    @property
    def next_index(self) -> int:
        """First chunk not yet written (download)."""
        return self._next_index

    @property
    def acknowledged(self) -> dict[int, tuple[str, str]]:
        """Chunks acknowledged by storage (upload)."""
        with self._lock:
            return dict(self._acknowledged)

    def count_retry(self, index: int) -> None:
        with self._lock:
            self.chunk_retries[index] = self.chunk_retries.get(index, 0) + 1

    def _ensure_slot(self, index: int) -> None:
        if index >= len(self.chunk_checksums):
            self.chunk_checksums.extend([None] * (index + 1 - len(self.chunk_checksums)))

    def record_upload(self, index: int, plaintext_hash: str, checksum: str, size: int) -> int:
        """Record an acknowledged upload chunk.

        Returns:
            bytes_transferred after this chunk.
        """
        with self._lock:
            self._ensure_slot(index)
            self.chunk_checksums[index] = checksum
            self._acknowledged[index] = (plaintext_hash, checksum)
            self.bytes_transferred += size
            return self.bytes_transferred

    def start_download(self, manifest: Manifest, next_index: int, bytes_written: int) -> None:
        with self._lock:
            self._fingerprint = manifest_fingerprint(manifest)
            self.chunk_checksums = list(manifest.chunk_checksums)
            self._next_index = next_index
            self.bytes_transferred = bytes_written

    def record_download(self, index: int, size: int) -> int:
        """Record a chunk appended to the sink, in index order.

        Returns:
            bytes_transferred after this chunk.
        """
        with self._lock:
            if index != self._next_index:
                raise RuntimeError(f"Chunk {index} written out of order (expected {self._next_index})")
            self._next_index += 1
            self.bytes_transferred += size
            return self.bytes_transferred

    @property
    def resume_token(self) -> str | None:
        """Opaque token to continue this transfer, or None if nothing is acknowledged."""
        with self._lock:
            if self.direction == TransferDirection.DOWNLOAD:
                if self._fingerprint is None or self._next_index == 0:
                    return None
                state = ResumeState(
                    direction=self.direction,
                    object_id=self.object_id,
                    next_index=self._next_index,
                    bytes_written=self.bytes_transferred,
                    fingerprint=self._fingerprint,
                )
            else:
                if not self._acknowledged:
                    return None
                state = ResumeState(
                    direction=self.direction,
                    object_id=self.object_id,
                    chunk_size=self.chunk_size,
                    acknowledged=dict(self._acknowledged),
                )
        return encode_resume_token(state)
