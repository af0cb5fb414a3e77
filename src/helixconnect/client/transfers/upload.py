"""Chunked upload with per-chunk envelopes.

This module provides:
- ChunkUploader: Seals each chunk under its own data key, uploads chunks
  on a bounded pool, and commits the manifest
"""

from __future__ import annotations

import contextlib
import io
import logging
import os
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from helixconnect.client.api import Manifest
from helixconnect.client.transfers.pool import ChunkPool
from helixconnect.client.transfers.session import (
    ProgressCallback,
    TransferSession,
    decode_resume_token,
    report_progress,
)
from helixconnect.core.chunking import Chunk, chunk_stream, get_chunk_hash
from helixconnect.core.errors import (
    CancelledError,
    ResumeInvalidError,
    TransferError,
)
from helixconnect.core.types import TransferDirection, TransferState

if TYPE_CHECKING:
    import threading

    from helixconnect.client.api import ObjectStorage
    from helixconnect.client.retry import RetryPolicy
    from helixconnect.core.codec import EnvelopeCodec

logger = logging.getLogger(__name__)

UploadSource = bytes | bytearray | str | Path | BinaryIO


def _measure(stream: BinaryIO) -> int:
    """Bytes remaining in a seekable stream (0 if unknown)."""
    try:
        if not stream.seekable():
            return 0
        position = stream.tell()
        end = stream.seek(0, io.SEEK_END)
        stream.seek(position)
        return end - position
    except (OSError, AttributeError, ValueError):
        return 0


@contextlib.contextmanager
def _open_source(source: UploadSource) -> Iterator[tuple[BinaryIO, int]]:
    if isinstance(source, (bytes, bytearray)):
        yield io.BytesIO(bytes(source)), len(source)
    elif isinstance(source, (str, Path)):
        path = Path(source)
        with open(path, "rb") as f:
            yield f, os.fstat(f.fileno()).st_size
    else:
        yield source, _measure(source)


class ChunkUploader:
    """Uploads objects as a sequence of independently sealed chunks.

    Every chunk is its own Envelope (own data key, own IV), so a failed
    chunk is retried alone and acknowledged chunks are never resent.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        codec: EnvelopeCodec,
        retry_policy: RetryPolicy,
        max_workers: int = 4,
    ) -> None:
        """Initialize the uploader.

        Args:
            storage: Object-storage boundary.
            codec: Envelope codec used to seal chunks.
            retry_policy: Policy for transient storage failures.
            max_workers: Chunk uploads in parallel.
        """
        self._storage = storage
        self._codec = codec
        self._retry = retry_policy
        self._max_workers = max_workers

    def upload(
        self,
        object_id: str,
        source: UploadSource,
        chunk_size: int,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
        resume_token: str | None = None,
    ) -> TransferSession:
        """Upload an object.

        Args:
            object_id: Target object identifier.
            source: Bytes, a file path, or a readable binary stream.
            chunk_size: Plaintext bytes per chunk.
            on_progress: Called with (bytes_transferred, total_bytes) after
                each acknowledged chunk, possibly out of order.
            cancel: Cancellation signal.
            resume_token: Token from a failed attempt at the same upload.

        Returns:
            The completed TransferSession.

        Raises:
            TransferError: Wrapping the cause, with chunk index and a resume token.
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")

        acknowledged: dict[int, tuple[str, str]] = {}
        if resume_token is not None:
            acknowledged = self._check_resume(object_id, chunk_size, resume_token)

        with _open_source(source) as (stream, total):
            session = TransferSession(
                object_id, TransferDirection.UPLOAD, total_bytes=total, chunk_size=chunk_size
            )
            session.state = TransferState.RUNNING
            logger.info(f"Uploading {object_id} ({total} bytes)")
            read_bytes, chunk_total = self._upload_chunks(
                session, stream, acknowledged, on_progress, cancel
            )

        session.total_bytes = read_bytes
        manifest = Manifest(
            size=read_bytes,
            chunk_count=chunk_total,
            chunk_checksums=[c for c in session.chunk_checksums if c is not None],
            chunk_size=chunk_size,
        )
        try:
            self._retry.call(
                lambda: self._storage.put_manifest(object_id, manifest),
                cancel=cancel,
                description=f"commit manifest of {object_id}",
            )
        except Exception as e:
            session.state = TransferState.CANCELLED if isinstance(e, CancelledError) else TransferState.FAILED
            raise TransferError(object_id, e, resume_token=session.resume_token) from e

        session.state = TransferState.COMPLETED
        logger.info(f"Uploaded {object_id}: {chunk_total} chunks, {read_bytes} bytes")
        return session

    def _check_resume(
        self, object_id: str, chunk_size: int, token: str
    ) -> dict[int, tuple[str, str]]:
        state = decode_resume_token(token)
        if state.direction != TransferDirection.UPLOAD or state.object_id != object_id:
            raise ResumeInvalidError(f"Resume token does not belong to an upload of {object_id}")
        if state.chunk_size != chunk_size:
            raise ResumeInvalidError(
                f"Resume token chunk size {state.chunk_size} differs from {chunk_size}"
            )
        logger.info(f"Resuming upload of {object_id}: {len(state.acknowledged)} chunks acknowledged")
        return state.acknowledged

    def _upload_chunks(
        self,
        session: TransferSession,
        stream: BinaryIO,
        acknowledged: dict[int, tuple[str, str]],
        on_progress: ProgressCallback | None,
        cancel: threading.Event | None,
    ) -> tuple[int, int]:
        read_bytes = 0
        count = 0
        with ChunkPool(self._max_workers, cancel=cancel, name=f"upload-{session.object_id}") as pool:
            for chunk in chunk_stream(stream, session.chunk_size or 1):
                read_bytes += chunk.size
                count += 1
                previous = acknowledged.get(chunk.index)
                if previous is not None:
                    if previous[0] != chunk.hash:
                        pool.fail(chunk.index, ResumeInvalidError(
                            f"Chunk {chunk.index} of {session.object_id} changed since the interrupted upload"
                        ))
                        break
                    done = session.record_upload(chunk.index, chunk.hash, previous[1], chunk.size)
                    report_progress(on_progress, done, max(session.total_bytes, done))
                    continue
                if not pool.submit(
                    chunk.index, self._upload_chunk, session, chunk, on_progress, cancel
                ):
                    break

        failure = pool.failure
        interrupted = len(session.acknowledged) < count
        if failure is None and interrupted and cancel is not None and cancel.is_set():
            failure = (count, CancelledError(f"Upload of {session.object_id} cancelled"))
        if failure is not None:
            index, error = failure
            session.state = (
                TransferState.CANCELLED if isinstance(error, CancelledError) else TransferState.FAILED
            )
            logger.error(f"Upload of {session.object_id} failed at chunk {index}: {error}")
            raise TransferError(
                session.object_id, error, chunk_index=index, resume_token=session.resume_token
            ) from error
        return read_bytes, count

    def _upload_chunk(
        self,
        session: TransferSession,
        chunk: Chunk,
        on_progress: ProgressCallback | None,
        cancel: threading.Event | None,
    ) -> None:
        if cancel is not None and cancel.is_set():
            raise CancelledError(f"Upload of {session.object_id} cancelled")

        # Sealed once so retries resend identical bytes under the same checksum
        sealed = self._codec.seal(chunk.data, cancel=cancel).to_bytes()
        checksum = get_chunk_hash(sealed)

        self._retry.call(
            lambda: self._storage.put_chunk(session.object_id, chunk.index, sealed),
            cancel=cancel,
            description=f"put chunk {chunk.index} of {session.object_id}",
            on_retry=lambda attempt, error: session.count_retry(chunk.index),
        )

        done = session.record_upload(chunk.index, chunk.hash, checksum, chunk.size)
        logger.debug(f"Uploaded chunk {chunk.index} of {session.object_id} ({checksum[:8]}...)")
        report_progress(on_progress, done, max(session.total_bytes, done))
