"""Chunked download with verification, ordered assembly and resume.

This module provides:
- ReorderBuffer: Appends chunks to the sink strictly in index order
- ChunkDownloader: Fetches, verifies and opens chunks on a bounded pool
"""

from __future__ import annotations

import contextlib
import logging
import os
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from helixconnect.client.transfers.pool import ChunkPool
from helixconnect.client.transfers.session import (
    ProgressCallback,
    ResumeState,
    TransferSession,
    decode_resume_token,
    manifest_fingerprint,
    report_progress,
)
from helixconnect.core.chunking import get_chunk_hash
from helixconnect.core.errors import (
    CancelledError,
    FormatError,
    IntegrityError,
    ResumeInvalidError,
    TransferError,
)
from helixconnect.core.types import TransferDirection, TransferState

if TYPE_CHECKING:
    from helixconnect.client.api import Manifest, ObjectStorage
    from helixconnect.client.retry import RetryPolicy
    from helixconnect.core.codec import EnvelopeCodec

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"

DownloadSink = str | Path | BinaryIO


class ReorderBuffer:
    """Single-writer reordering buffer for one download.

    Workers hand in verified chunks in any order. Whichever worker holds
    the lock drains every chunk that is next in line to the sink; chunks
    that arrive early wait in the buffer.
    """

    def __init__(
        self,
        sink: BinaryIO,
        session: TransferSession,
        on_written: ProgressCallback | None = None,
        on_release: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the buffer.

        Args:
            sink: Destination stream, positioned at the resume point.
            session: Session tracking the next index to write.
            on_written: Progress callback (bytes_written, total_bytes).
            on_release: Called once per chunk written (frees a pool slot).
        """
        self._sink = sink
        self._session = session
        self._on_written = on_written
        self._on_release = on_release
        self._pending: dict[int, bytes] = {}
        self._lock = threading.Lock()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def put(self, index: int, data: bytes) -> None:
        """Buffer a chunk and write out everything now in order."""
        progress: list[int] = []
        with self._lock:
            self._pending[index] = data
            while self._session.next_index in self._pending:
                next_index = self._session.next_index
                block = self._pending.pop(next_index)
                self._sink.write(block)
                self._sink.flush()
                progress.append(self._session.record_download(next_index, len(block)))
                if self._on_release is not None:
                    self._on_release()

        for done in progress:
            report_progress(self._on_written, done, self._session.total_bytes)


class ChunkDownloader:
    """Downloads objects chunk by chunk.

    Each chunk is checked against the manifest checksum (re-fetched a
    bounded number of times on mismatch), opened through the codec, and
    appended to the sink in order. Only verified plaintext ever reaches
    the sink, so an interrupted download leaves a prefix of whole chunks.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        codec: EnvelopeCodec,
        retry_policy: RetryPolicy,
        max_workers: int = 4,
        integrity_refetches: int = 2,
    ) -> None:
        """Initialize the downloader.

        Args:
            storage: Object-storage boundary.
            codec: Envelope codec used to open chunks.
            retry_policy: Policy for transient storage failures.
            max_workers: Chunk fetches in parallel.
            integrity_refetches: Re-fetches of a chunk whose checksum mismatches.
        """
        self._storage = storage
        self._codec = codec
        self._retry = retry_policy
        self._max_workers = max_workers
        self._integrity_refetches = integrity_refetches

    def download(
        self,
        object_id: str,
        sink: DownloadSink,
        chunk_size: int | None = None,
        resume_token: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> TransferSession:
        """Download an object into a sink.

        A path sink is written as ``<path>.part`` and renamed on completion;
        the ``.part`` file is kept on failure for resuming.

        Args:
            object_id: Object identifier.
            sink: Destination path or writable binary stream.
            chunk_size: Expected chunk size; checked against the manifest when
                both are known.
            resume_token: Token from a failed download of the same object.
            on_progress: Called with (bytes_written, total_bytes) per chunk.
            cancel: Cancellation signal.

        Returns:
            The completed TransferSession.

        Raises:
            TransferError: Wrapping the cause, with chunk index and a resume token.
            ResumeInvalidError: If resume_token does not match the remote manifest.
        """
        session = TransferSession(object_id, TransferDirection.DOWNLOAD)
        session.state = TransferState.RUNNING

        try:
            manifest = self._retry.call(
                lambda: self._storage.get_manifest(object_id),
                cancel=cancel,
                description=f"get manifest of {object_id}",
            )
        except Exception as e:
            session.state = TransferState.FAILED
            raise TransferError(object_id, e) from e

        if chunk_size is not None and manifest.chunk_size not in (None, chunk_size):
            raise TransferError(
                object_id,
                FormatError(f"Manifest chunk size {manifest.chunk_size} differs from {chunk_size}"),
            )

        resume = self._check_resume(object_id, manifest, resume_token)
        session.total_bytes = manifest.size
        session.start_download(manifest, resume.next_index, resume.bytes_written)
        logger.info(
            f"Downloading {object_id}: {manifest.chunk_count} chunks, {manifest.size} bytes"
            + (f", resuming at chunk {resume.next_index}" if resume.next_index else "")
        )

        with self._open_sink(sink, resume) as stream:
            self._download_chunks(session, manifest, stream, on_progress, cancel)

        if session.bytes_transferred != manifest.size:
            session.state = TransferState.FAILED
            raise TransferError(
                object_id,
                IntegrityError(
                    f"Assembled {session.bytes_transferred} bytes, manifest says {manifest.size}"
                ),
            )

        self._finalize(sink)
        session.state = TransferState.COMPLETED
        logger.info(f"Downloaded {object_id}: {manifest.size} bytes")
        return session

    def _check_resume(
        self, object_id: str, manifest: Manifest, token: str | None
    ) -> ResumeState:
        if token is None:
            return ResumeState(direction=TransferDirection.DOWNLOAD, object_id=object_id)

        state = decode_resume_token(token)
        if state.direction != TransferDirection.DOWNLOAD or state.object_id != object_id:
            raise ResumeInvalidError(
                f"Resume token does not belong to a download of {object_id}", object_id=object_id
            )
        if state.fingerprint != manifest_fingerprint(manifest):
            raise ResumeInvalidError(
                f"{object_id} changed since the interrupted download", object_id=object_id
            )
        if not 0 <= state.next_index <= manifest.chunk_count:
            raise ResumeInvalidError(
                f"Resume point {state.next_index} outside manifest", object_id=object_id
            )
        return state

    @contextlib.contextmanager
    def _open_sink(self, sink: DownloadSink, resume: ResumeState) -> Iterator[BinaryIO]:
        if not isinstance(sink, (str, Path)):
            if resume.next_index and sink.seekable():
                sink.seek(resume.bytes_written)
                sink.truncate()
            yield sink
            return

        path = Path(sink)
        part = path.with_name(path.name + PART_SUFFIX)
        path.parent.mkdir(parents=True, exist_ok=True)
        if resume.next_index:
            if not part.exists() or part.stat().st_size < resume.bytes_written:
                raise ResumeInvalidError(
                    f"Partial file {part} is missing or shorter than the resume point",
                    object_id=resume.object_id,
                )
            f = open(part, "r+b")
            f.truncate(resume.bytes_written)
            f.seek(resume.bytes_written)
        else:
            f = open(part, "wb")
        with f:
            yield f

    def _finalize(self, sink: DownloadSink) -> None:
        if isinstance(sink, (str, Path)):
            path = Path(sink)
            os.replace(path.with_name(path.name + PART_SUFFIX), path)

    def _download_chunks(
        self,
        session: TransferSession,
        manifest: Manifest,
        stream: BinaryIO,
        on_progress: ProgressCallback | None,
        cancel: threading.Event | None,
    ) -> None:
        pool = ChunkPool(
            self._max_workers,
            cancel=cancel,
            auto_release=False,
            name=f"download-{session.object_id}",
        )
        buffer = ReorderBuffer(stream, session, on_written=on_progress, on_release=pool.release)

        with pool:
            for index in range(session.next_index, manifest.chunk_count):
                if not pool.submit(
                    index, self._fetch_chunk, session, manifest, index, buffer, cancel
                ):
                    break

        failure = pool.failure
        if failure is None and session.next_index < manifest.chunk_count:
            failure = (
                session.next_index,
                CancelledError(f"Download of {session.object_id} cancelled"),
            )
        if failure is not None:
            index, error = failure
            session.state = (
                TransferState.CANCELLED if isinstance(error, CancelledError) else TransferState.FAILED
            )
            logger.error(f"Download of {session.object_id} failed at chunk {index}: {error}")
            raise TransferError(
                session.object_id, error, chunk_index=index, resume_token=session.resume_token
            ) from error

    def _fetch_chunk(
        self,
        session: TransferSession,
        manifest: Manifest,
        index: int,
        buffer: ReorderBuffer,
        cancel: threading.Event | None,
    ) -> None:
        expected = manifest.chunk_checksums[index]
        description = f"get chunk {index} of {session.object_id}"

        for fetch in range(self._integrity_refetches + 1):
            sealed = self._retry.call(
                lambda: self._storage.get_chunk(session.object_id, index),
                cancel=cancel,
                description=description,
                on_retry=lambda attempt, error: session.count_retry(index),
            )
            if get_chunk_hash(sealed) == expected:
                break
            logger.warning(
                f"Checksum mismatch on chunk {index} of {session.object_id} "
                f"(fetch {fetch + 1}/{self._integrity_refetches + 1})"
            )
            if fetch == self._integrity_refetches:
                raise IntegrityError(
                    f"Chunk {index} of {session.object_id} failed checksum verification",
                    object_id=session.object_id,
                    chunk_index=index,
                )
            session.count_retry(index)

        plaintext = self._codec.open(sealed, cancel=cancel)
        logger.debug(f"Verified chunk {index} of {session.object_id} ({len(plaintext)} bytes)")
        buffer.put(index, plaintext)
