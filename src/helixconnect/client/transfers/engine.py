"""Transfer engine: chunked, resumable upload and download.

This module provides:
- TransferEngine: Facade over ChunkUploader and ChunkDownloader sharing one
  storage boundary, codec and retry policy
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from helixconnect.client.retry import RetryPolicy
from helixconnect.client.transfers.download import ChunkDownloader, DownloadSink
from helixconnect.client.transfers.upload import ChunkUploader, UploadSource
from helixconnect.core.chunking import DEFAULT_CHUNK_SIZE

if TYPE_CHECKING:
    import threading

    from helixconnect.client.api import ObjectStorage
    from helixconnect.client.transfers.session import ProgressCallback, TransferSession
    from helixconnect.core.codec import EnvelopeCodec
    from helixconnect.core.config import CapabilityConfig

logger = logging.getLogger(__name__)


class TransferEngine:
    """Moves objects between local data and object storage.

    Objects are framed as one sealed envelope per chunk. Each transfer runs
    its chunks on its own bounded pool, so transfers started from different
    threads never wait on each other.

    Usage:
        engine = TransferEngine(storage, codec)
        session = engine.upload("datasets/prices/v3", Path("prices.csv"))
        engine.download("datasets/prices/v3", Path("out/prices.csv"))
    """

    def __init__(
        self,
        storage: ObjectStorage,
        codec: EnvelopeCodec,
        retry_policy: RetryPolicy | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_workers: int = 4,
        integrity_refetches: int = 2,
    ) -> None:
        """Initialize the engine.

        Args:
            storage: Object-storage boundary.
            codec: Envelope codec for sealing/opening chunks.
            retry_policy: Policy for transient storage failures.
            chunk_size: Default upload chunk size.
            max_workers: Chunk workers per transfer.
            integrity_refetches: Re-fetches of a chunk failing its checksum.
        """
        self._retry = retry_policy or RetryPolicy()
        self._chunk_size = chunk_size
        self._uploader = ChunkUploader(storage, codec, self._retry, max_workers=max_workers)
        self._downloader = ChunkDownloader(
            storage,
            codec,
            self._retry,
            max_workers=max_workers,
            integrity_refetches=integrity_refetches,
        )

    @classmethod
    def from_config(
        cls, storage: ObjectStorage, codec: EnvelopeCodec, config: CapabilityConfig
    ) -> TransferEngine:
        """Build an engine from a CapabilityConfig."""
        return cls(
            storage,
            codec,
            retry_policy=RetryPolicy.from_config(config),
            chunk_size=config.chunk_size_bytes,
            max_workers=config.max_workers,
            integrity_refetches=config.integrity_refetches,
        )

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def upload(
        self,
        object_id: str,
        source: UploadSource,
        chunk_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
        resume_token: str | None = None,
    ) -> TransferSession:
        """Upload an object (see ChunkUploader.upload)."""
        return self._uploader.upload(
            object_id,
            source,
            chunk_size or self._chunk_size,
            on_progress=on_progress,
            cancel=cancel,
            resume_token=resume_token,
        )

    def upload_file(
        self,
        path: Path,
        object_id: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> TransferSession:
        """Upload a local file, by default under its file name."""
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return self.upload(object_id or path.name, path, on_progress=on_progress, cancel=cancel)

    def download(
        self,
        object_id: str,
        sink: DownloadSink,
        chunk_size: int | None = None,
        resume_token: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> TransferSession:
        """Download an object (see ChunkDownloader.download)."""
        return self._downloader.download(
            object_id,
            sink,
            chunk_size=chunk_size,
            resume_token=resume_token,
            on_progress=on_progress,
            cancel=cancel,
        )

    def download_to(
        self,
        object_id: str,
        path: Path,
        resume_token: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> Path:
        """Download an object to a file path, creating parent directories.

        Returns:
            The final path.
        """
        path = Path(path)
        self.download(
            object_id, path, resume_token=resume_token, on_progress=on_progress, cancel=cancel
        )
        return path
