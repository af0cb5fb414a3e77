"""Chunked, resumable transfers between local data and object storage."""

from helixconnect.client.transfers.download import ChunkDownloader, ReorderBuffer
from helixconnect.client.transfers.engine import TransferEngine
from helixconnect.client.transfers.pool import ChunkPool
from helixconnect.client.transfers.session import (
    ProgressCallback,
    ResumeState,
    TransferSession,
    decode_resume_token,
    encode_resume_token,
)
from helixconnect.client.transfers.upload import ChunkUploader

__all__ = [
    "ChunkDownloader",
    "ChunkPool",
    "ChunkUploader",
    "ProgressCallback",
    "ReorderBuffer",
    "ResumeState",
    "TransferEngine",
    "TransferSession",
    "decode_resume_token",
    "encode_resume_token",
]
