"""Core module - Envelope codec, wire format, chunking, errors and config."""

from helixconnect.core.chunking import (
    DEFAULT_CHUNK_SIZE,
    Chunk,
    chunk_bytes,
    chunk_stream,
    get_chunk_hash,
)
from helixconnect.core.codec import DEFAULT_COMPRESSION_LEVEL, EnvelopeCodec, KeyWrapper
from helixconnect.core.config import CapabilityConfig, ServerConfig
from helixconnect.core.envelope import IV_SIZE, KEY_SIZE, TAG_SIZE, Envelope
from helixconnect.core.errors import (
    AuthenticationError,
    AuthorizationError,
    CancelledError,
    CapabilityError,
    CryptoError,
    FormatError,
    HelixError,
    IntegrityError,
    KeyServiceError,
    NetworkError,
    NotFoundError,
    NotificationError,
    QuotaExceededError,
    RateLimitError,
    ResumeInvalidError,
    RetryExhaustedError,
    TransferError,
    ValidationError,
)
from helixconnect.core.types import Capability, PollerState, TransferDirection, TransferState

__all__ = [
    # Chunking
    "Chunk",
    "DEFAULT_CHUNK_SIZE",
    "chunk_bytes",
    "chunk_stream",
    "get_chunk_hash",
    # Codec
    "DEFAULT_COMPRESSION_LEVEL",
    "Envelope",
    "EnvelopeCodec",
    "IV_SIZE",
    "KEY_SIZE",
    "KeyWrapper",
    "TAG_SIZE",
    # Config
    "CapabilityConfig",
    "ServerConfig",
    # Errors
    "AuthenticationError",
    "AuthorizationError",
    "CancelledError",
    "CapabilityError",
    "CryptoError",
    "FormatError",
    "HelixError",
    "IntegrityError",
    "KeyServiceError",
    "NetworkError",
    "NotFoundError",
    "NotificationError",
    "QuotaExceededError",
    "RateLimitError",
    "ResumeInvalidError",
    "RetryExhaustedError",
    "TransferError",
    "ValidationError",
    # Types
    "Capability",
    "PollerState",
    "TransferDirection",
    "TransferState",
]
