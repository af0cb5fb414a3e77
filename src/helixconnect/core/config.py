"""Configuration classes for helixconnect.

This module defines:
- ServerConfig: Connection settings for one remote service
- CapabilityConfig: Tunables for codec, transfers, retries and the listener
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from helixconnect.core.chunking import DEFAULT_CHUNK_SIZE, MAX_CHUNK_SIZE, MIN_CHUNK_SIZE
from helixconnect.core.codec import (
    DEFAULT_COMPRESSION_LEVEL,
    MAX_COMPRESSION_LEVEL,
    MIN_COMPRESSION_LEVEL,
)
from helixconnect.core.errors import ValidationError

# Long-poll waits are capped server-side at 20 seconds
MAX_POLL_WAIT_SECONDS = 20


@dataclass
class ServerConfig:
    """Configuration for connecting to a remote Helix service.

    Attributes:
        server_url: Base URL of the service (e.g., "https://api.helix.tools").
        token: Bearer token attached to every request.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


# camelCase option names accepted by CapabilityConfig.from_dict
_ALIASES = {
    "compressionLevel": "compression_level",
    "chunkSizeBytes": "chunk_size_bytes",
    "maxRetries": "max_retries",
    "backoffBaseMs": "backoff_base_ms",
    "backoffCapMs": "backoff_cap_ms",
    "pollWaitSeconds": "poll_wait_seconds",
    "autoDownload": "auto_download",
    "outputDirectory": "output_directory",
    "maxWorkers": "max_workers",
    "dedupWindow": "dedup_window",
    "integrityRefetches": "integrity_refetches",
    "maxMessages": "max_messages",
}


@dataclass
class CapabilityConfig:
    """Tunables shared by one client's codec, transfer engine and poller.

    Attributes:
        compression_level: DEFLATE level 1-9 (lower favors latency, higher size).
        chunk_size_bytes: Upload chunk size.
        max_retries: Retries after the first attempt for retryable errors.
        backoff_base_ms: First backoff delay.
        backoff_cap_ms: Ceiling for any backoff delay.
        poll_wait_seconds: Long-poll wait per receive call.
        auto_download: Listener downloads the dataset before the callback.
        output_directory: Where listener downloads land.
        max_workers: Chunk worker pool size per transfer.
        dedup_window: Number of recent event ids remembered.
        integrity_refetches: Re-fetches of a chunk whose checksum mismatches.
        max_messages: Messages requested per long-poll.
    """

    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    chunk_size_bytes: int = DEFAULT_CHUNK_SIZE
    max_retries: int = 4
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 30000
    poll_wait_seconds: int = MAX_POLL_WAIT_SECONDS
    auto_download: bool = False
    output_directory: Path = field(default_factory=lambda: Path("."))
    max_workers: int = 4
    dedup_window: int = 1024
    integrity_refetches: int = 2
    max_messages: int = 10

    def __post_init__(self) -> None:
        """Validate ranges and normalize types."""
        self.output_directory = Path(self.output_directory)
        if not MIN_COMPRESSION_LEVEL <= self.compression_level <= MAX_COMPRESSION_LEVEL:
            raise ValidationError(
                f"compression_level must be {MIN_COMPRESSION_LEVEL}-{MAX_COMPRESSION_LEVEL}",
                option="compression_level",
            )
        if not MIN_CHUNK_SIZE <= self.chunk_size_bytes <= MAX_CHUNK_SIZE:
            raise ValidationError(
                f"chunk_size_bytes must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE}",
                option="chunk_size_bytes",
            )
        if self.backoff_base_ms < 0 or self.backoff_cap_ms < self.backoff_base_ms:
            raise ValidationError(
                "backoff_cap_ms must be >= backoff_base_ms >= 0", option="backoff_cap_ms"
            )
        if not 0 <= self.poll_wait_seconds <= MAX_POLL_WAIT_SECONDS:
            raise ValidationError(
                f"poll_wait_seconds must be 0-{MAX_POLL_WAIT_SECONDS}", option="poll_wait_seconds"
            )
        for name in ("max_retries", "integrity_refetches"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} must be >= 0", option=name)
        for name in ("max_workers", "dedup_window", "max_messages"):
            if getattr(self, name) < 1:
                raise ValidationError(f"{name} must be >= 1", option=name)

    @property
    def backoff_base(self) -> float:
        """Backoff base in seconds."""
        return self.backoff_base_ms / 1000

    @property
    def backoff_cap(self) -> float:
        """Backoff ceiling in seconds."""
        return self.backoff_cap_ms / 1000

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> CapabilityConfig:
        """Build from a mapping of camelCase or snake_case option names.

        Raises:
            ValidationError: On unknown options or out-of-range values.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in options.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ValidationError(f"Unknown option: {key}", option=key)
            kwargs[name] = value
        return cls(**kwargs)
