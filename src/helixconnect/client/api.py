"""HTTP clients for the remote Helix services.

This module provides:
- ObjectStorage, KeyService, NotificationQueue: Boundary protocols
- HTTPClient: Shared httpx transport with error mapping
- StorageClient: Chunked object storage (put/get chunk, manifests)
- KeyServiceClient: Key-management wrap/unwrap
- QueueClient: Long-poll receive and acknowledge
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from helixconnect.core.config import ServerConfig
from helixconnect.core.errors import (
    AuthenticationError,
    AuthorizationError,
    FormatError,
    HelixError,
    KeyServiceError,
    NetworkError,
    NotFoundError,
    QuotaExceededError,
    RateLimitError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Extra HTTP timeout on top of the server-side long-poll wait
LONG_POLL_GRACE = 10.0


@dataclass
class Manifest:
    """Object metadata from storage."""

    size: int
    chunk_count: int
    chunk_checksums: list[str]
    chunk_size: int | None = None

    def __post_init__(self) -> None:
        if self.chunk_count != len(self.chunk_checksums):
            raise FormatError(
                f"Manifest lists {len(self.chunk_checksums)} checksums "
                f"for {self.chunk_count} chunks"
            )
        if self.size < 0:
            raise FormatError(f"Manifest has negative size {self.size}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        """Create from API response dictionary."""
        try:
            return cls(
                size=int(data["size"]),
                chunk_count=int(data["chunkCount"]),
                chunk_checksums=list(data["chunkChecksums"]),
                chunk_size=data.get("chunkSize"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FormatError(f"Invalid manifest: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Convert to API request dictionary."""
        data: dict[str, Any] = {
            "size": self.size,
            "chunkCount": self.chunk_count,
            "chunkChecksums": self.chunk_checksums,
        }
        if self.chunk_size is not None:
            data["chunkSize"] = self.chunk_size
        return data


@dataclass
class QueueMessage:
    """Raw message from the notification queue."""

    message_id: str
    receipt_handle: str
    body: dict[str, Any]
    sent_at: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueMessage:
        """Create from API response dictionary."""
        try:
            return cls(
                message_id=data["messageId"],
                receipt_handle=data["receiptHandle"],
                body=dict(data["body"]),
                sent_at=data.get("sentAt"),
                attributes=dict(data.get("attributes") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FormatError(f"Invalid queue message: {e}") from e


class ObjectStorage(Protocol):
    """Object-storage boundary."""

    def put_chunk(self, object_id: str, index: int, data: bytes) -> None: ...

    def get_chunk(self, object_id: str, index: int) -> bytes: ...

    def get_manifest(self, object_id: str) -> Manifest: ...

    def put_manifest(self, object_id: str, manifest: Manifest) -> None: ...


class KeyService(Protocol):
    """Key-management boundary."""

    def wrap(self, plaintext_key: bytes) -> bytes: ...

    def unwrap(self, wrapped_key: bytes) -> bytes: ...


class NotificationQueue(Protocol):
    """Notification-queue boundary."""

    def receive(self, max_messages: int, wait_seconds: int) -> list[QueueMessage]: ...

    def acknowledge(self, receipt_handle: str) -> bool: ...


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not used by the Helix services
        return None


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body)
    return str(body)


class HTTPClient:
    """Base HTTP client for a Helix service."""

    def __init__(self, config: ServerConfig, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the HTTP client.

        Args:
            config: Server configuration with URL, token, and settings.
            transport: Optional httpx transport (connection pooling is per instance).
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            headers={"Authorization": f"Bearer {config.token}"},
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def config(self) -> ServerConfig:
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to NetworkError."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {url} timed out", retryable=True) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url} failed: {e}", retryable=True) from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status < 400:
            return response
        detail = _detail(response)
        if status == 401:
            raise AuthenticationError(detail, status_code=status)
        if status == 403:
            raise AuthorizationError(detail, status_code=status)
        if status == 404:
            raise NotFoundError(detail, status_code=status)
        if status in (400, 422):
            raise ValidationError(detail, status_code=status)
        if status in (413, 507):
            raise QuotaExceededError(detail, status_code=status)
        if status == 429:
            raise RateLimitError(
                detail,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                status_code=status,
            )
        if status >= 500:
            raise NetworkError(detail, retryable=True, status_code=status)
        raise HelixError(detail, status_code=status)


class StorageClient(HTTPClient):
    """Chunked object storage client."""

    def put_chunk(self, object_id: str, index: int, data: bytes) -> None:
        """Upload one sealed chunk.

        Args:
            object_id: Object identifier.
            index: Chunk index.
            data: Sealed envelope bytes.
        """
        self._request(
            "PUT",
            f"/objects/{object_id}/chunks/{index}",
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    def get_chunk(self, object_id: str, index: int) -> bytes:
        """Download one sealed chunk.

        Raises:
            NotFoundError: If the chunk does not exist.
        """
        return self._request("GET", f"/objects/{object_id}/chunks/{index}").content

    def get_manifest(self, object_id: str) -> Manifest:
        """Get size and chunk manifest of an object.

        Raises:
            NotFoundError: If the object does not exist.
            FormatError: If the manifest is malformed.
        """
        response = self._request("GET", f"/objects/{object_id}/manifest")
        try:
            data = response.json()
        except ValueError as e:
            raise FormatError(f"Manifest for {object_id} is not JSON") from e
        return Manifest.from_dict(data)

    def put_manifest(self, object_id: str, manifest: Manifest) -> None:
        """Commit the manifest once all chunks are stored."""
        self._request("PUT", f"/objects/{object_id}/manifest", json=manifest.to_dict())


class KeyServiceClient(HTTPClient):
    """Key-management service client.

    Failure modes map to AccessDenied -> AuthorizationError,
    KeyNotFound -> KeyServiceError and Throttled -> RateLimitError.
    """

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        if response.status_code == 404:
            raise KeyServiceError(f"KeyNotFound: {_detail(response)}", status_code=404)
        return super()._handle_response(response)

    def _post_key(self, url: str, field_in: str, field_out: str, value: bytes) -> bytes:
        response = self._request(
            "POST", url, json={field_in: base64.b64encode(value).decode()}
        )
        try:
            return base64.b64decode(response.json()[field_out], validate=True)
        except (KeyError, TypeError, ValueError) as e:
            raise KeyServiceError(f"Malformed key service response: {e}") from e

    def wrap(self, plaintext_key: bytes) -> bytes:
        """Wrap a data key.

        Returns:
            Opaque wrapped-key blob.
        """
        return self._post_key("/keys/wrap", "plaintext", "ciphertextBlob", bytes(plaintext_key))

    def unwrap(self, wrapped_key: bytes) -> bytes:
        """Unwrap a data key.

        Returns:
            The plaintext data key.
        """
        return self._post_key("/keys/unwrap", "ciphertextBlob", "plaintext", wrapped_key)


class QueueClient(HTTPClient):
    """Notification queue client."""

    def receive(self, max_messages: int, wait_seconds: int) -> list[QueueMessage]:
        """Long-poll for messages.

        The request blocks server-side up to wait_seconds and returns as
        soon as messages exist.

        Returns:
            Messages received (empty on timeout).
        """
        response = self._request(
            "GET",
            "/queue/messages",
            params={"maxMessages": str(max_messages), "waitSeconds": str(wait_seconds)},
            timeout=max(self._config.timeout, wait_seconds + LONG_POLL_GRACE),
        )
        try:
            data = response.json()
        except ValueError as e:
            raise FormatError(f"Invalid queue response: {e}") from e
        messages = data.get("messages", []) if isinstance(data, dict) else None
        if not isinstance(messages, list):
            raise FormatError("Invalid queue response: expected a messages list")
        return [QueueMessage.from_dict(m) for m in messages]

    def acknowledge(self, receipt_handle: str) -> bool:
        """Delete a message using its receipt handle.

        Returns:
            True if consumed, False if the handle was stale (message redelivers).
        """
        try:
            self._request("POST", "/queue/acknowledge", json={"receiptHandle": receipt_handle})
        except NotFoundError:
            return False
        except HelixError as e:
            if e.details.get("status_code") == 410:
                return False
            raise
        return True
