"""Error taxonomy for Helix Connect.

This module provides:
- HelixError: Base exception carrying a stable ``kind`` and structured details
- Terminal errors (authentication, authorization, not found, validation)
- Integrity and format errors raised by the envelope codec
- Transport errors (network, rate limiting) consumed by RetryPolicy
- Wrapper errors adding retry and transfer context
"""

from __future__ import annotations

from typing import Any


class HelixError(Exception):
    """Base exception for all Helix Connect errors.

    Attributes:
        kind: Stable error kind for programmatic branching.
        details: Structured context (identifiers, status codes, hints).
    """

    kind = "helix_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details


class AuthenticationError(HelixError):
    """Credentials were rejected."""

    kind = "authentication"


class AuthorizationError(HelixError):
    """Credentials are valid but lack permission (AccessDenied)."""

    kind = "authorization"


class CapabilityError(AuthorizationError):
    """The facade does not hold the requested operation group."""

    kind = "capability"


class NotFoundError(HelixError):
    """Remote resource not found."""

    kind = "not_found"


class ValidationError(HelixError, ValueError):
    """Request or configuration rejected as invalid."""

    kind = "validation"


class IntegrityError(HelixError):
    """Authentication tag or checksum mismatch."""

    kind = "integrity"


class FormatError(HelixError):
    """Structurally invalid envelope, manifest, or message."""

    kind = "format"


class ResumeInvalidError(HelixError):
    """Resume token no longer matches the remote state."""

    kind = "resume_invalid"


class CryptoError(HelixError):
    """Random generation or key material failure."""

    kind = "crypto"


class KeyServiceError(HelixError):
    """Key-management service failure (e.g. KeyNotFound)."""

    kind = "key_service"


class QuotaExceededError(HelixError):
    """Storage or transfer quota exhausted."""

    kind = "quota_exceeded"


class NetworkError(HelixError):
    """Transport-level failure.

    Attributes:
        retryable: Whether the failure is transient.
        status_code: HTTP status if the server answered.
    """

    kind = "network"

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: int | None = None,
        **details: Any,
    ) -> None:
        super().__init__(message, status_code=status_code, **details)
        self.retryable = retryable
        self.status_code = status_code


class RateLimitError(HelixError):
    """Server asked the client to slow down.

    Attributes:
        retry_after: Server-provided delay hint in seconds, if any.
    """

    kind = "rate_limit"

    def __init__(self, message: str, retry_after: float | None = None, **details: Any) -> None:
        super().__init__(message, retry_after=retry_after, **details)
        self.retry_after = retry_after


class CancelledError(HelixError):
    """Operation aborted through its cancellation signal."""

    kind = "cancelled"


class RetryExhaustedError(HelixError):
    """A retryable error persisted past the attempt limit."""

    kind = "retry_exhausted"

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}",
            attempts=attempts,
        )
        self.last_error = last_error
        self.attempts = attempts


class TransferError(HelixError):
    """Failure of an upload or download, with transfer context.

    ``kind`` mirrors the underlying error so callers can branch on the
    cause without unwrapping.

    Attributes:
        object_id: Object being transferred.
        chunk_index: Chunk that failed, if the failure is chunk-scoped.
        resume_token: Token valid at failure time (None if nothing was acknowledged).
        cause: The wrapped error.
    """

    def __init__(
        self,
        object_id: str,
        cause: BaseException,
        chunk_index: int | None = None,
        resume_token: str | None = None,
    ) -> None:
        where = f"chunk {chunk_index} of {object_id}" if chunk_index is not None else object_id
        super().__init__(
            f"Transfer of {where} failed: {cause}",
            object_id=object_id,
            chunk_index=chunk_index,
        )
        self.object_id = object_id
        self.chunk_index = chunk_index
        self.resume_token = resume_token
        self.cause = cause

    @property
    def kind(self) -> str:  # type: ignore[override]
        cause = self.cause
        if isinstance(cause, RetryExhaustedError):
            cause = cause.last_error
        return getattr(cause, "kind", "unknown")


class NotificationError(HelixError):
    """A notification could not be processed by the listener.

    Reported through the listener's ``on_error`` callback; the triggering
    message is left unacknowledged so the queue redelivers it.
    """

    kind = "notification"

    def __init__(self, record: Any, cause: BaseException) -> None:
        super().__init__(
            f"Failed to process event {record.event_id}: {cause}",
            event_id=record.event_id,
            dataset_id=record.dataset_id,
        )
        self.record = record
        self.cause = cause
