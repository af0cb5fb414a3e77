"""Key wrapping through the key-management service.

This module provides:
- KeyWrapClient: Retried wrap/unwrap of per-object data keys
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from helixconnect.client.retry import RetryPolicy
from helixconnect.core.envelope import KEY_SIZE
from helixconnect.core.errors import (
    AuthenticationError,
    AuthorizationError,
    CancelledError,
    HelixError,
    KeyServiceError,
    RetryExhaustedError,
)

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

    from helixconnect.client.api import KeyService

logger = logging.getLogger(__name__)


class KeyWrapClient:
    """Wraps and unwraps data keys with retry.

    Transient failures (throttling, network) are retried under the
    RetryPolicy. AccessDenied fails fast as AuthorizationError. Unwrapped
    keys are never cached: every call reaches the service.
    """

    def __init__(
        self,
        service: KeyService,
        retry_policy: RetryPolicy | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            service: Key-management boundary (e.g. KeyServiceClient).
            retry_policy: Policy for transient failures.
            cancel: Cancellation signal honored during retry waits.
        """
        self._service = service
        self._retry = retry_policy or RetryPolicy()
        self._cancel = cancel

    def wrap(self, data_key: bytes | bytearray, cancel: threading.Event | None = None) -> bytes:
        """Wrap a data key.

        Args:
            data_key: Plaintext data key.
            cancel: Cancellation signal for this call (defaults to the client's).

        Raises:
            AuthorizationError: On AccessDenied (not retried).
            KeyServiceError: On any other key-service failure.
        """
        if len(data_key) != KEY_SIZE:
            raise KeyServiceError(f"Data key must be {KEY_SIZE} bytes, got {len(data_key)}")
        wrapped = self._call(lambda: self._service.wrap(bytes(data_key)), "wrap", cancel)
        if not wrapped:
            raise KeyServiceError("Key service returned an empty wrapped key")
        return bytes(wrapped)

    def unwrap(self, wrapped_key: bytes, cancel: threading.Event | None = None) -> bytearray:
        """Unwrap a data key.

        Returns:
            The plaintext key in a mutable buffer the caller can zero.

        Raises:
            AuthorizationError: On AccessDenied (not retried).
            CancelledError: If cancel is set before or between attempts.
            KeyServiceError: On any other key-service failure.
        """
        return bytearray(self._call(lambda: self._service.unwrap(wrapped_key), "unwrap", cancel))

    def _call(
        self, func: Callable[[], bytes], operation: str, cancel: threading.Event | None
    ) -> bytes:
        try:
            return self._retry.call(
                func,
                cancel=self._cancel if cancel is None else cancel,
                description=f"key {operation}",
            )
        except (AuthorizationError, AuthenticationError, KeyServiceError, CancelledError):
            raise
        except RetryExhaustedError as e:
            raise KeyServiceError(
                f"Key {operation} failed after {e.attempts} attempts: {e.last_error}",
                attempts=e.attempts,
            ) from e
        except HelixError as e:
            raise KeyServiceError(f"Key {operation} failed: {e}") from e
