"""Tests for KeyWrapClient."""

from unittest.mock import MagicMock

import pytest

from helixconnect.client.keywrap import KeyWrapClient
from helixconnect.client.retry import RetryPolicy
from helixconnect.core import (
    AuthorizationError,
    KeyServiceError,
    NetworkError,
    RateLimitError,
)
from tests.fakes import FakeKeyService

DATA_KEY = bytes(range(32))


class TestKeyWrapClient:
    """Tests for wrap/unwrap with retry."""

    def test_wrap_unwrap(self, key_wrap: KeyWrapClient) -> None:
        wrapped = key_wrap.wrap(DATA_KEY)
        unwrapped = key_wrap.unwrap(wrapped)
        assert isinstance(unwrapped, bytearray)
        assert bytes(unwrapped) == DATA_KEY

    def test_throttling_is_retried(self, key_wrap: KeyWrapClient, key_service: FakeKeyService) -> None:
        """Throttled calls succeed once the service recovers."""
        key_service.failures.add("wrap", RateLimitError("Throttled"), RateLimitError("Throttled"))
        assert key_wrap.wrap(DATA_KEY)
        assert key_service.wrap_calls == 3

    def test_access_denied_fails_fast(self, key_wrap: KeyWrapClient, key_service: FakeKeyService) -> None:
        key_service.failures.add("unwrap", AuthorizationError("AccessDenied"))
        wrapped = key_wrap.wrap(DATA_KEY)

        with pytest.raises(AuthorizationError):
            key_wrap.unwrap(wrapped)
        assert key_service.unwrap_calls == 1

    def test_exhaustion_becomes_key_service_error(self, key_service: FakeKeyService) -> None:
        client = KeyWrapClient(key_service, RetryPolicy(max_retries=1, backoff_base=0.0, backoff_cap=0.0))
        key_service.failures.add("wrap", NetworkError("down"), NetworkError("down"))

        with pytest.raises(KeyServiceError) as exc_info:
            client.wrap(DATA_KEY)
        assert exc_info.value.details["attempts"] == 2

    def test_key_not_found(self, key_wrap: KeyWrapClient) -> None:
        """Unwrapping a blob the service never issued fails."""
        with pytest.raises(KeyServiceError):
            key_wrap.unwrap(b"\x00" * 60)

    def test_empty_wrapped_key(self, retry_policy: RetryPolicy) -> None:
        """An empty blob from the service is rejected."""
        service = MagicMock()
        service.wrap.return_value = b""

        with pytest.raises(KeyServiceError):
            KeyWrapClient(service, retry_policy).wrap(DATA_KEY)
        service.wrap.assert_called_once_with(DATA_KEY)

    def test_rejects_wrong_key_size(self, key_wrap: KeyWrapClient) -> None:
        with pytest.raises(KeyServiceError):
            key_wrap.wrap(b"short")

    def test_no_caching(self, key_wrap: KeyWrapClient, key_service: FakeKeyService) -> None:
        """Every unwrap reaches the service."""
        wrapped = key_wrap.wrap(DATA_KEY)
        for _ in range(3):
            key_wrap.unwrap(wrapped)
        assert key_service.unwrap_calls == 3
