"""Tests for the error taxonomy."""

from helixconnect.core import (
    AuthorizationError,
    CapabilityError,
    HelixError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RetryExhaustedError,
    TransferError,
)


class TestHelixError:
    """Tests for base error behavior."""

    def test_details_are_kept(self) -> None:
        error = NotFoundError("missing", object_id="obj-1")
        assert error.kind == "not_found"
        assert error.details == {"object_id": "obj-1"}
        assert str(error) == "missing"

    def test_capability_error_is_authorization(self) -> None:
        """Capability checks are a kind of authorization failure."""
        assert issubclass(CapabilityError, AuthorizationError)
        assert CapabilityError("nope").kind == "capability"


class TestTransportErrors:
    """Tests for errors consumed by the retry policy."""

    def test_network_error_fields(self) -> None:
        error = NetworkError("bad gateway", status_code=502)
        assert error.retryable is True
        assert error.status_code == 502

    def test_rate_limit_hint(self) -> None:
        assert RateLimitError("slow down", retry_after=2.5).retry_after == 2.5


class TestTransferError:
    """Tests for TransferError context."""

    def test_kind_mirrors_cause(self) -> None:
        error = TransferError("obj-1", NotFoundError("gone"), chunk_index=3)
        assert error.kind == "not_found"
        assert error.chunk_index == 3
        assert "chunk 3 of obj-1" in str(error)

    def test_kind_unwraps_retry_exhaustion(self) -> None:
        """Exhausted retries report the last underlying error's kind."""
        exhausted = RetryExhaustedError(NetworkError("reset"), attempts=5)
        error = TransferError("obj-1", exhausted)
        assert error.kind == "network"
        assert isinstance(error, HelixError)
