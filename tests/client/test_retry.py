"""Tests for RetryPolicy backoff and classification."""

import random
import threading

import pytest

from helixconnect.client.retry import ErrorClass, RetryPolicy, classify
from helixconnect.core import (
    AuthenticationError,
    AuthorizationError,
    CancelledError,
    CapabilityConfig,
    FormatError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RetryExhaustedError,
    ValidationError,
)


class FlakyOperation:
    """Fails with the given errors, then returns 'ok'."""

    def __init__(self, *errors: Exception) -> None:
        self._errors = list(errors)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return "ok"


class TestClassify:
    """Tests for error classification."""

    @pytest.mark.parametrize(
        "error",
        [
            NetworkError("timeout"),
            NetworkError("bad gateway", status_code=502),
            RateLimitError("throttled"),
            ConnectionError("reset"),
            TimeoutError("slow"),
        ],
    )
    def test_retryable(self, error: Exception) -> None:
        assert classify(error) is ErrorClass.RETRYABLE

    @pytest.mark.parametrize(
        "error",
        [
            AuthenticationError("bad token"),
            AuthorizationError("AccessDenied"),
            NotFoundError("gone"),
            ValidationError("bad"),
            IntegrityError("tampered"),
            FormatError("garbage"),
            NetworkError("refused", retryable=False),
            RuntimeError("bug"),
        ],
    )
    def test_terminal(self, error: Exception) -> None:
        assert classify(error) is ErrorClass.TERMINAL


class TestBackoff:
    """Tests for delay computation."""

    def test_never_exceeds_cap(self) -> None:
        """No proposed delay should exceed the cap, whatever the jitter."""
        policy = RetryPolicy(max_retries=20, backoff_base=1.0, backoff_cap=30.0, rng=random.Random(7))
        for attempt in range(1, 21):
            for _ in range(50):
                assert 0.0 <= policy.backoff(attempt) <= 30.0

    def test_grows_exponentially_within_jitter(self) -> None:
        """Delay for attempt n stays within +/-25% of base * 2^(n-1)."""
        policy = RetryPolicy(backoff_base=1.0, backoff_cap=100.0, rng=random.Random(1))
        for attempt, nominal in [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0)]:
            delay = policy.backoff(attempt)
            assert nominal * 0.75 <= delay <= nominal * 1.25

    def test_retry_after_hint_wins(self) -> None:
        """A server retry-after hint replaces the computed delay."""
        policy = RetryPolicy(backoff_base=1.0, backoff_cap=30.0)
        decision = policy.should_retry(1, RateLimitError("throttled", retry_after=7.0))
        assert decision.retry
        assert decision.delay == 7.0

    def test_retry_after_hint_is_capped(self) -> None:
        policy = RetryPolicy(backoff_base=1.0, backoff_cap=30.0)
        decision = policy.should_retry(1, RateLimitError("throttled", retry_after=600.0))
        assert decision.delay == 30.0

    def test_terminal_never_retried(self) -> None:
        policy = RetryPolicy(max_retries=10)
        assert not policy.should_retry(1, AuthorizationError("AccessDenied")).retry

    def test_stops_after_max_retries(self) -> None:
        policy = RetryPolicy(max_retries=2)
        assert policy.should_retry(2, NetworkError("x")).retry
        assert not policy.should_retry(3, NetworkError("x")).retry

    def test_invalid_bounds(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(backoff_base=5.0, backoff_cap=1.0)


class TestCall:
    """Tests for RetryPolicy.call."""

    def test_recovers_from_transient_errors(self) -> None:
        sleeps: list[float] = []
        policy = RetryPolicy(max_retries=3, sleep=sleeps.append, rng=random.Random(0))
        operation = FlakyOperation(NetworkError("a"), NetworkError("b"))

        assert policy.call(operation) == "ok"
        assert operation.calls == 3
        assert len(sleeps) == 2

    def test_exhaustion_raises(self) -> None:
        """A persistent retryable error ends in RetryExhaustedError."""
        policy = RetryPolicy(max_retries=2, sleep=lambda _: None)
        operation = FlakyOperation(*[NetworkError("down")] * 5)

        with pytest.raises(RetryExhaustedError) as exc_info:
            policy.call(operation)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, NetworkError)
        assert operation.calls == 3

    def test_terminal_raised_unchanged(self) -> None:
        policy = RetryPolicy(max_retries=5, sleep=lambda _: None)
        operation = FlakyOperation(NotFoundError("gone"))

        with pytest.raises(NotFoundError):
            policy.call(operation)
        assert operation.calls == 1

    def test_on_retry_reports_attempts(self) -> None:
        seen: list[int] = []
        policy = RetryPolicy(max_retries=3, sleep=lambda _: None)
        policy.call(FlakyOperation(NetworkError("a"), NetworkError("b")), on_retry=lambda n, e: seen.append(n))
        assert seen == [1, 2]

    def test_cancel_before_first_attempt(self) -> None:
        cancel = threading.Event()
        cancel.set()
        operation = FlakyOperation()

        with pytest.raises(CancelledError):
            RetryPolicy().call(operation, cancel=cancel)
        assert operation.calls == 0

    def test_cancel_interrupts_backoff(self) -> None:
        """Setting cancel during a backoff wait aborts promptly."""
        cancel = threading.Event()
        policy = RetryPolicy(max_retries=3, backoff_base=60.0, backoff_cap=60.0)

        def fail_then_cancel() -> str:
            threading.Timer(0.05, cancel.set).start()
            raise NetworkError("down")

        with pytest.raises(CancelledError):
            policy.call(fail_then_cancel, cancel=cancel)

    def test_from_config(self) -> None:
        policy = RetryPolicy.from_config(CapabilityConfig(max_retries=1, backoff_base_ms=10, backoff_cap_ms=20))
        assert policy.max_retries == 1
        assert policy.backoff_base == 0.01
        assert policy.backoff_cap == 0.02
