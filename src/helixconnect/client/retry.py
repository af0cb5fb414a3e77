"""Retry policy with exponential backoff, jitter and error classification.

This module provides:
- ErrorClass: Retryable vs. terminal classification
- RetryDecision: Result of RetryPolicy.should_retry
- RetryPolicy: Shared backoff decision function and a call() helper
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, TypeVar

from helixconnect.core.errors import (
    CancelledError,
    NetworkError,
    RateLimitError,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 4
DEFAULT_BACKOFF_BASE = 1.0  # seconds
DEFAULT_BACKOFF_CAP = 30.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_JITTER = 0.25  # +/- 25%

# Builtin exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
)


class ErrorClass(Enum):
    """Retry classification of an error."""

    RETRYABLE = auto()
    TERMINAL = auto()


@dataclass(frozen=True)
class RetryDecision:
    """Whether to retry and how long to wait first."""

    retry: bool
    delay: float = 0.0


def classify(error: BaseException) -> ErrorClass:
    """Classify an error for retry purposes.

    Network timeouts, 5xx responses and rate limiting are retryable.
    Everything else (authentication, authorization, not found, validation,
    integrity, format) is terminal.
    """
    if isinstance(error, RateLimitError):
        return ErrorClass.RETRYABLE
    if isinstance(error, NetworkError):
        return ErrorClass.RETRYABLE if error.retryable else ErrorClass.TERMINAL
    if isinstance(error, NETWORK_EXCEPTIONS):
        return ErrorClass.RETRYABLE
    return ErrorClass.TERMINAL


class RetryPolicy:
    """Backoff/jitter decisions shared by transfers, key wrapping and polling.

    Each component holds its own instance; instances carry no state beyond
    configuration and their random source.

    Usage:
        policy = RetryPolicy(max_retries=3)
        result = policy.call(lambda: client.get_chunk(object_id, 3))
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_cap: float = DEFAULT_BACKOFF_CAP,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        jitter: float = DEFAULT_JITTER,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the policy.

        Args:
            max_retries: Maximum retries after the first attempt.
            backoff_base: Delay before the first retry, in seconds.
            backoff_cap: Ceiling for any proposed delay, in seconds.
            backoff_multiplier: Growth factor per attempt.
            jitter: Symmetric jitter fraction (0.25 means +/-25%).
            rng: Random source for jitter.
            sleep: Sleep function used when no cancellation event is given.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if backoff_base < 0 or backoff_cap < backoff_base:
            raise ValueError("backoff_cap must be >= backoff_base >= 0")
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Any) -> RetryPolicy:
        """Build from a CapabilityConfig."""
        return cls(
            max_retries=config.max_retries,
            backoff_base=config.backoff_base,
            backoff_cap=config.backoff_cap,
        )

    def backoff(self, attempt: int) -> float:
        """Jittered exponential delay for the given failed attempt (1-based)."""
        delay = self.backoff_base * self.backoff_multiplier ** (attempt - 1)
        delay = min(delay, self.backoff_cap)
        delay *= 1 + self._rng.uniform(-self.jitter, self.jitter)
        return max(0.0, min(delay, self.backoff_cap))

    def should_retry(self, attempt: int, error: BaseException) -> RetryDecision:
        """Decide whether a failed attempt should be retried.

        Args:
            attempt: Number of attempts made so far (1 after the first failure).
            error: The error raised by the last attempt.

        Returns:
            RetryDecision; delay never exceeds backoff_cap.
        """
        if classify(error) is ErrorClass.TERMINAL:
            return RetryDecision(retry=False)
        if attempt > self.max_retries:
            return RetryDecision(retry=False)

        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return RetryDecision(retry=True, delay=max(0.0, min(float(retry_after), self.backoff_cap)))
        return RetryDecision(retry=True, delay=self.backoff(attempt))

    def call(
        self,
        func: Callable[[], T],
        cancel: threading.Event | None = None,
        description: str = "operation",
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute func, retrying per this policy.

        Args:
            func: Zero-argument callable to execute.
            cancel: Cancellation signal checked before each attempt and
                during backoff waits.
            description: Label used in log messages.
            on_retry: Called with (attempt, error) before each retry wait.

        Returns:
            Result of func.

        Raises:
            CancelledError: If cancel was set.
            RetryExhaustedError: If a retryable error persisted past max_retries.
            Exception: Terminal errors, unchanged.
        """
        attempt = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise CancelledError(f"{description} cancelled")
            try:
                return func()
            except Exception as e:
                attempt += 1
                decision = self.should_retry(attempt, e)
                if not decision.retry:
                    if classify(e) is ErrorClass.RETRYABLE:
                        logger.error(f"{description}: all {self.max_retries} retries failed: {e}")
                        raise RetryExhaustedError(e, attempt) from e
                    raise

                logger.warning(
                    f"{description}: attempt {attempt}/{self.max_retries + 1} failed: {e}. "
                    f"Retrying in {decision.delay:.1f}s..."
                )
                if on_retry:
                    on_retry(attempt, e)
                self._wait(decision.delay, cancel, description)

    def _wait(self, delay: float, cancel: threading.Event | None, description: str) -> None:
        if cancel is None:
            self._sleep(delay)
        elif cancel.wait(delay):
            raise CancelledError(f"{description} cancelled")
