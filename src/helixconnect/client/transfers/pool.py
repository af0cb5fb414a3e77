"""Bounded worker pool for chunk transfers.

This module provides:
- ChunkPool: Runs per-chunk tasks on a bounded thread pool with a window
  limiting chunks in flight, stopping on the first failure or on cancellation
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

# Seconds between stop checks while waiting for a free slot
SLOT_POLL_INTERVAL = 0.1


class ChunkPool:
    """Bounded pool for the chunk tasks of one transfer.

    At most ``window`` chunks are in flight. With ``auto_release`` a slot is
    freed when its task returns; otherwise the owner frees slots explicitly
    through release() (used by downloads, where a chunk holds its slot until
    it has been written in order).

    Usage:
        with ChunkPool(max_workers=4, cancel=cancel) as pool:
            for chunk in chunks:
                if not pool.submit(chunk.index, upload_one, chunk):
                    break
        failure = pool.failure
    """

    def __init__(
        self,
        max_workers: int,
        window: int | None = None,
        cancel: threading.Event | None = None,
        auto_release: bool = True,
        name: str = "ChunkPool",
    ) -> None:
        """Initialize the pool.

        Args:
            max_workers: Worker threads (the I/O throttle).
            window: Maximum chunks in flight. Defaults to twice max_workers.
            cancel: Caller cancellation signal.
            auto_release: Free a slot as soon as its task returns.
            name: Thread name prefix.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._window = window or max_workers * 2
        if self._window < max_workers:
            raise ValueError("window must be >= max_workers")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._slots = threading.Semaphore(self._window)
        self._cancel = cancel
        self._auto_release = auto_release
        self._failed = threading.Event()
        self._lock = threading.Lock()
        self._failure: tuple[int, BaseException] | None = None

    @property
    def stopped(self) -> bool:
        """True once a task failed or the caller cancelled."""
        return self._failed.is_set() or (self._cancel is not None and self._cancel.is_set())

    @property
    def failure(self) -> tuple[int, BaseException] | None:
        """(chunk index, error) of the first failed task."""
        with self._lock:
            return self._failure

    def submit(self, index: int, func: Callable[..., Any], *args: Any) -> bool:
        """Queue a chunk task once a slot is free.

        Returns:
            False if the pool stopped before the task could be queued.
        """
        while not self._slots.acquire(timeout=SLOT_POLL_INTERVAL):
            if self.stopped:
                return False
        if self.stopped:
            self._slots.release()
            return False
        self._executor.submit(self._run, index, func, args)
        return True

    def release(self) -> None:
        """Free one slot (when auto_release is off)."""
        self._slots.release()

    def fail(self, index: int, error: BaseException) -> None:
        """Record a failure and stop accepting work."""
        with self._lock:
            if self._failure is None:
                self._failure = (index, error)
        self._failed.set()

    def _run(self, index: int, func: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            if self.stopped:
                return
            func(*args)
        except Exception as e:
            logger.debug(f"Chunk {index} task failed: {e}")
            self.fail(index, e)
        finally:
            if self._auto_release:
                self._slots.release()

    def join(self) -> None:
        """Wait for running tasks; queued tasks are dropped if the pool stopped."""
        self._executor.shutdown(wait=True, cancel_futures=self.stopped)

    def __enter__(self) -> ChunkPool:
        return self

    def __exit__(self, *args: object) -> None:
        self.join()
