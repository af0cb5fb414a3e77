"""Dataset-change notifications over a long-poll queue.

This module provides:
- NotificationRecord: A parsed dataset-change event
- DedupWindow: Bounded recent-history of event ids
- NotificationPoller: One-shot long-poll with deduplication and acknowledgement
- ListenerConfig / ListenerHandle: Continuous listener on a background thread

Architecture:
    Queue ─receive─► NotificationPoller ─dedup─► (TransferEngine.download) ─► callback
                            ▲                                                   │
                            └──────────── acknowledge (only on success) ◄───────┘

The queue delivers at least once. A message is acknowledged only after the
callback returns, so a failed download or callback leaves the message to be
redelivered once its visibility timeout expires.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING

from helixconnect.client.retry import RetryPolicy
from helixconnect.core.errors import (
    AuthenticationError,
    AuthorizationError,
    FormatError,
    HelixError,
    NotificationError,
)
from helixconnect.core.types import PollerState

if TYPE_CHECKING:
    from helixconnect.client.api import NotificationQueue, QueueMessage
    from helixconnect.client.transfers import TransferEngine
    from helixconnect.core.config import CapabilityConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 10
DEFAULT_WAIT_SECONDS = 20
DEFAULT_DEDUP_WINDOW = 1024

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class NotificationRecord:
    """A dataset-change event delivered by the queue.

    Attributes:
        event_id: Deduplication key (the same event may arrive twice).
        dataset_id: Dataset that changed.
        version: New dataset version.
        receipt_handle: Single-use token for acknowledging this delivery.
        delivered_at: When the queue delivered the message.
        object_id: Storage object holding the new version, if different
            from dataset_id.
    """

    event_id: str
    dataset_id: str
    version: int
    receipt_handle: str
    delivered_at: datetime
    object_id: str | None = None

    @property
    def target_object(self) -> str:
        """Storage object to download for this event."""
        return self.object_id or self.dataset_id

    @classmethod
    def from_message(cls, message: QueueMessage) -> NotificationRecord:
        """Parse a queue message.

        Raises:
            FormatError: If the body lacks required fields.
        """
        body = message.body
        try:
            delivered_at = (
                datetime.fromisoformat(message.sent_at)
                if message.sent_at
                else datetime.now(UTC)
            )
            return cls(
                event_id=str(body["eventId"]),
                dataset_id=str(body["datasetId"]),
                version=int(body["version"]),
                receipt_handle=message.receipt_handle,
                delivered_at=delivered_at,
                object_id=body.get("objectId"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FormatError(
                f"Invalid notification in message {message.message_id}: {e}",
                message_id=message.message_id,
            ) from e


def download_path(record: NotificationRecord, output_directory: Path) -> Path:
    """Local file for a dataset version under output_directory."""
    name = _UNSAFE_CHARS.sub("_", record.dataset_id).strip("._") or "dataset"
    return Path(output_directory) / f"{name}-v{record.version}"


class EventStatus(Enum):
    """Where an event id stands in the dedup window."""

    NEW = auto()
    IN_FLIGHT = auto()
    DONE = auto()


class DedupWindow:
    """Bounded recent-history of event ids.

    Tracks whether each remembered event is still being processed or has
    been acknowledged. The oldest ids are evicted once the window is full.
    """

    def __init__(self, max_size: int = DEFAULT_DEDUP_WINDOW) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._events: OrderedDict[str, EventStatus] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        with self._lock:
            return event_id in self._events

    def claim(self, event_id: str) -> EventStatus:
        """Register an event as in flight.

        Returns:
            NEW if the event was not in the window (now claimed), otherwise
            its existing status.
        """
        with self._lock:
            status = self._events.get(event_id)
            if status is not None:
                self._events.move_to_end(event_id)
                return status
            self._events[event_id] = EventStatus.IN_FLIGHT
            while len(self._events) > self._max_size:
                self._events.popitem(last=False)
            return EventStatus.NEW

    def complete(self, event_id: str) -> None:
        with self._lock:
            self._events[event_id] = EventStatus.DONE
            self._events.move_to_end(event_id)
            while len(self._events) > self._max_size:
                self._events.popitem(last=False)

    def forget(self, event_id: str) -> None:
        with self._lock:
            self._events.pop(event_id, None)


@dataclass
class PollerStats:
    """Counters of one poller."""

    received: int = 0
    duplicates: int = 0
    delivered: int = 0
    failed: int = 0
    malformed: int = 0


# Callback signature: (record, downloaded path or None)
NotificationCallback = Callable[[NotificationRecord, Path | None], None]
ErrorCallback = Callable[[HelixError], None]


@dataclass
class ListenerConfig:
    """Configuration of a continuous listener.

    Attributes:
        on_notification: Called per new event; raising leaves the message
            unacknowledged.
        on_error: Receives NotificationError and poll failures.
        auto_download: Download the dataset before the callback.
        output_directory: Destination for auto downloads.
        max_messages: Messages requested per long-poll.
        wait_seconds: Long-poll wait.
    """

    on_notification: NotificationCallback
    on_error: ErrorCallback | None = None
    auto_download: bool = False
    output_directory: Path = field(default_factory=lambda: Path("."))
    max_messages: int = DEFAULT_MAX_MESSAGES
    wait_seconds: int = DEFAULT_WAIT_SECONDS

    @classmethod
    def from_config(
        cls,
        config: CapabilityConfig,
        on_notification: NotificationCallback,
        on_error: ErrorCallback | None = None,
    ) -> ListenerConfig:
        """Build from a CapabilityConfig."""
        return cls(
            on_notification=on_notification,
            on_error=on_error,
            auto_download=config.auto_download,
            output_directory=config.output_directory,
            max_messages=config.max_messages,
            wait_seconds=config.poll_wait_seconds,
        )


class ListenerHandle:
    """Cancellation handle of a running listener.

    cancel() is idempotent and takes effect at the next loop boundary: an
    in-flight poll or delivery completes first.
    """

    def __init__(self) -> None:
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None
        self.error: HelixError | None = None

    def __call__(self) -> None:
        self.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def event(self) -> threading.Event:
        return self._cancel

    def cancel(self) -> None:
        """Request the listener to stop."""
        if not self._cancel.is_set():
            logger.info("Notification listener cancellation requested")
        self._cancel.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the listener thread to exit.

        Returns:
            True if the thread has exited.
        """
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.running


class NotificationPoller:
    """Long-polls the notification queue.

    Usage:
        poller = NotificationPoller(queue_client, transfer=engine)
        for record in poller.poll(max_messages=10, wait_seconds=20):
            handle(record)
            poller.acknowledge(record)

        handle = poller.start_listener(ListenerConfig(on_notification=callback))
        ...
        handle.cancel()
    """

    def __init__(
        self,
        queue: NotificationQueue,
        transfer: TransferEngine | None = None,
        retry_policy: RetryPolicy | None = None,
        dedup_window: int = DEFAULT_DEDUP_WINDOW,
    ) -> None:
        """Initialize the poller.

        Args:
            queue: Notification-queue boundary.
            transfer: Engine used for auto downloads.
            retry_policy: Policy for transient queue failures.
            dedup_window: Number of recent event ids remembered.
        """
        self._queue = queue
        self._transfer = transfer
        self._retry = retry_policy or RetryPolicy()
        self._window = DedupWindow(dedup_window)
        self._state = PollerState.IDLE
        self._lock = threading.Lock()
        self.stats = PollerStats()

    @property
    def state(self) -> PollerState:
        with self._lock:
            return self._state

    def _set_state(self, state: PollerState) -> None:
        with self._lock:
            self._state = state

    def _count(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self.stats, name, getattr(self.stats, name) + amount)

    def poll(
        self,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        wait_seconds: int = DEFAULT_WAIT_SECONDS,
        cancel: threading.Event | None = None,
    ) -> list[NotificationRecord]:
        """Issue one long-poll and return new events.

        Returns an empty list when the wait elapses with nothing to deliver.
        Duplicates of events already returned are filtered; a duplicate of
        an acknowledged event is acknowledged so the queue drains.

        Args:
            max_messages: Maximum messages to receive.
            wait_seconds: Server-side wait.
            cancel: Cancellation signal for retry waits.

        Returns:
            New NotificationRecords, in delivery order.
        """
        self._set_state(PollerState.POLLING)
        try:
            messages = self._retry.call(
                lambda: self._queue.receive(max_messages, wait_seconds),
                cancel=cancel,
                description="receive notifications",
            )
        finally:
            self._set_state(PollerState.IDLE)

        records: list[NotificationRecord] = []
        for message in messages:
            try:
                record = NotificationRecord.from_message(message)
            except FormatError as e:
                self._count("malformed")
                logger.warning(f"Skipping malformed notification: {e}")
                continue

            self._count("received")
            status = self._window.claim(record.event_id)
            if status is EventStatus.NEW:
                records.append(record)
                continue

            self._count("duplicates")
            logger.debug(f"Duplicate event {record.event_id} ({status.name.lower()})")
            if status is EventStatus.DONE:
                self._acknowledge_duplicate(record)

        if messages:
            logger.debug(f"Polled {len(messages)} messages, {len(records)} new")
        return records

    def _acknowledge_duplicate(self, record: NotificationRecord) -> None:
        try:
            self._queue.acknowledge(record.receipt_handle)
        except HelixError as e:
            # The duplicate redelivers and is filtered again
            logger.debug(f"Could not acknowledge duplicate of {record.event_id}: {e}")

    def acknowledge(self, record: NotificationRecord, cancel: threading.Event | None = None) -> bool:
        """Consume a record's receipt handle.

        Returns:
            True if consumed, False if the handle was stale (the message
            redelivers and is then filtered as a duplicate).
        """
        self._window.complete(record.event_id)
        consumed = self._retry.call(
            lambda: self._queue.acknowledge(record.receipt_handle),
            cancel=cancel,
            description=f"acknowledge {record.event_id}",
        )
        if not consumed:
            logger.debug(f"Receipt handle for {record.event_id} was stale")
        return consumed

    def release(self, record: NotificationRecord) -> None:
        """Give up on a record without acknowledging it.

        Its redelivery will be treated as a new event.
        """
        self._window.forget(record.event_id)

    def download(
        self,
        record: NotificationRecord,
        output_directory: Path,
        cancel: threading.Event | None = None,
    ) -> Path:
        """Download the dataset version a record announces.

        Raises:
            RuntimeError: If the poller has no transfer engine.
            TransferError: If the download fails.
        """
        if self._transfer is None:
            raise RuntimeError("Poller has no transfer engine for downloads")
        destination = download_path(record, output_directory)
        logger.info(f"Downloading {record.dataset_id} v{record.version} to {destination}")
        return self._transfer.download_to(record.target_object, destination, cancel=cancel)

    def start_listener(self, config: ListenerConfig) -> ListenerHandle:
        """Run poll() in a loop on a background thread.

        Returns:
            Handle whose cancel() stops the loop.
        """
        if config.auto_download and self._transfer is None:
            raise ValueError("auto_download requires a transfer engine")

        handle = ListenerHandle()
        handle._thread = threading.Thread(
            target=self._listen,
            args=(config, handle),
            name="NotificationListener",
            daemon=True,
        )
        handle._thread.start()
        logger.info("Notification listener started")
        return handle

    def _listen(self, config: ListenerConfig, handle: ListenerHandle) -> None:
        failures = 0
        while not handle.cancelled:
            try:
                records = self.poll(config.max_messages, config.wait_seconds, cancel=handle.event)
                failures = 0
            except (AuthenticationError, AuthorizationError) as e:
                logger.error(f"Notification listener stopping: {e}")
                handle.error = e
                self._report(config, e)
                break
            except HelixError as e:
                if handle.cancelled:
                    break
                failures += 1
                delay = self._retry.backoff(failures)
                logger.warning(f"Polling failed: {e}. Retrying in {delay:.1f}s...")
                self._report(config, e)
                handle.event.wait(delay)
                continue
            except Exception as e:
                if handle.cancelled:
                    break
                failures += 1
                delay = self._retry.backoff(failures)
                logger.exception(f"Polling failed unexpectedly. Retrying in {delay:.1f}s...")
                self._report(config, HelixError(f"Polling failed: {e}"))
                handle.event.wait(delay)
                continue

            for position, record in enumerate(records):
                if handle.cancelled:
                    for pending in records[position:]:
                        self.release(pending)
                    break
                self._set_state(PollerState.DELIVERING)
                try:
                    self._deliver(record, config, handle.event)
                finally:
                    self._set_state(PollerState.IDLE)

        logger.info("Notification listener stopped")

    def _deliver(
        self, record: NotificationRecord, config: ListenerConfig, cancel: threading.Event
    ) -> bool:
        path: Path | None = None
        try:
            if config.auto_download:
                path = self.download(record, config.output_directory, cancel=cancel)
            config.on_notification(record, path)
        except Exception as e:
            self.release(record)
            self._count("failed")
            logger.warning(f"Notification {record.event_id} failed, leaving it for redelivery: {e}")
            self._report(config, NotificationError(record, e))
            return False

        self._count("delivered")
        try:
            self.acknowledge(record)
        except HelixError as e:
            logger.warning(f"Could not acknowledge {record.event_id}: {e}")
            self._report(config, e)
        return True

    def _report(self, config: ListenerConfig, error: HelixError) -> None:
        if config.on_error is None:
            return
        try:
            config.on_error(error)
        except Exception:
            logger.exception("Notification error callback failed")
