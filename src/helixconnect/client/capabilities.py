"""Capability-scoped client facades.

This module provides:
- ConsumeOperations: Download and notification operations
- ProduceOperations: Upload operations
- CapabilityFacade: Immutable set of operation groups
- HelixClient: Builds one codec/engine/poller set and hands out facades

A producer facade is a consumer facade plus a produce group. Both hold the
same TransferEngine instance; checking a capability is a membership test
on the facade's groups.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from helixconnect.client.api import KeyServiceClient, QueueClient, StorageClient
from helixconnect.client.keywrap import KeyWrapClient
from helixconnect.client.notifications import (
    ErrorCallback,
    ListenerConfig,
    ListenerHandle,
    NotificationCallback,
    NotificationPoller,
    NotificationRecord,
)
from helixconnect.client.retry import RetryPolicy
from helixconnect.client.transfers import TransferEngine
from helixconnect.core.codec import EnvelopeCodec
from helixconnect.core.config import CapabilityConfig
from helixconnect.core.errors import CapabilityError
from helixconnect.core.types import Capability

if TYPE_CHECKING:
    import threading

    from helixconnect.client.api import KeyService, NotificationQueue, ObjectStorage
    from helixconnect.client.transfers import ProgressCallback, TransferSession
    from helixconnect.client.transfers.download import DownloadSink
    from helixconnect.client.transfers.upload import UploadSource
    from helixconnect.core.config import ServerConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumeOperations:
    """Read-side operation group."""

    transfer: TransferEngine
    poller: NotificationPoller | None
    config: CapabilityConfig

    def download(
        self,
        object_id: str,
        sink: DownloadSink,
        resume_token: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
        chunk_size: int | None = None,
    ) -> TransferSession:
        return self.transfer.download(
            object_id,
            sink,
            resume_token=resume_token,
            on_progress=on_progress,
            cancel=cancel,
            chunk_size=chunk_size,
        )

    def download_dataset(
        self, record: NotificationRecord, cancel: threading.Event | None = None
    ) -> Path:
        """Download the dataset version announced by a notification."""
        return self._require_poller().download(record, self.config.output_directory, cancel=cancel)

    def poll(
        self,
        max_messages: int | None = None,
        wait_seconds: int | None = None,
        cancel: threading.Event | None = None,
    ) -> list[NotificationRecord]:
        return self._require_poller().poll(
            max_messages or self.config.max_messages,
            self.config.poll_wait_seconds if wait_seconds is None else wait_seconds,
            cancel=cancel,
        )

    def acknowledge(self, record: NotificationRecord) -> bool:
        return self._require_poller().acknowledge(record)

    def release(self, record: NotificationRecord) -> None:
        self._require_poller().release(record)

    def start_listener(
        self,
        on_notification: NotificationCallback | ListenerConfig,
        on_error: ErrorCallback | None = None,
    ) -> ListenerHandle:
        """Start a listener configured from this client's CapabilityConfig.

        Args:
            on_notification: Callback, or a full ListenerConfig.
            on_error: Error callback (ignored when a ListenerConfig is given).
        """
        if isinstance(on_notification, ListenerConfig):
            listener_config = on_notification
        else:
            listener_config = ListenerConfig.from_config(self.config, on_notification, on_error)
        return self._require_poller().start_listener(listener_config)

    def _require_poller(self) -> NotificationPoller:
        if self.poller is None:
            raise RuntimeError("Client was built without a notification queue")
        return self.poller


@dataclass(frozen=True)
class ProduceOperations:
    """Write-side operation group."""

    transfer: TransferEngine

    def upload(
        self,
        object_id: str,
        source: UploadSource,
        chunk_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
        resume_token: str | None = None,
    ) -> TransferSession:
        return self.transfer.upload(
            object_id,
            source,
            chunk_size=chunk_size,
            on_progress=on_progress,
            cancel=cancel,
            resume_token=resume_token,
        )

    def upload_file(
        self,
        path: Path,
        object_id: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> TransferSession:
        return self.transfer.upload_file(path, object_id, on_progress=on_progress, cancel=cancel)


@dataclass(frozen=True, eq=False)
class CapabilityFacade:
    """An immutable set of operation groups.

    Extending a facade returns a new one; existing facades never change.
    """

    groups: Mapping[Capability, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "groups", MappingProxyType(dict(self.groups)))

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset(self.groups)

    def has(self, capability: Capability) -> bool:
        return capability in self.groups

    def require(self, capability: Capability) -> Any:
        """Get an operation group.

        Raises:
            CapabilityError: If the facade does not hold it.
        """
        try:
            return self.groups[capability]
        except KeyError:
            raise CapabilityError(
                f"Facade lacks the {capability.value} capability",
                capability=capability.value,
            ) from None

    def with_group(self, capability: Capability, group: Any) -> CapabilityFacade:
        """Return a new facade with an added (or replaced) group."""
        return CapabilityFacade({**self.groups, capability: group})

    @property
    def consume(self) -> ConsumeOperations:
        return self.require(Capability.CONSUME)

    @property
    def produce(self) -> ProduceOperations:
        return self.require(Capability.PRODUCE)

    @property
    def administer(self) -> Any:
        return self.require(Capability.ADMINISTER)


class HelixClient:
    """Composition root for one customer's engines.

    Every HelixClient builds its own codec, transfer engine and poller;
    nothing is shared between clients in the same process.

    Usage:
        with HelixClient.connect(storage_cfg, keys_cfg, queue_cfg) as client:
            producer = client.producer()
            producer.produce.upload("datasets/prices/v3", Path("prices.csv"))
    """

    def __init__(
        self,
        storage: ObjectStorage,
        key_service: KeyService,
        queue: NotificationQueue | None = None,
        config: CapabilityConfig | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            storage: Object-storage boundary.
            key_service: Key-management boundary.
            queue: Notification-queue boundary (None disables notifications).
            config: Tunables; defaults apply when omitted.
        """
        self.config = config or CapabilityConfig()
        retry = RetryPolicy.from_config(self.config)
        self.key_wrap = KeyWrapClient(key_service, retry)
        self.codec = EnvelopeCodec(self.key_wrap, self.config.compression_level)
        self.transfer = TransferEngine.from_config(storage, self.codec, self.config)
        self.poller = (
            NotificationPoller(queue, self.transfer, retry, self.config.dedup_window)
            if queue is not None
            else None
        )
        self._closeables: list[Any] = []

    @classmethod
    def connect(
        cls,
        storage: ServerConfig,
        key_service: ServerConfig,
        queue: ServerConfig | None = None,
        config: CapabilityConfig | None = None,
    ) -> HelixClient:
        """Build a client talking to the Helix HTTP services."""
        storage_client = StorageClient(storage)
        key_client = KeyServiceClient(key_service)
        queue_client = QueueClient(queue) if queue is not None else None
        client = cls(storage_client, key_client, queue_client, config)
        client._closeables = [c for c in (storage_client, key_client, queue_client) if c]
        return client

    def consumer(self) -> CapabilityFacade:
        """Read-only facade."""
        return CapabilityFacade({
            Capability.CONSUME: ConsumeOperations(self.transfer, self.poller, self.config),
        })

    def producer(self) -> CapabilityFacade:
        """Read+write facade: the consumer facade plus the produce group."""
        return self.consumer().with_group(Capability.PRODUCE, ProduceOperations(self.transfer))

    def close(self) -> None:
        """Close HTTP clients opened by connect()."""
        for closeable in self._closeables:
            closeable.close()
        self._closeables = []

    def __enter__(self) -> HelixClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
