"""Client module - Remote boundaries, transfers, notifications and facades."""

from helixconnect.client.api import (
    HTTPClient,
    KeyServiceClient,
    Manifest,
    QueueClient,
    QueueMessage,
    StorageClient,
)
from helixconnect.client.capabilities import (
    CapabilityFacade,
    ConsumeOperations,
    HelixClient,
    ProduceOperations,
)
from helixconnect.client.keywrap import KeyWrapClient
from helixconnect.client.notifications import (
    DedupWindow,
    ListenerConfig,
    ListenerHandle,
    NotificationPoller,
    NotificationRecord,
)
from helixconnect.client.retry import ErrorClass, RetryDecision, RetryPolicy, classify
from helixconnect.client.transfers import TransferEngine, TransferSession

__all__ = [
    # API
    "HTTPClient",
    "KeyServiceClient",
    "Manifest",
    "QueueClient",
    "QueueMessage",
    "StorageClient",
    # Capabilities
    "CapabilityFacade",
    "ConsumeOperations",
    "HelixClient",
    "ProduceOperations",
    # Key wrapping
    "KeyWrapClient",
    # Notifications
    "DedupWindow",
    "ListenerConfig",
    "ListenerHandle",
    "NotificationPoller",
    "NotificationRecord",
    # Retry
    "ErrorClass",
    "RetryDecision",
    "RetryPolicy",
    "classify",
    # Transfers
    "TransferEngine",
    "TransferSession",
]
