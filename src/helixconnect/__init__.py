"""Helix Connect client engine.

Envelope-encrypted, chunked and resumable dataset transfers plus long-poll
dataset-change notifications, composed into capability-scoped facades.
"""

from helixconnect.client import CapabilityFacade, HelixClient
from helixconnect.core import Capability, CapabilityConfig, HelixError, ServerConfig

__version__ = "0.1.0"

__all__ = [
    "Capability",
    "CapabilityConfig",
    "CapabilityFacade",
    "HelixClient",
    "HelixError",
    "ServerConfig",
    "__version__",
]
