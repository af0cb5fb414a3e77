"""Shared types for helixconnect.

This module defines state enums used across the transfer and notification
components.
"""

from __future__ import annotations

from enum import Enum


class TransferDirection(str, Enum):
    """Direction of a transfer session."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


class TransferState(str, Enum):
    """Lifecycle of a transfer session."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PollerState(str, Enum):
    """State of a notification poller.

    Idle -> Polling -> (Delivering -> Idle) | (Idle on empty result)
    """

    IDLE = "idle"
    POLLING = "polling"
    DELIVERING = "delivering"


class Capability(str, Enum):
    """Operation groups a facade can hold."""

    CONSUME = "consume"
    PRODUCE = "produce"
    ADMINISTER = "administer"
