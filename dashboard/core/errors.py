"""
Error taxonomy for the peer session core.

Every failure a caller can act on is raised as a :class:`DashboardError`
subclass carrying a ``reason`` enum, so the operator API can map it to a
status code and the UI can explain what happened.
"""

from __future__ import annotations

from enum import Enum


class ConnectFailure(str, Enum):
    MISSING_TOKEN = "missing_token"
    TIMEOUT = "timeout"
    TRANSPORT_REJECTED = "transport_rejected"


class PublishFailure(str, Enum):
    NO_TRACK_IN_SOURCE = "no_track_in_source"
    NOT_CONNECTED = "not_connected"
    ALREADY_PENDING = "already_pending"
    TRANSPORT_REJECTED = "transport_rejected"


class UnpublishFailure(str, Enum):
    TRANSPORT_REJECTED = "transport_rejected"


class EncodingFailure(str, Enum):
    UNKNOWN_TRACK = "unknown_track"
    NOT_SIMULCAST = "not_simulcast"
    LAST_ACTIVE_LAYER = "last_active_layer"
    TRANSPORT_REJECTED = "transport_rejected"


class DashboardError(RuntimeError):
    """Base class for recoverable peer session errors."""

    reason: Enum

    def __init__(self, reason: Enum, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or reason.value.replace("_", " "))


class ConnectError(DashboardError):
    reason: ConnectFailure


class PublishError(DashboardError):
    reason: PublishFailure


class UnpublishError(DashboardError):
    reason: UnpublishFailure


class EncodingError(DashboardError):
    reason: EncodingFailure


class InputError(ValueError):
    """Raised when free-text operator input cannot be turned into a typed value."""


__all__ = [
    "ConnectError",
    "ConnectFailure",
    "DashboardError",
    "EncodingError",
    "EncodingFailure",
    "InputError",
    "PublishError",
    "PublishFailure",
    "UnpublishError",
    "UnpublishFailure",
]
