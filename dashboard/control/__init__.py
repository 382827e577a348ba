"""
Media server control plane (rooms, peers, tokens).
"""

from __future__ import annotations

from .client import (
    ControlPlaneClient,
    ControlPlaneConfig,
    ControlPlaneConnectionError,
    ControlPlaneError,
)
from .models import PeerCredentials, RoomInfo

__all__ = [
    "ControlPlaneClient",
    "ControlPlaneConfig",
    "ControlPlaneConnectionError",
    "ControlPlaneError",
    "PeerCredentials",
    "RoomInfo",
]
