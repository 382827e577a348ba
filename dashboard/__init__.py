"""
Peer session dashboard for an SFU-style media server.

Each dashboard slot represents one peer: it connects to a room with a peer
token, publishes local tracks (optionally simulcast), observes the tracks of
other peers and exposes all of it as an immutable session snapshot.
"""

from __future__ import annotations

__all__ = [
    "DashboardConfig",
    "load_config",
]

__version__ = "0.1.0"

from .config import DashboardConfig, load_config
