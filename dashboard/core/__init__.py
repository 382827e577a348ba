"""
Peer session and track lifecycle core.

The store is the single mutation surface; the session controller, the track
lifecycle controller and the remote track observer describe what happened as
store events.
"""

from __future__ import annotations

__all__ = [
    "ConnectionStateStore",
    "PeerSlot",
    "RemoteTrackObserver",
    "Session",
    "SessionController",
    "SessionStatus",
    "TrackLifecycleController",
]

from .peer import PeerSlot
from .remote import RemoteTrackObserver
from .session import SessionController
from .store import ConnectionStateStore, Session, SessionStatus
from .tracks import TrackLifecycleController
