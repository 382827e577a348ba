"""
Peer slot: one dashboard instance of a peer, wiring the store and the
controllers together.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .remote import RemoteTrackObserver
from .session import DEFAULT_CONNECT_TIMEOUT, SessionController
from .store import ConnectionStateStore, Session
from .tracks import TrackLifecycleController
from .transport import SignalingTarget, Transport

LOG = logging.getLogger(__name__)


class PeerSlot:
    def __init__(
        self,
        peer_id: str,
        transport: Transport,
        *,
        room_id: Optional[str] = None,
        name: Optional[str] = None,
        token: Optional[str] = None,
        signaling: Optional[SignalingTarget] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self.peer_id = peer_id
        self.room_id = room_id
        self.name = name or peer_id
        self.store = ConnectionStateStore(peer_id)
        self.tracks = TrackLifecycleController(self.store, transport)
        self.remote = RemoteTrackObserver(self.store, transport)
        self.session = SessionController(
            self.store,
            transport,
            self.tracks,
            self.remote,
            signaling=signaling,
            connect_timeout=connect_timeout,
        )
        if token:
            self.session.set_token(token)

    def snapshot(self) -> Session:
        return self.store.snapshot()

    def peer_metadata(self) -> Any:
        return {"name": self.name}

    async def connect(self, token: Optional[str] = None) -> None:
        await self.session.connect(token or self.snapshot().token, self.peer_metadata())

    def close(self) -> None:
        self.session.disconnect()
        LOG.debug("Peer slot %s closed", self.peer_id)


__all__ = ["PeerSlot"]
