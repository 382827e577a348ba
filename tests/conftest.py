import asyncio
from typing import Any, List, Optional

import pytest

from dashboard.core.peer import PeerSlot
from dashboard.core.transport import (
    ServerStatus,
    SessionHandle,
    SessionStatusChanged,
    Transport,
    TransportError,
)


class FakeTransport(Transport):
    """Scriptable transport that records every primitive the core calls."""

    def __init__(self, *, auto_join: bool = True, join_delay: float = 0.0) -> None:
        self.auto_join = auto_join
        self.join_delay = join_delay
        self.reject_open = False
        self.open_gate: Optional[asyncio.Event] = None
        self.reject_publish = False
        self.reject_encoding = False
        self.reject_metadata = False
        self.publish_gate: Optional[asyncio.Event] = None
        self.handles: List[SessionHandle] = []
        self.close_calls = 0
        self.published: List[dict] = []
        self.unpublished: List[str] = []
        self.encoding_calls: List[tuple] = []
        self.preferred: List[tuple] = []
        self.metadata_updates: List[tuple] = []
        self._counter = 0

    async def open_session(self, token: str, peer_metadata: Any, signaling=None) -> SessionHandle:
        if self.open_gate is not None:
            await self.open_gate.wait()
        else:
            await asyncio.sleep(0)
        if self.reject_open:
            raise TransportError("invalid token")
        handle = SessionHandle(peer_metadata=peer_metadata, signaling=signaling)
        self.handles.append(handle)
        if self.auto_join:
            asyncio.get_running_loop().call_later(self.join_delay, self.join, handle)
        return handle

    def join(self, handle: SessionHandle) -> None:
        if not handle.closed:
            handle.emit(SessionStatusChanged(ServerStatus.JOINED))

    def close_session(self, handle: SessionHandle) -> None:
        self.close_calls += 1
        handle.closed = True

    async def publish_track(self, handle, track, source, metadata=None, simulcast=None, max_bandwidth=None) -> str:
        if self.publish_gate is not None:
            await self.publish_gate.wait()
        else:
            await asyncio.sleep(0)
        if self.reject_publish:
            raise TransportError("publish refused")
        self._counter += 1
        track_id = f"track-{self._counter}"
        self.published.append(
            {
                "track_id": track_id,
                "kind": track.kind,
                "metadata": metadata,
                "simulcast": simulcast,
                "max_bandwidth": max_bandwidth,
            }
        )
        return track_id

    def unpublish_track(self, handle, track_id: str) -> None:
        self.unpublished.append(track_id)

    def set_track_encoding_enabled(self, handle, track_id, layer, enabled) -> None:
        if self.reject_encoding:
            raise TransportError("encoding refused")
        self.encoding_calls.append((track_id, layer, enabled))

    def set_preferred_receive_encoding(self, handle, track_id, layer) -> None:
        self.preferred.append((track_id, layer))

    def update_track_metadata(self, handle, track_id, metadata) -> None:
        if self.reject_metadata:
            raise TransportError("metadata refused")
        self.metadata_updates.append((track_id, metadata))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def lazy_transport() -> FakeTransport:
    """A transport whose server never confirms the join."""

    return FakeTransport(auto_join=False)


@pytest.fixture
def joined_slot():
    async def _joined_slot(transport: Transport, peer_id: str = "peer-1", **kwargs: Any) -> PeerSlot:
        slot = PeerSlot(peer_id, transport, token=kwargs.pop("token", "token-1"), **kwargs)
        await slot.connect()
        await slot.session.wait_joined()
        return slot

    return _joined_slot
