"""
In-process loopback media server.

Stands in for a real SFU when the dashboard runs without one: peers that join
the same room see each other's published tracks as remote tracks, simulcast
layer changes are reflected to receivers, and a fixed bandwidth estimate is
reported. No media flows; this only models the signalling side effects the
peer session core reacts to.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..core.encoding import (
    BandwidthLimit,
    EncodingLayer,
    SimulcastOptions,
    default_layer,
    order_layers,
)
from ..core.media import MediaSource, MediaTrack, TrackKind, VadStatus
from ..core.transport import (
    BandwidthEstimateChanged,
    RemoteTrackAction,
    RemoteTrackEvent,
    ServerStatus,
    SessionHandle,
    SessionStatusChanged,
    SignalingTarget,
    Transport,
    TransportError,
)
from ..control.models import PeerCredentials, RoomInfo

LOG = logging.getLogger(__name__)

DEFAULT_JOIN_DELAY = 0.05
DEFAULT_BANDWIDTH_ESTIMATE = 1_500_000.0


@dataclass
class _PublishedTrack:
    track_id: str
    kind: TrackKind
    metadata: Any
    active: Tuple[EncodingLayer, ...] = ()


@dataclass
class _Peer:
    peer_id: str
    room_id: str
    token: str
    handle: Optional[SessionHandle] = None
    joined: bool = False
    tracks: Dict[str, _PublishedTrack] = field(default_factory=dict)
    # received track id -> encoding currently forwarded to this peer
    receiving: Dict[str, Optional[EncodingLayer]] = field(default_factory=dict)


@dataclass
class _Room:
    room_id: str
    max_peers: Optional[int]
    video_codec: Optional[str]
    peers: Dict[str, _Peer] = field(default_factory=dict)


class LoopbackServer(Transport):
    """
    Transport and control plane in one object, kept entirely in memory.
    """

    def __init__(
        self,
        *,
        address: str = "loopback",
        join_delay: float = DEFAULT_JOIN_DELAY,
        bandwidth_estimate: float = DEFAULT_BANDWIDTH_ESTIMATE,
    ) -> None:
        self.address = address
        self.join_delay = max(0.0, float(join_delay))
        self.bandwidth_estimate = float(bandwidth_estimate)
        self._rooms: Dict[str, _Room] = {}
        self._tokens: Dict[str, _Peer] = {}
        self._sessions: Dict[str, _Peer] = {}

    # ------------------------------------------------------------------ control plane

    async def create_room(
        self, max_peers: Optional[int] = None, video_codec: Optional[str] = None
    ) -> RoomInfo:
        room_id = uuid.uuid4().hex[:12]
        self._rooms[room_id] = _Room(room_id=room_id, max_peers=max_peers, video_codec=video_codec)
        LOG.info("Loopback room %s created (max_peers=%s, codec=%s)", room_id, max_peers, video_codec)
        return RoomInfo(room_id=room_id, room_address=self.address, max_peers=max_peers, video_codec=video_codec)

    async def list_rooms(self) -> List[RoomInfo]:
        return [
            RoomInfo(
                room_id=room.room_id,
                room_address=self.address,
                max_peers=room.max_peers,
                video_codec=room.video_codec,
                peers=list(room.peers),
            )
            for room in self._rooms.values()
        ]

    async def delete_room(self, room_id: str) -> None:
        room = self._rooms.pop(room_id, None)
        if room is None:
            raise TransportError(f"room {room_id} not found")
        for peer in list(room.peers.values()):
            self._evict(peer)

    async def add_peer(self, room_id: str, peer_type: str = "webrtc") -> PeerCredentials:
        room = self._rooms.get(room_id)
        if room is None:
            raise TransportError(f"room {room_id} not found")
        if room.max_peers is not None and len(room.peers) >= room.max_peers:
            raise TransportError(f"room {room_id} is full")
        peer = _Peer(peer_id=uuid.uuid4().hex[:12], room_id=room_id, token=uuid.uuid4().hex)
        room.peers[peer.peer_id] = peer
        self._tokens[peer.token] = peer
        return PeerCredentials(peer_id=peer.peer_id, token=peer.token, room_id=room_id)

    async def delete_peer(self, room_id: str, peer_id: str) -> None:
        room = self._rooms.get(room_id)
        peer = room.peers.pop(peer_id, None) if room is not None else None
        if peer is None:
            raise TransportError(f"peer {peer_id} not found in room {room_id}")
        self._evict(peer)

    async def health(self) -> dict:
        return {"status": "ok", "address": self.address, "rooms": len(self._rooms)}

    async def aclose(self) -> None:
        for room in list(self._rooms.values()):
            for peer in list(room.peers.values()):
                self._evict(peer)

    # ------------------------------------------------------------------ transport

    async def open_session(
        self,
        token: str,
        peer_metadata: Any,
        signaling: Optional[SignalingTarget] = None,
    ) -> SessionHandle:
        await asyncio.sleep(0)
        peer = self._tokens.get(token)
        if peer is None:
            raise TransportError("invalid peer token")
        if peer.handle is not None and not peer.handle.closed:
            raise TransportError(f"peer {peer.peer_id} is already connected")
        handle = SessionHandle(peer_metadata=peer_metadata, signaling=signaling)
        peer.handle = handle
        peer.joined = False
        self._sessions[handle.id] = peer
        asyncio.get_running_loop().call_later(self.join_delay, self._join, handle)
        return handle

    def close_session(self, handle: SessionHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        peer = self._sessions.pop(handle.id, None)
        if peer is None:
            return
        self._disconnect(peer)

    async def publish_track(
        self,
        handle: SessionHandle,
        track: MediaTrack,
        source: MediaSource,
        metadata: Any = None,
        simulcast: Optional[SimulcastOptions] = None,
        max_bandwidth: BandwidthLimit = None,
    ) -> str:
        await asyncio.sleep(0)
        peer = self._joined_peer(handle)
        active: Tuple[EncodingLayer, ...] = ()
        if track.kind is TrackKind.VIDEO and simulcast is not None and simulcast.enabled:
            active = order_layers(simulcast.active_encodings)
        published = _PublishedTrack(
            track_id=f"{peer.peer_id}:{uuid.uuid4().hex[:8]}",
            kind=track.kind,
            metadata=metadata,
            active=active,
        )
        peer.tracks[published.track_id] = published
        for other in self._room_peers(peer):
            self._announce(other, peer, published)
        return published.track_id

    def unpublish_track(self, handle: SessionHandle, track_id: str) -> None:
        peer = self._joined_peer(handle)
        if peer.tracks.pop(track_id, None) is None:
            return
        for other in self._room_peers(peer):
            self._retract(other, track_id)

    def set_track_encoding_enabled(
        self, handle: SessionHandle, track_id: str, layer: EncodingLayer, enabled: bool
    ) -> None:
        peer = self._joined_peer(handle)
        published = peer.tracks.get(track_id)
        if published is None:
            raise TransportError(f"track {track_id} is not published")
        if not published.active:
            raise TransportError(f"track {track_id} is not simulcast")
        layers = set(published.active)
        if enabled:
            layers.add(layer)
        else:
            layers.discard(layer)
        published.active = order_layers(layers)
        fallback = default_layer(published.active)
        for other in self._room_peers(peer):
            if track_id in other.receiving and other.receiving[track_id] not in published.active:
                self._forward(other, track_id, fallback)

    def set_preferred_receive_encoding(
        self, handle: SessionHandle, track_id: str, layer: EncodingLayer
    ) -> None:
        peer = self._joined_peer(handle)
        if track_id not in peer.receiving:
            raise TransportError(f"track {track_id} is not received by {peer.peer_id}")
        published = self._find_track(peer.room_id, track_id)
        if published is None or layer not in published.active:
            raise TransportError(f"layer {layer.value} of {track_id} is not active")
        self._forward(peer, track_id, layer)

    def update_track_metadata(self, handle: SessionHandle, track_id: str, metadata: Any) -> None:
        peer = self._joined_peer(handle)
        published = peer.tracks.get(track_id)
        if published is None:
            raise TransportError(f"track {track_id} is not published")
        published.metadata = metadata
        for other in self._room_peers(peer):
            if other.handle is not None:
                other.handle.emit(
                    RemoteTrackEvent(RemoteTrackAction.UPDATED, track_id, peer.peer_id, published.kind, metadata)
                )

    # ------------------------------------------------------------------ internals

    def _joined_peer(self, handle: SessionHandle) -> _Peer:
        peer = self._sessions.get(handle.id)
        if peer is None or handle.closed:
            raise TransportError("session is closed")
        if not peer.joined:
            raise TransportError("session has not joined yet")
        return peer

    def _room_peers(self, peer: _Peer) -> List[_Peer]:
        room = self._rooms.get(peer.room_id)
        if room is None:
            return []
        return [
            other
            for other in room.peers.values()
            if other is not peer and other.joined and other.handle is not None
        ]

    def _find_track(self, room_id: str, track_id: str) -> Optional[_PublishedTrack]:
        room = self._rooms.get(room_id)
        if room is None:
            return None
        for peer in room.peers.values():
            if track_id in peer.tracks:
                return peer.tracks[track_id]
        return None

    def _join(self, handle: SessionHandle) -> None:
        peer = self._sessions.get(handle.id)
        if peer is None or handle.closed:
            return
        peer.joined = True
        handle.emit(SessionStatusChanged(ServerStatus.JOINED))
        handle.emit(BandwidthEstimateChanged(self.bandwidth_estimate))
        for other in self._room_peers(peer):
            for published in other.tracks.values():
                self._announce(peer, other, published)

    def _announce(self, receiver: _Peer, origin: _Peer, published: _PublishedTrack) -> None:
        encoding = default_layer(published.active) if published.kind is TrackKind.VIDEO else None
        vad_status = VadStatus.SILENCE if published.kind is TrackKind.AUDIO else None
        receiver.receiving[published.track_id] = encoding
        if receiver.handle is not None:
            receiver.handle.emit(
                RemoteTrackEvent(
                    RemoteTrackAction.ADDED,
                    published.track_id,
                    origin.peer_id,
                    published.kind,
                    published.metadata,
                    encoding,
                    vad_status,
                )
            )

    def _retract(self, receiver: _Peer, track_id: str) -> None:
        receiver.receiving.pop(track_id, None)
        if receiver.handle is not None:
            receiver.handle.emit(RemoteTrackEvent(RemoteTrackAction.REMOVED, track_id))

    def _forward(self, receiver: _Peer, track_id: str, layer: Optional[EncodingLayer]) -> None:
        if receiver.receiving.get(track_id) == layer:
            return
        receiver.receiving[track_id] = layer
        if receiver.handle is not None:
            receiver.handle.emit(RemoteTrackEvent(RemoteTrackAction.ENCODING, track_id, encoding=layer))

    def _disconnect(self, peer: _Peer) -> None:
        was_joined = peer.joined
        peer.joined = False
        peer.handle = None
        peer.receiving.clear()
        if was_joined:
            for other in self._room_peers(peer):
                for track_id in peer.tracks:
                    self._retract(other, track_id)
        peer.tracks.clear()

    def _evict(self, peer: _Peer) -> None:
        handle = peer.handle
        self._tokens.pop(peer.token, None)
        if handle is not None and not handle.closed:
            self._sessions.pop(handle.id, None)
            self._disconnect(peer)
            handle.emit(SessionStatusChanged(ServerStatus.CLOSED, "peer removed"))
            handle.closed = True


__all__ = ["LoopbackServer"]
