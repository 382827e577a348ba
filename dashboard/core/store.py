"""
Connection state store for a single peer session.

The store is the only mutation surface for a session: controllers and the
remote observer describe what happened as events, the store decides whether
the event is valid for the current state and, if so, commits a new immutable
snapshot and notifies subscribers.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, Mapping, Optional, Tuple

from .encoding import EncodingLayer, order_layers
from .errors import ConnectFailure
from .media import MediaSource, TrackKind, VadStatus

LOG = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    JOINED = "joined"
    CLOSED = "closed"
    FAILED = "failed"


class CloseReason(str, Enum):
    USER = "user"
    SERVER = "server"


_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class LocalTrack:
    track_id: str
    kind: TrackKind
    enabled: bool = True
    simulcast_enabled: bool = False
    active_encodings: Tuple[EncodingLayer, ...] = ()
    max_bandwidth: Optional[float] = None
    metadata: Any = None
    source: Optional[MediaSource] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict:
        return {
            "trackId": self.track_id,
            "kind": self.kind.value,
            "enabled": bool(self.enabled),
            "simulcast": bool(self.simulcast_enabled),
            "encodings": [layer.value for layer in self.active_encodings],
            "maxBandwidth": self.max_bandwidth,
            "metadata": self.metadata,
            "sourceId": self.source.source_id if self.source is not None else None,
        }


@dataclass(frozen=True, slots=True)
class RemoteTrack:
    track_id: str
    origin_peer_id: Optional[str]
    kind: Optional[TrackKind]
    current_encoding: Optional[EncodingLayer] = None
    metadata: Any = None
    vad_status: Optional[VadStatus] = None

    def to_dict(self) -> dict:
        return {
            "trackId": self.track_id,
            "origin": self.origin_peer_id,
            "kind": self.kind.value if self.kind is not None else None,
            "encoding": self.current_encoding.value if self.current_encoding else None,
            "metadata": self.metadata,
            "vadStatus": self.vad_status.value if self.vad_status else None,
        }


@dataclass(frozen=True, slots=True)
class Session:
    """
    Immutable point-in-time view of one peer's session.
    """

    peer_id: str
    status: SessionStatus = SessionStatus.IDLE
    token: Optional[str] = None
    bandwidth_estimate: float = 0.0
    generation: int = 0
    rev: int = 0
    failure: Optional[ConnectFailure] = None
    close_reason: Optional[CloseReason] = None
    local_tracks: Mapping[str, LocalTrack] = field(default_factory=lambda: _EMPTY)
    remote_tracks: Mapping[str, RemoteTrack] = field(default_factory=lambda: _EMPTY)

    def local_track(self, track_id: str) -> Optional[LocalTrack]:
        return self.local_tracks.get(track_id)

    def remote_track(self, track_id: str) -> Optional[RemoteTrack]:
        return self.remote_tracks.get(track_id)

    def to_dict(self) -> dict:
        return {
            "peerId": self.peer_id,
            "status": self.status.value,
            "token": self.token,
            "bandwidthEstimate": float(self.bandwidth_estimate),
            "generation": int(self.generation),
            "rev": int(self.rev),
            "failure": self.failure.value if self.failure else None,
            "closeReason": self.close_reason.value if self.close_reason else None,
            "localTracks": [track.to_dict() for track in self.local_tracks.values()],
            "remoteTracks": [track.to_dict() for track in self.remote_tracks.values()],
        }


# ---------------------------------------------------------------------- events


@dataclass(frozen=True, slots=True)
class StoreEvent:
    # Generation the event was produced for; None means "current".
    generation: Optional[int] = field(default=None, kw_only=True)


@dataclass(frozen=True, slots=True)
class SessionConnecting(StoreEvent):
    token: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SessionJoined(StoreEvent):
    pass


@dataclass(frozen=True, slots=True)
class SessionFailed(StoreEvent):
    reason: ConnectFailure = ConnectFailure.TRANSPORT_REJECTED


@dataclass(frozen=True, slots=True)
class SessionClosed(StoreEvent):
    reason: CloseReason = CloseReason.USER


@dataclass(frozen=True, slots=True)
class TrackAdded(StoreEvent):
    track: LocalTrack


@dataclass(frozen=True, slots=True)
class TrackRemoved(StoreEvent):
    track_id: str


@dataclass(frozen=True, slots=True)
class TrackEncodingChanged(StoreEvent):
    track_id: str
    layer: EncodingLayer
    enabled: bool


@dataclass(frozen=True, slots=True)
class TrackEnabledChanged(StoreEvent):
    track_id: str
    enabled: bool


@dataclass(frozen=True, slots=True)
class TrackMetadataChanged(StoreEvent):
    track_id: str
    metadata: Any = None


@dataclass(frozen=True, slots=True)
class RemoteTrackArrived(StoreEvent):
    track: RemoteTrack


@dataclass(frozen=True, slots=True)
class RemoteTrackRemoved(StoreEvent):
    track_id: str


@dataclass(frozen=True, slots=True)
class RemoteTrackEncodingChanged(StoreEvent):
    track_id: str
    encoding: Optional[EncodingLayer]


@dataclass(frozen=True, slots=True)
class RemoteTrackUpdated(StoreEvent):
    track_id: str
    metadata: Any = None


@dataclass(frozen=True, slots=True)
class RemoteTrackVadChanged(StoreEvent):
    track_id: str
    vad_status: VadStatus


@dataclass(frozen=True, slots=True)
class BandwidthEstimated(StoreEvent):
    value: float


@dataclass(frozen=True, slots=True)
class TokenChanged(StoreEvent):
    token: Optional[str] = None


SnapshotCallback = Callable[[Session], None]

_CAN_CONNECT = {SessionStatus.IDLE, SessionStatus.CLOSED, SessionStatus.FAILED}
_LIVE = {SessionStatus.CONNECTING, SessionStatus.JOINED}


class ConnectionStateStore:
    """
    Authoritative session state with synchronous publish/subscribe.

    ``dispatch`` never raises for a well-formed event: events that are invalid
    for the current state (or stale for the current generation) are dropped,
    logged, and leave the snapshot untouched.
    """

    def __init__(self, peer_id: str) -> None:
        self._lock = threading.RLock()
        self._log = LOG.getChild(peer_id)
        self._peer_id = peer_id
        self._status = SessionStatus.IDLE
        self._token: Optional[str] = None
        self._bandwidth = 0.0
        self._generation = 0
        self._rev = 0
        self._failure: Optional[ConnectFailure] = None
        self._close_reason: Optional[CloseReason] = None
        self._local: Dict[str, LocalTrack] = {}
        self._remote: Dict[str, RemoteTrack] = {}
        self._snapshot = Session(peer_id=peer_id)

        self._observer_counter = 0
        self._observers: Dict[int, SnapshotCallback] = {}
        self._pending: Deque[Session] = deque()
        self._notifying = False

        self._handlers: Dict[type, Callable[[Any], bool]] = {
            SessionConnecting: self._on_connecting,
            SessionJoined: self._on_joined,
            SessionFailed: self._on_failed,
            SessionClosed: self._on_closed,
            TrackAdded: self._on_track_added,
            TrackRemoved: self._on_track_removed,
            TrackEncodingChanged: self._on_track_encoding,
            TrackEnabledChanged: self._on_track_enabled,
            TrackMetadataChanged: self._on_track_metadata,
            RemoteTrackArrived: self._on_remote_arrived,
            RemoteTrackRemoved: self._on_remote_removed,
            RemoteTrackEncodingChanged: self._on_remote_encoding,
            RemoteTrackUpdated: self._on_remote_updated,
            RemoteTrackVadChanged: self._on_remote_vad,
            BandwidthEstimated: self._on_bandwidth,
            TokenChanged: self._on_token,
        }

    # ------------------------------------------------------------------ helpers

    def _drop(self, event: StoreEvent, why: str, *, level: int = logging.DEBUG) -> bool:
        self._log.log(
            level,
            "Dropped %s (%s); status=%s generation=%s",
            type(event).__name__,
            why,
            self._status.value,
            self._generation,
        )
        return False

    def _commit_locked(self) -> Session:
        self._rev += 1
        self._snapshot = Session(
            peer_id=self._peer_id,
            status=self._status,
            token=self._token,
            bandwidth_estimate=self._bandwidth,
            generation=self._generation,
            rev=self._rev,
            failure=self._failure,
            close_reason=self._close_reason,
            local_tracks=MappingProxyType(dict(self._local)),
            remote_tracks=MappingProxyType(dict(self._remote)),
        )
        return self._snapshot

    def _clear_tracks_locked(self) -> None:
        self._local.clear()
        self._remote.clear()

    def _notify(self, snapshot: Session) -> None:
        # Snapshots dispatched from inside a callback are queued so every
        # subscriber sees them in commit order.
        self._pending.append(snapshot)
        if self._notifying:
            return
        self._notifying = True
        try:
            while self._pending:
                current = self._pending.popleft()
                with self._lock:
                    observers = dict(self._observers)
                for token, callback in observers.items():
                    try:
                        callback(current)
                    except Exception:  # pragma: no cover - subscriber failures must not break the store
                        self._log.exception("Store subscriber %s failed.", token)
        finally:
            self._notifying = False

    # ------------------------------------------------------------------ handlers

    def _on_connecting(self, event: SessionConnecting) -> bool:
        if self._status not in _CAN_CONNECT:
            return self._drop(event, "session already live")
        self._status = SessionStatus.CONNECTING
        self._generation += 1
        if event.token is not None:
            self._token = event.token
        self._bandwidth = 0.0
        self._failure = None
        self._close_reason = None
        self._clear_tracks_locked()
        return True

    def _on_joined(self, event: SessionJoined) -> bool:
        if self._status is not SessionStatus.CONNECTING:
            return self._drop(event, "not connecting")
        self._status = SessionStatus.JOINED
        return True

    def _on_failed(self, event: SessionFailed) -> bool:
        if self._status is not SessionStatus.CONNECTING:
            return self._drop(event, "not connecting")
        self._status = SessionStatus.FAILED
        self._failure = event.reason
        self._clear_tracks_locked()
        return True

    def _on_closed(self, event: SessionClosed) -> bool:
        if self._status not in _LIVE:
            return self._drop(event, "session not live")
        self._status = SessionStatus.CLOSED
        self._close_reason = event.reason
        self._clear_tracks_locked()
        return True

    def _on_track_added(self, event: TrackAdded) -> bool:
        if self._status is not SessionStatus.JOINED:
            return self._drop(event, "not joined", level=logging.INFO)
        track = event.track
        if track.track_id in self._local:
            return self._drop(event, f"duplicate track id {track.track_id}", level=logging.WARNING)
        if track.kind is TrackKind.AUDIO and (track.simulcast_enabled or track.active_encodings):
            return self._drop(event, "audio track with encodings", level=logging.WARNING)
        if bool(track.active_encodings) != bool(track.simulcast_enabled):
            return self._drop(event, "encodings do not match simulcast flag", level=logging.WARNING)
        self._local[track.track_id] = track
        return True

    def _on_track_removed(self, event: TrackRemoved) -> bool:
        if self._local.pop(event.track_id, None) is None:
            return self._drop(event, f"unknown track {event.track_id}")
        return True

    def _on_track_encoding(self, event: TrackEncodingChanged) -> bool:
        track = self._local.get(event.track_id)
        if track is None:
            return self._drop(event, f"unknown track {event.track_id}")
        if not track.simulcast_enabled:
            return self._drop(event, "track is not simulcast", level=logging.WARNING)
        layers = set(track.active_encodings)
        if event.enabled:
            layers.add(event.layer)
        else:
            layers.discard(event.layer)
        if not layers:
            return self._drop(event, "would disable the last active layer", level=logging.WARNING)
        ordered = order_layers(layers)
        if ordered == track.active_encodings:
            return False
        self._local[event.track_id] = replace(track, active_encodings=ordered)
        return True

    def _on_track_enabled(self, event: TrackEnabledChanged) -> bool:
        track = self._local.get(event.track_id)
        if track is None:
            return self._drop(event, f"unknown track {event.track_id}")
        if track.enabled == bool(event.enabled):
            return False
        self._local[event.track_id] = replace(track, enabled=bool(event.enabled))
        return True

    def _on_track_metadata(self, event: TrackMetadataChanged) -> bool:
        track = self._local.get(event.track_id)
        if track is None:
            return self._drop(event, f"unknown track {event.track_id}")
        if track.metadata == event.metadata:
            return False
        self._local[event.track_id] = replace(track, metadata=event.metadata)
        return True

    def _on_remote_arrived(self, event: RemoteTrackArrived) -> bool:
        if self._status is not SessionStatus.JOINED:
            return self._drop(event, "not joined")
        track = event.track
        if track.track_id in self._remote:
            self._log.warning("Remote track %s arrived twice; replacing.", track.track_id)
        self._remote[track.track_id] = track
        return True

    def _on_remote_removed(self, event: RemoteTrackRemoved) -> bool:
        if self._remote.pop(event.track_id, None) is None:
            return self._drop(event, f"unknown remote track {event.track_id}")
        return True

    def _on_remote_encoding(self, event: RemoteTrackEncodingChanged) -> bool:
        track = self._remote.get(event.track_id)
        if track is None:
            return self._drop(event, f"unknown remote track {event.track_id}")
        if track.kind is TrackKind.AUDIO:
            return self._drop(event, "audio tracks carry no encoding", level=logging.WARNING)
        if track.current_encoding == event.encoding:
            return False
        self._remote[event.track_id] = replace(track, current_encoding=event.encoding)
        return True

    def _on_remote_updated(self, event: RemoteTrackUpdated) -> bool:
        track = self._remote.get(event.track_id)
        if track is None:
            return self._drop(event, f"unknown remote track {event.track_id}")
        self._remote[event.track_id] = replace(track, metadata=event.metadata)
        return True

    def _on_remote_vad(self, event: RemoteTrackVadChanged) -> bool:
        track = self._remote.get(event.track_id)
        if track is None:
            return self._drop(event, f"unknown remote track {event.track_id}")
        if track.kind is TrackKind.VIDEO:
            return self._drop(event, "video tracks carry no voice activity", level=logging.WARNING)
        if track.vad_status is event.vad_status:
            return False
        self._remote[event.track_id] = replace(track, vad_status=event.vad_status)
        return True

    def _on_bandwidth(self, event: BandwidthEstimated) -> bool:
        if self._status not in _LIVE:
            return self._drop(event, "session not live")
        try:
            value = max(0.0, float(event.value))
        except (TypeError, ValueError):
            return self._drop(event, f"invalid estimate {event.value!r}", level=logging.WARNING)
        if value == self._bandwidth:
            return False
        self._bandwidth = value
        return True

    def _on_token(self, event: TokenChanged) -> bool:
        token = event.token or None
        if token == self._token:
            return False
        self._token = token
        return True

    # ------------------------------------------------------------------ public API

    @property
    def peer_id(self) -> str:
        return self._peer_id

    def snapshot(self) -> Session:
        with self._lock:
            return self._snapshot

    def dispatch(self, event: StoreEvent) -> bool:
        """
        Apply ``event``; returns True when it changed the session.
        """

        with self._lock:
            handler = self._handlers.get(type(event))
            if handler is None:
                self._log.warning("Ignoring unsupported event %r", event)
                return False
            if (
                event.generation is not None
                and not isinstance(event, SessionConnecting)
                and event.generation != self._generation
            ):
                return self._drop(event, f"stale generation {event.generation}", level=logging.INFO)
            if not handler(event):
                return False
            snapshot = self._commit_locked()
        self._notify(snapshot)
        return True

    def subscribe(self, callback: SnapshotCallback) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._observer_counter += 1
            token = self._observer_counter
            self._observers[token] = callback
            snapshot = self._snapshot
        try:
            callback(snapshot)
        except Exception:  # pragma: no cover - defensive
            self._log.exception("Store subscriber %s failed during initial snapshot.", token)
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)


__all__ = [
    "BandwidthEstimated",
    "CloseReason",
    "ConnectionStateStore",
    "LocalTrack",
    "RemoteTrack",
    "RemoteTrackArrived",
    "RemoteTrackEncodingChanged",
    "RemoteTrackRemoved",
    "RemoteTrackUpdated",
    "RemoteTrackVadChanged",
    "Session",
    "SessionClosed",
    "SessionConnecting",
    "SessionFailed",
    "SessionJoined",
    "SessionStatus",
    "StoreEvent",
    "TokenChanged",
    "TrackAdded",
    "TrackEnabledChanged",
    "TrackEncodingChanged",
    "TrackMetadataChanged",
    "TrackRemoved",
]
