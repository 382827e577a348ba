"""
Contract between the peer session core and the media transport.

The transport owns signalling and media (SDP, ICE, RTP); the core only ever
talks to it through :class:`Transport` and listens to the event stream of the
:class:`SessionHandle` it returns.
"""

from __future__ import annotations

import abc
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from .encoding import BandwidthLimit, EncodingLayer, SimulcastOptions
from .media import MediaSource, MediaTrack, TrackKind, VadStatus

LOG = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Raised by a transport when the media server refuses an operation."""


@dataclass(frozen=True, slots=True)
class SignalingTarget:
    host: str
    protocol: str = "ws"
    path: str = "/socket/peer/websocket"

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.host}{self.path}"


class ServerStatus(str, Enum):
    JOINED = "joined"
    REJECTED = "rejected"
    CLOSED = "closed"
    ERROR = "error"


class RemoteTrackAction(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    UPDATED = "updated"
    ENCODING = "encoding"
    VAD = "vad"


@dataclass(frozen=True, slots=True)
class SessionStatusChanged:
    status: ServerStatus
    detail: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RemoteTrackEvent:
    action: RemoteTrackAction
    track_id: str
    origin_peer_id: Optional[str] = None
    kind: Optional[TrackKind] = None
    metadata: Any = None
    encoding: Optional[EncodingLayer] = None
    vad_status: Optional[VadStatus] = None


@dataclass(frozen=True, slots=True)
class BandwidthEstimateChanged:
    value: float


TransportEvent = Union[SessionStatusChanged, RemoteTrackEvent, BandwidthEstimateChanged]
EventCallback = Callable[[TransportEvent], None]

_handle_ids = itertools.count(1)


@dataclass(eq=False)
class SessionHandle:
    """
    One open signalling session.

    Listeners are called synchronously, in subscription order, for every event
    the transport emits on this session.
    """

    peer_metadata: Any = None
    signaling: Optional[SignalingTarget] = None
    id: str = field(default_factory=lambda: f"session-{next(_handle_ids)}")
    closed: bool = False
    _listener_counter: int = field(default=0, repr=False)
    _listeners: Dict[int, EventCallback] = field(default_factory=dict, repr=False)

    def subscribe(self, callback: EventCallback) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._listener_counter += 1
        token = self._listener_counter
        self._listeners[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._listeners.pop(token, None)

    def emit(self, event: TransportEvent) -> None:
        for token, callback in list(self._listeners.items()):
            try:
                callback(event)
            except Exception:  # pragma: no cover - listener failures must not stop the stream
                LOG.exception("Session %s listener %s failed.", self.id, token)


class Transport(abc.ABC):
    """
    Base class for media transports.

    ``open_session`` and ``publish_track`` are the only suspension points; the
    remaining primitives take effect synchronously. Implementations raise
    :class:`TransportError` when the server refuses a request and never
    deliver session events from inside ``open_session``.
    """

    @abc.abstractmethod
    async def open_session(
        self,
        token: str,
        peer_metadata: Any,
        signaling: Optional[SignalingTarget] = None,
    ) -> SessionHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def close_session(self, handle: SessionHandle) -> None:
        """Close ``handle``; calling it again is harmless."""

    @abc.abstractmethod
    async def publish_track(
        self,
        handle: SessionHandle,
        track: MediaTrack,
        source: MediaSource,
        metadata: Any = None,
        simulcast: Optional[SimulcastOptions] = None,
        max_bandwidth: BandwidthLimit = None,
    ) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    def unpublish_track(self, handle: SessionHandle, track_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def set_track_encoding_enabled(
        self, handle: SessionHandle, track_id: str, layer: EncodingLayer, enabled: bool
    ) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def set_preferred_receive_encoding(
        self, handle: SessionHandle, track_id: str, layer: EncodingLayer
    ) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def update_track_metadata(self, handle: SessionHandle, track_id: str, metadata: Any) -> None:
        """Replace the metadata of a published track; receivers get an update."""


__all__ = [
    "BandwidthEstimateChanged",
    "EventCallback",
    "RemoteTrackAction",
    "RemoteTrackEvent",
    "ServerStatus",
    "SessionHandle",
    "SessionStatusChanged",
    "SignalingTarget",
    "Transport",
    "TransportError",
    "TransportEvent",
]
