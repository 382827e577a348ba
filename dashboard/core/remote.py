"""
Remote track observer.

Translates the transport's remote-track events into store dispatches, one to
one and in arrival order. It holds no state of its own beyond the
subscription.
"""

from __future__ import annotations

import logging
from typing import Optional

from .encoding import EncodingLayer
from .errors import EncodingError, EncodingFailure
from .media import TrackKind, VadStatus
from .store import (
    ConnectionStateStore,
    RemoteTrack,
    RemoteTrackArrived,
    RemoteTrackEncodingChanged,
    RemoteTrackRemoved,
    RemoteTrackUpdated,
    RemoteTrackVadChanged,
    StoreEvent,
)
from .transport import (
    RemoteTrackAction,
    RemoteTrackEvent,
    SessionHandle,
    Transport,
    TransportError,
    TransportEvent,
)

LOG = logging.getLogger(__name__)


class RemoteTrackObserver:
    def __init__(self, store: ConnectionStateStore, transport: Transport) -> None:
        self._store = store
        self._transport = transport
        self._handle: Optional[SessionHandle] = None
        self._subscription: Optional[int] = None
        self._generation: Optional[int] = None
        self._log = LOG.getChild(store.peer_id)

    @property
    def attached(self) -> bool:
        return self._handle is not None

    def attach(self, handle: SessionHandle, generation: Optional[int] = None) -> None:
        self.detach()
        self._handle = handle
        self._generation = generation
        self._subscription = handle.subscribe(self._on_event)

    def detach(self) -> None:
        if self._handle is not None and self._subscription is not None:
            self._handle.unsubscribe(self._subscription)
        self._handle = None
        self._subscription = None
        self._generation = None

    def _translate(self, event: RemoteTrackEvent) -> StoreEvent:
        generation = self._generation
        known = self._store.snapshot().remote_track(event.track_id)
        if event.action is RemoteTrackAction.ADDED:
            if known is not None:
                self._log.warning("Protocol violation: track %s announced twice", event.track_id)
            return RemoteTrackArrived(
                RemoteTrack(
                    track_id=event.track_id,
                    origin_peer_id=event.origin_peer_id,
                    kind=event.kind,
                    current_encoding=event.encoding if event.kind is not TrackKind.AUDIO else None,
                    metadata=event.metadata,
                    vad_status=(event.vad_status or VadStatus.SILENCE) if event.kind is TrackKind.AUDIO else None,
                ),
                generation=generation,
            )
        if known is None:
            self._log.warning(
                "Protocol violation: %s for unknown track %s", event.action.value, event.track_id
            )
        if event.action is RemoteTrackAction.REMOVED:
            return RemoteTrackRemoved(event.track_id, generation=generation)
        if event.action is RemoteTrackAction.ENCODING:
            return RemoteTrackEncodingChanged(event.track_id, event.encoding, generation=generation)
        if event.action is RemoteTrackAction.VAD:
            vad_status = VadStatus(event.vad_status or VadStatus.SILENCE)
            return RemoteTrackVadChanged(event.track_id, vad_status, generation=generation)
        return RemoteTrackUpdated(event.track_id, event.metadata, generation=generation)

    def _on_event(self, event: TransportEvent) -> None:
        if not isinstance(event, RemoteTrackEvent):
            return
        self._store.dispatch(self._translate(event))

    def prefer_encoding(self, track_id: str, layer: EncodingLayer) -> None:
        """Ask the server to forward ``layer`` of a received video track."""

        layer = EncodingLayer.parse(layer)
        track = self._store.snapshot().remote_track(track_id)
        if track is None or self._handle is None:
            raise EncodingError(EncodingFailure.UNKNOWN_TRACK, f"unknown remote track {track_id}")
        if track.kind is TrackKind.AUDIO:
            raise EncodingError(EncodingFailure.NOT_SIMULCAST, f"remote track {track_id} is audio")
        try:
            self._transport.set_preferred_receive_encoding(self._handle, track_id, layer)
        except TransportError as exc:
            raise EncodingError(EncodingFailure.TRANSPORT_REJECTED, str(exc)) from exc


__all__ = ["RemoteTrackObserver"]
