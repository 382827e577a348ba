"""
Local track lifecycle: publish, unpublish and per-layer encoding control.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .encoding import (
    EncodingLayer,
    EncodingPlan,
    EncodingRequest,
    SimulcastConfig,
    normalise_bandwidth,
    resolve,
)
from .errors import (
    EncodingError,
    EncodingFailure,
    PublishError,
    PublishFailure,
    UnpublishError,
    UnpublishFailure,
)
from .media import MediaSource, TrackKind
from .store import (
    ConnectionStateStore,
    LocalTrack,
    SessionStatus,
    TrackAdded,
    TrackEnabledChanged,
    TrackEncodingChanged,
    TrackMetadataChanged,
    TrackRemoved,
)
from .transport import SessionHandle, Transport, TransportError

LOG = logging.getLogger(__name__)


class TrackLifecycleController:
    """
    Publishes local media through the transport and records the result in
    the store.

    At most one publish per media kind is in flight at a time. Publishes are
    tagged with the session generation they started in, so a completion that
    arrives after teardown cannot resurrect a track in a newer session.
    """

    def __init__(self, store: ConnectionStateStore, transport: Transport) -> None:
        self._store = store
        self._transport = transport
        self._handle: Optional[SessionHandle] = None
        # kind -> generation of the publish currently in flight
        self._pending: Dict[TrackKind, int] = {}
        self._log = LOG.getChild(store.peer_id)

    # ------------------------------------------------------------------ wiring

    def bind(self, handle: SessionHandle) -> None:
        self._handle = handle

    def release(self) -> None:
        """
        Stop every published source and forget in-flight publishes.

        Called by the session controller during teardown, before the store is
        cleared.
        """

        for track in self._store.snapshot().local_tracks.values():
            if track.source is not None:
                track.source.stop()
        if self._pending:
            self._log.info("Abandoning in-flight publishes: %s", sorted(k.value for k in self._pending))
        self._pending.clear()
        self._handle = None

    def is_pending(self, kind: TrackKind) -> bool:
        return kind in self._pending

    # ------------------------------------------------------------------ publish

    async def publish(
        self,
        kind: TrackKind,
        source: MediaSource,
        metadata: Any = None,
        simulcast: Optional[SimulcastConfig] = None,
        max_bandwidth: Optional[float] = None,
    ) -> str:
        kind = TrackKind(kind)
        snapshot = self._store.snapshot()
        handle = self._handle
        if snapshot.status is not SessionStatus.JOINED or handle is None:
            raise PublishError(PublishFailure.NOT_CONNECTED)
        media_track = source.first_track(kind)
        if media_track is None:
            raise PublishError(
                PublishFailure.NO_TRACK_IN_SOURCE,
                f"source {source.source_id} has no {kind.value} track",
            )
        if kind in self._pending:
            raise PublishError(
                PublishFailure.ALREADY_PENDING,
                f"a {kind.value} publish is already in flight",
            )

        generation = snapshot.generation
        plan: Optional[EncodingPlan] = None
        cap = normalise_bandwidth(max_bandwidth)
        if kind is TrackKind.VIDEO:
            plan = resolve(EncodingRequest.from_config(simulcast, cap))

        self._pending[kind] = generation
        try:
            track_id = await self._transport.publish_track(
                handle,
                media_track,
                source,
                metadata,
                plan.simulcast_options() if plan is not None else None,
                plan.bandwidth_limit() if plan is not None else cap,
            )
        except TransportError as exc:
            self._log.warning("Transport rejected %s publish: %s", kind.value, exc)
            raise PublishError(PublishFailure.TRANSPORT_REJECTED, str(exc)) from exc
        finally:
            if self._pending.get(kind) == generation:
                del self._pending[kind]

        track = LocalTrack(
            track_id=track_id,
            kind=kind,
            enabled=True,
            simulcast_enabled=bool(plan and plan.simulcast),
            active_encodings=plan.enabled_layers if plan is not None else (),
            max_bandwidth=cap,
            metadata=metadata,
            source=source,
        )
        if not self._store.dispatch(TrackAdded(track, generation=generation)):
            # Session went away (or was re-opened) while the transport was busy.
            self._log.info("Discarding late publish of %s (generation %s)", track_id, generation)
            source.stop()
            raise PublishError(PublishFailure.NOT_CONNECTED, "session ended before the publish completed")
        self._log.info("Published %s track %s", kind.value, track_id)
        return track_id

    # ------------------------------------------------------------------ unpublish

    def unpublish(self, track_id: str) -> None:
        track = self._store.snapshot().local_track(track_id)
        if track is None:
            return
        if track.source is not None:
            track.source.stop()
        handle = self._handle
        try:
            if handle is not None:
                self._transport.unpublish_track(handle, track_id)
        except TransportError as exc:
            raise UnpublishError(UnpublishFailure.TRANSPORT_REJECTED, str(exc)) from exc
        finally:
            self._store.dispatch(TrackRemoved(track_id))
        self._log.info("Unpublished track %s", track_id)

    # ------------------------------------------------------------------ encodings

    def _simulcast_track(self, track_id: str) -> LocalTrack:
        track = self._store.snapshot().local_track(track_id)
        if track is None:
            raise EncodingError(EncodingFailure.UNKNOWN_TRACK, f"unknown track {track_id}")
        if not track.simulcast_enabled:
            raise EncodingError(EncodingFailure.NOT_SIMULCAST, f"track {track_id} is not simulcast")
        return track

    def _set_layer(self, track_id: str, layer: EncodingLayer, enabled: bool) -> None:
        handle = self._handle
        if handle is None:
            raise EncodingError(EncodingFailure.UNKNOWN_TRACK, "session is not connected")
        try:
            self._transport.set_track_encoding_enabled(handle, track_id, layer, enabled)
        except TransportError as exc:
            raise EncodingError(EncodingFailure.TRANSPORT_REJECTED, str(exc)) from exc

    def set_encoding(self, track_id: str, layer: EncodingLayer, enabled: bool) -> None:
        layer = EncodingLayer.parse(layer)
        track = self._simulcast_track(track_id)
        if not enabled and track.active_encodings == (layer,):
            raise EncodingError(
                EncodingFailure.LAST_ACTIVE_LAYER,
                f"{layer.name.lower()} is the only active layer of {track_id}",
            )
        self._set_layer(track_id, layer, enabled)
        self._store.dispatch(TrackEncodingChanged(track_id, layer, bool(enabled)))

    def apply_policy(self, track_id: str, request: EncodingRequest) -> EncodingPlan:
        """
        Re-apply a full simulcast policy to a published track.

        Every layer receives an explicit enable or disable so nothing from the
        previous policy survives.
        """

        self._simulcast_track(track_id)
        plan = resolve(request)
        if not plan.enabled_layers:
            raise EncodingError(
                EncodingFailure.LAST_ACTIVE_LAYER,
                "a published simulcast track needs at least one active layer",
            )
        # Enable first so the track never passes through an all-disabled state.
        for layer in plan.enabled_layers:
            self._set_layer(track_id, layer, True)
            self._store.dispatch(TrackEncodingChanged(track_id, layer, True))
        for layer in plan.disabled_layers:
            self._set_layer(track_id, layer, False)
            self._store.dispatch(TrackEncodingChanged(track_id, layer, False))
        return plan

    def set_track_enabled(self, track_id: str, enabled: bool) -> None:
        track = self._store.snapshot().local_track(track_id)
        if track is None:
            raise EncodingError(EncodingFailure.UNKNOWN_TRACK, f"unknown track {track_id}")
        if track.source is not None:
            for media_track in track.source.tracks_of(track.kind):
                media_track.enabled = bool(enabled)
        self._store.dispatch(TrackEnabledChanged(track_id, bool(enabled)))

    def update_metadata(self, track_id: str, metadata: Any) -> None:
        track = self._store.snapshot().local_track(track_id)
        handle = self._handle
        if track is None or handle is None:
            raise EncodingError(EncodingFailure.UNKNOWN_TRACK, f"unknown track {track_id}")
        try:
            self._transport.update_track_metadata(handle, track_id, metadata)
        except TransportError as exc:
            raise EncodingError(EncodingFailure.TRANSPORT_REJECTED, str(exc)) from exc
        self._store.dispatch(TrackMetadataChanged(track_id, metadata))


__all__ = ["TrackLifecycleController"]
