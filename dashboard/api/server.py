"""
FastAPI operator surface for the peer session dashboard.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterator, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from ..config import DashboardConfig, read_profiles
from ..control import ControlPlaneConnectionError, ControlPlaneError
from ..core.encoding import EncodingLayer, EncodingRequest, SimulcastConfig
from ..core.errors import (
    ConnectFailure,
    DashboardError,
    EncodingFailure,
    InputError,
    PublishFailure,
    UnpublishFailure,
)
from ..core.media import MOCK_SOURCE_IDS, TrackKind, mock_source
from ..core.peer import PeerSlot
from ..core.store import CloseReason, Session, SessionStatus
from ..core.transport import Transport, TransportError
from ..utils.inputs import (
    parse_flag,
    parse_layers,
    parse_max_bandwidth,
    parse_max_peers,
    parse_metadata,
    parse_video_codec,
)
from . import schemas
from .state import ControlPlane, DashboardState, PeerNotFound

LOG = logging.getLogger(__name__)

ERROR_STATUS: Dict[Any, int] = {
    ConnectFailure.MISSING_TOKEN: 400,
    ConnectFailure.TIMEOUT: 504,
    ConnectFailure.TRANSPORT_REJECTED: 502,
    PublishFailure.NO_TRACK_IN_SOURCE: 400,
    PublishFailure.NOT_CONNECTED: 409,
    PublishFailure.ALREADY_PENDING: 409,
    PublishFailure.TRANSPORT_REJECTED: 502,
    UnpublishFailure.TRANSPORT_REJECTED: 502,
    EncodingFailure.UNKNOWN_TRACK: 404,
    EncodingFailure.NOT_SIMULCAST: 400,
    EncodingFailure.LAST_ACTIVE_LAYER: 409,
    EncodingFailure.TRANSPORT_REJECTED: 502,
}

Listener = Callable[[dict], None]


class PeerEventHub:
    """Fan out per-peer notification frames to connected event sockets."""

    def __init__(self) -> None:
        self._listeners: Dict[str, Dict[int, Listener]] = defaultdict(dict)
        self._counter = itertools.count(1)

    def add(self, peer_id: str, listener: Listener) -> int:
        token = next(self._counter)
        self._listeners[peer_id][token] = listener
        return token

    def remove(self, peer_id: str, token: int) -> None:
        listeners = self._listeners.get(peer_id)
        if listeners is None:
            return
        listeners.pop(token, None)
        if not listeners:
            self._listeners.pop(peer_id, None)

    def publish(self, peer_id: str, payload: dict) -> None:
        for listener in list(self._listeners.get(peer_id, {}).values()):
            try:
                listener(payload)
            except Exception:  # pragma: no cover - defensive
                LOG.exception("Event listener for %s failed", peer_id)


def notification(peer_id: str, message: str, reason: Optional[str] = None, level: str = "error") -> dict:
    return schemas.NotificationModel(peerId=peer_id, message=message, reason=reason, level=level).model_dump()


def slot_payload(slot: PeerSlot) -> dict:
    return {
        "peerId": slot.peer_id,
        "roomId": slot.room_id,
        "name": slot.name,
        "session": slot.snapshot().to_dict(),
    }


def create_app(
    config: Optional[DashboardConfig] = None,
    *,
    transport: Optional[Transport] = None,
    control: Optional[ControlPlane] = None,
    state: Optional[DashboardState] = None,
    lifespan: Optional[Callable[..., Any]] = None,
) -> FastAPI:
    dashboard_state = state or DashboardState(config, transport=transport, control=control)
    hub = PeerEventHub()

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        LOG.info("Dashboard API starting (profile %s)", dashboard_state.active_profile)
        try:
            if lifespan is not None:
                async with lifespan(app):
                    yield
            else:
                yield
        finally:
            await dashboard_state.aclose()
            LOG.info("Dashboard API stopped")

    app = FastAPI(title="Peer Session Dashboard API", lifespan=app_lifespan)
    app.state.dashboard = dashboard_state
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_slot(peer_id: str) -> PeerSlot:
        try:
            return dashboard_state.get_slot(peer_id)
        except PeerNotFound:
            raise HTTPException(status_code=404, detail=f"Peer '{peer_id}' not found") from None

    @contextlib.contextmanager
    def translate_errors(peer_id: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except InputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except DashboardError as exc:
            if peer_id is not None:
                hub.publish(peer_id, notification(peer_id, str(exc), exc.reason.value))
            status = ERROR_STATUS.get(exc.reason, 500)
            raise HTTPException(status_code=status, detail={"reason": exc.reason.value, "message": str(exc)}) from exc
        except ControlPlaneConnectionError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except ControlPlaneError as exc:
            status = 404 if exc.status_code == 404 else 502
            raise HTTPException(status_code=status, detail=str(exc)) from exc
        except TransportError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    # ------------------------------------------------------------------ service

    @app.get("/healthz")
    async def healthz() -> dict:
        return {
            "status": "ok",
            "profile": dashboard_state.active_profile,
            "peers": len(dashboard_state.slots()),
        }

    @app.get("/profiles")
    async def list_profiles() -> dict:
        return {"profiles": read_profiles()}

    # ------------------------------------------------------------------ rooms

    @app.get("/rooms")
    async def list_rooms() -> dict:
        with translate_errors():
            rooms = await dashboard_state.control.list_rooms()
        return {"rooms": [room.to_dict() for room in rooms]}

    @app.post("/rooms")
    async def create_room(request: schemas.CreateRoomRequest) -> dict:
        with translate_errors():
            max_peers = parse_max_peers(request.max_peers)
            video_codec = parse_video_codec(request.video_codec)
            room = await dashboard_state.control.create_room(max_peers, video_codec)
        return room.to_dict()

    @app.delete("/rooms/{room_id}")
    async def delete_room(room_id: str) -> dict:
        with translate_errors():
            await dashboard_state.control.delete_room(room_id)
        dashboard_state.drop_room(room_id)
        return {"roomId": room_id, "deleted": True}

    @app.post("/rooms/{room_id}/peers")
    async def add_peer(room_id: str, request: Optional[schemas.AddPeerRequest] = None) -> dict:
        request = request or schemas.AddPeerRequest()
        with translate_errors():
            credentials = await dashboard_state.control.add_peer(room_id, request.peer_type)
        slot = dashboard_state.add_slot(credentials, name=request.name)
        return slot_payload(slot)

    # ------------------------------------------------------------------ peers

    @app.get("/peers")
    async def list_peers() -> dict:
        return {"peers": [slot_payload(slot) for slot in dashboard_state.slots()]}

    @app.get("/peers/{peer_id}")
    async def get_peer(peer_id: str) -> dict:
        return slot_payload(get_slot(peer_id))

    @app.delete("/peers/{peer_id}")
    async def delete_peer(peer_id: str) -> dict:
        slot = get_slot(peer_id)
        if slot.room_id is not None:
            with translate_errors():
                await dashboard_state.control.delete_peer(slot.room_id, peer_id)
        dashboard_state.remove_slot(peer_id)
        return {"peerId": peer_id, "deleted": True}

    @app.put("/peers/{peer_id}/token")
    async def set_token(peer_id: str, request: schemas.TokenRequest) -> dict:
        slot = get_slot(peer_id)
        slot.session.set_token(request.token.strip())
        return slot_payload(slot)

    @app.delete("/peers/{peer_id}/token")
    async def clear_token(peer_id: str) -> dict:
        slot = get_slot(peer_id)
        slot.session.clear_token()
        return slot_payload(slot)

    @app.post("/peers/{peer_id}/connect")
    async def connect_peer(peer_id: str, request: Optional[schemas.ConnectRequest] = None) -> dict:
        slot = get_slot(peer_id)
        request = request or schemas.ConnectRequest()
        with translate_errors(peer_id):
            if request.token:
                slot.session.set_token(request.token.strip())
            await slot.connect()
            if request.wait:
                await slot.session.wait_joined()
        return slot_payload(slot)

    @app.post("/peers/{peer_id}/disconnect")
    async def disconnect_peer(peer_id: str) -> dict:
        slot = get_slot(peer_id)
        slot.session.disconnect()
        return slot_payload(slot)

    # ------------------------------------------------------------------ local tracks

    @app.post("/peers/{peer_id}/tracks")
    async def publish_track(peer_id: str, request: schemas.PublishRequest) -> dict:
        slot = get_slot(peer_id)
        with translate_errors(peer_id):
            if request.source not in MOCK_SOURCE_IDS:
                raise InputError(f"unknown source '{request.source}'; expected one of {', '.join(MOCK_SOURCE_IDS)}")
            kind = TrackKind(request.kind)
            simulcast = SimulcastConfig(
                enabled=parse_flag(request.simulcast),
                layers=parse_layers(request.encodings),
            )
            max_bandwidth = parse_max_bandwidth(request.max_bandwidth)
            metadata = parse_metadata(request.metadata, parse_flag(request.attach_metadata, default=True))
            track_id = await slot.tracks.publish(
                kind,
                mock_source(request.source, (kind,)),
                metadata,
                simulcast,
                max_bandwidth,
            )
        track = slot.snapshot().local_track(track_id)
        return {"trackId": track_id, "track": track.to_dict() if track is not None else None}

    @app.delete("/peers/{peer_id}/tracks/{track_id}")
    async def unpublish_track(peer_id: str, track_id: str) -> dict:
        slot = get_slot(peer_id)
        with translate_errors(peer_id):
            slot.tracks.unpublish(track_id)
        return slot_payload(slot)

    @app.post("/peers/{peer_id}/tracks/{track_id}/encodings")
    async def update_encodings(peer_id: str, track_id: str, request: schemas.EncodingsRequest) -> dict:
        slot = get_slot(peer_id)
        with translate_errors(peer_id):
            if request.layer is not None:
                try:
                    layer = EncodingLayer.parse(request.layer)
                except ValueError as exc:
                    raise InputError(str(exc)) from exc
                slot.tracks.set_encoding(track_id, layer, True if request.enabled is None else request.enabled)
            else:
                slot.tracks.apply_policy(
                    track_id,
                    EncodingRequest(
                        enabled=True,
                        layers=parse_layers(request.encodings),
                        max_bandwidth=parse_max_bandwidth(request.max_bandwidth),
                    ),
                )
        track = slot.snapshot().local_track(track_id)
        return {"trackId": track_id, "track": track.to_dict() if track is not None else None}

    @app.post("/peers/{peer_id}/tracks/{track_id}/enabled")
    async def set_track_enabled(peer_id: str, track_id: str, request: schemas.TrackEnabledRequest) -> dict:
        slot = get_slot(peer_id)
        with translate_errors(peer_id):
            slot.tracks.set_track_enabled(track_id, request.enabled)
        track = slot.snapshot().local_track(track_id)
        return {"trackId": track_id, "track": track.to_dict() if track is not None else None}

    @app.put("/peers/{peer_id}/tracks/{track_id}/metadata")
    async def update_track_metadata(peer_id: str, track_id: str, request: schemas.TrackMetadataRequest) -> dict:
        slot = get_slot(peer_id)
        with translate_errors(peer_id):
            slot.tracks.update_metadata(track_id, parse_metadata(request.metadata))
        track = slot.snapshot().local_track(track_id)
        return {"trackId": track_id, "track": track.to_dict() if track is not None else None}

    # ------------------------------------------------------------------ remote tracks

    @app.post("/peers/{peer_id}/remote-tracks/{track_id}/encoding")
    async def prefer_encoding(peer_id: str, track_id: str, request: schemas.PreferEncodingRequest) -> dict:
        slot = get_slot(peer_id)
        with translate_errors(peer_id):
            try:
                layer = EncodingLayer.parse(request.encoding)
            except ValueError as exc:
                raise InputError(str(exc)) from exc
            slot.remote.prefer_encoding(track_id, layer)
        return {"trackId": track_id, "requested": layer.value}

    # ------------------------------------------------------------------ events

    @app.websocket("/peers/{peer_id}/events")
    async def peer_events(websocket: WebSocket, peer_id: str) -> None:
        try:
            slot = dashboard_state.get_slot(peer_id)
        except PeerNotFound:
            await websocket.close(code=4404, reason="unknown peer")
            return
        await websocket.accept()

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[dict] = asyncio.Queue()
        previous: Dict[str, Optional[Session]] = {"snapshot": None}

        def enqueue(payload: dict) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, payload)

        def on_snapshot(snapshot: Session) -> None:
            last = previous["snapshot"]
            previous["snapshot"] = snapshot
            enqueue({"type": "snapshot", "session": snapshot.to_dict()})
            if last is None or last.status is snapshot.status:
                return
            if snapshot.status is SessionStatus.FAILED and snapshot.failure is not None:
                enqueue(notification(peer_id, f"Connection failed: {snapshot.failure.value}", snapshot.failure.value))
            elif snapshot.status is SessionStatus.CLOSED and snapshot.close_reason is CloseReason.SERVER:
                enqueue(notification(peer_id, "Session closed by the server", "server", level="warning"))

        subscription = slot.store.subscribe(on_snapshot)
        hub_token = hub.add(peer_id, enqueue)
        logger = LOG.getChild(f"ws.{peer_id}")

        async def sender() -> None:
            while True:
                payload = await queue.get()
                await websocket.send_json(payload)

        async def receiver() -> None:
            while True:
                await websocket.receive_text()

        tasks = [asyncio.create_task(sender()), asyncio.create_task(receiver())]
        try:
            done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("Event stream ended with %r", exc)
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                    await task
            slot.store.unsubscribe(subscription)
            hub.remove(peer_id, hub_token)
            with contextlib.suppress(RuntimeError, WebSocketDisconnect):
                await websocket.close()
            logger.debug("Event stream closed")

    return app


__all__ = ["ERROR_STATUS", "PeerEventHub", "create_app"]
