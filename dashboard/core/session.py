"""
Session controller: the connect/disconnect state machine of one peer.

    idle --connect--> connecting --joined--> joined
    connecting --timeout | rejected--> failed
    connecting --disconnect--> closed
    joined --disconnect | server close--> closed
    failed | closed --connect--> connecting
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from .errors import ConnectError, ConnectFailure
from .remote import RemoteTrackObserver
from .store import (
    BandwidthEstimated,
    CloseReason,
    ConnectionStateStore,
    SessionClosed,
    SessionConnecting,
    SessionFailed,
    SessionJoined,
    SessionStatus,
    TokenChanged,
)
from .tracks import TrackLifecycleController
from .transport import (
    BandwidthEstimateChanged,
    ServerStatus,
    SessionHandle,
    SessionStatusChanged,
    SignalingTarget,
    Transport,
    TransportError,
    TransportEvent,
)

LOG = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 3.0


class SessionController:
    """
    Drives one peer's session through the transport.

    A connect attempt arms a timeout guard; if the server has not confirmed the
    join when it fires, the session is torn down and marked failed. Teardown is
    idempotent and always runs in the same order: stop local media, close the
    transport session, then clear the store.
    """

    def __init__(
        self,
        store: ConnectionStateStore,
        transport: Transport,
        tracks: TrackLifecycleController,
        observer: RemoteTrackObserver,
        *,
        signaling: Optional[SignalingTarget] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self._store = store
        self._transport = transport
        self._tracks = tracks
        self._observer = observer
        self._signaling = signaling
        self._connect_timeout = float(connect_timeout)
        self._handle: Optional[SessionHandle] = None
        self._subscription: Optional[int] = None
        self._guard: Optional[asyncio.TimerHandle] = None
        self._settled = asyncio.Event()
        self._failure: Optional[ConnectFailure] = None
        self._log = LOG.getChild(store.peer_id)

    # ------------------------------------------------------------------ properties

    @property
    def handle(self) -> Optional[SessionHandle]:
        return self._handle

    @property
    def connect_timeout(self) -> float:
        return self._connect_timeout

    @property
    def status(self) -> SessionStatus:
        return self._store.snapshot().status

    # ------------------------------------------------------------------ tokens

    def set_token(self, token: Optional[str]) -> None:
        self._store.dispatch(TokenChanged((token or "").strip() or None))

    def clear_token(self) -> None:
        self._store.dispatch(TokenChanged(None))

    # ------------------------------------------------------------------ connect

    async def connect(self, token: Optional[str], peer_metadata: Any = None) -> None:
        if not token:
            raise ConnectError(
                ConnectFailure.MISSING_TOKEN,
                "cannot connect to the media server because the token is empty",
            )
        if not self._store.dispatch(SessionConnecting(token)):
            self._log.info("connect() ignored; session is %s", self.status.value)
            return

        generation = self._store.snapshot().generation
        self._settled = asyncio.Event()
        self._failure = None
        self._arm_guard(generation)
        self._log.info("Connecting (generation %s)", generation)

        try:
            handle = await self._transport.open_session(token, peer_metadata, self._signaling)
        except TransportError as exc:
            if self._is_current(generation, SessionStatus.CONNECTING):
                self._fail(ConnectFailure.TRANSPORT_REJECTED)
                raise ConnectError(ConnectFailure.TRANSPORT_REJECTED, str(exc)) from exc
            # The guard or a disconnect settled this attempt first; report that outcome.
            failure = self._store.snapshot().failure or ConnectFailure.TRANSPORT_REJECTED
            raise ConnectError(failure, str(exc)) from exc

        if not self._is_current(generation, SessionStatus.CONNECTING):
            # Timed out or disconnected while the transport was opening.
            self._log.info("Closing late session %s for stale generation %s", handle.id, generation)
            self._transport.close_session(handle)
            return

        self._handle = handle
        self._subscription = handle.subscribe(self._on_transport_event)
        self._tracks.bind(handle)
        self._observer.attach(handle, generation)

    async def wait_joined(self) -> None:
        """
        Wait for the current connect attempt to settle.

        Returns once the session joined or the user disconnected; raises
        :class:`ConnectError` when the attempt failed.
        """

        await self._settled.wait()
        if self._failure is not None:
            raise ConnectError(self._failure)

    # ------------------------------------------------------------------ disconnect

    def disconnect(self) -> None:
        if self.status not in (SessionStatus.CONNECTING, SessionStatus.JOINED):
            return
        self._teardown()
        self._store.dispatch(SessionClosed(CloseReason.USER))
        self._settle(None)
        self._log.info("Disconnected by user")

    # ------------------------------------------------------------------ internals

    def _is_current(self, generation: int, status: SessionStatus) -> bool:
        snapshot = self._store.snapshot()
        return snapshot.generation == generation and snapshot.status is status

    def _arm_guard(self, generation: int) -> None:
        self._cancel_guard()
        loop = asyncio.get_running_loop()
        self._guard = loop.call_later(self._connect_timeout, self._on_timeout, generation)

    def _cancel_guard(self) -> None:
        if self._guard is not None:
            self._guard.cancel()
            self._guard = None

    def _settle(self, failure: Optional[ConnectFailure]) -> None:
        if self._settled.is_set():
            return
        self._failure = failure
        self._settled.set()

    def _on_timeout(self, generation: int) -> None:
        self._guard = None
        if not self._is_current(generation, SessionStatus.CONNECTING):
            return
        self._log.warning("No join confirmation after %.1fs; giving up", self._connect_timeout)
        self._fail(ConnectFailure.TIMEOUT)

    def _fail(self, failure: ConnectFailure) -> None:
        self._teardown()
        self._store.dispatch(SessionFailed(failure))
        self._settle(failure)

    def _teardown(self) -> None:
        self._cancel_guard()
        self._observer.detach()
        self._tracks.release()
        handle, self._handle = self._handle, None
        if handle is not None:
            if self._subscription is not None:
                handle.unsubscribe(self._subscription)
            self._transport.close_session(handle)
        self._subscription = None

    def _on_transport_event(self, event: TransportEvent) -> None:
        if isinstance(event, BandwidthEstimateChanged):
            self._store.dispatch(BandwidthEstimated(event.value))
            return
        if not isinstance(event, SessionStatusChanged):
            return

        status = self.status
        if event.status is ServerStatus.JOINED:
            if self._store.dispatch(SessionJoined()):
                self._cancel_guard()
                self._settle(None)
                self._log.info("Joined")
        elif event.status in (ServerStatus.REJECTED, ServerStatus.ERROR):
            if status is SessionStatus.CONNECTING:
                self._log.warning("Server refused the session: %s", event.detail or event.status.value)
                self._fail(ConnectFailure.TRANSPORT_REJECTED)
            elif status is SessionStatus.JOINED:
                self._log.warning("Transport error on a joined session: %s", event.detail)
                self._teardown()
                self._store.dispatch(SessionClosed(CloseReason.SERVER))
        elif event.status is ServerStatus.CLOSED:
            if status is SessionStatus.CONNECTING:
                self._log.warning("Server closed the session before the join")
                self._fail(ConnectFailure.TRANSPORT_REJECTED)
            elif status is SessionStatus.JOINED:
                self._log.info("Server closed the session")
                self._teardown()
                self._store.dispatch(SessionClosed(CloseReason.SERVER))


__all__ = ["DEFAULT_CONNECT_TIMEOUT", "SessionController"]
