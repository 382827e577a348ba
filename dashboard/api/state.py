"""
Shared dashboard state container.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from ..config import DashboardConfig
from ..control import ControlPlaneClient, ControlPlaneConfig, PeerCredentials, RoomInfo
from ..core.peer import PeerSlot
from ..core.transport import Transport
from ..transport import LoopbackServer

LOG = logging.getLogger(__name__)


class ControlPlane(Protocol):
    async def health(self) -> dict: ...

    async def create_room(
        self, max_peers: Optional[int] = None, video_codec: Optional[str] = None
    ) -> RoomInfo: ...

    async def list_rooms(self) -> List[RoomInfo]: ...

    async def delete_room(self, room_id: str) -> None: ...

    async def add_peer(self, room_id: str, peer_type: str = "webrtc") -> PeerCredentials: ...

    async def delete_peer(self, room_id: str, peer_id: str) -> None: ...

    async def aclose(self) -> None: ...


class PeerNotFound(KeyError):
    """Raised when an operator addresses a peer slot that does not exist."""


def build_transport(config: DashboardConfig) -> Transport:
    if config.transport == "loopback":
        return LoopbackServer()
    raise ValueError(f"unsupported transport '{config.transport}'")


def build_control(config: DashboardConfig, transport: Transport) -> Any:
    if config.control_url:
        if isinstance(transport, LoopbackServer):
            # The loopback server only admits peers holding tokens it issued itself.
            raise ValueError("control_url cannot be combined with the loopback transport")
        return ControlPlaneClient(
            ControlPlaneConfig(base_url=config.control_url, server_token=config.server_token)
        )
    if isinstance(transport, LoopbackServer):
        return transport
    raise ValueError("control_url is required when the transport is not the loopback server")


class DashboardState:
    """
    Peer slots registry plus the transport and control plane they share.
    """

    def __init__(
        self,
        config: Optional[DashboardConfig] = None,
        *,
        transport: Optional[Transport] = None,
        control: Optional[ControlPlane] = None,
    ) -> None:
        self.config = config or DashboardConfig()
        self.transport = transport or build_transport(self.config)
        self.control: ControlPlane = control or build_control(self.config, self.transport)
        self._slots: Dict[str, PeerSlot] = {}

    @property
    def active_profile(self) -> str:
        return self.config.profile

    def slots(self) -> List[PeerSlot]:
        return list(self._slots.values())

    def add_slot(self, credentials: PeerCredentials, name: Optional[str] = None) -> PeerSlot:
        existing = self._slots.pop(credentials.peer_id, None)
        if existing is not None:
            existing.close()
        slot = PeerSlot(
            credentials.peer_id,
            self.transport,
            room_id=credentials.room_id,
            name=name,
            token=credentials.token,
            signaling=self.config.signaling_target(),
            connect_timeout=self.config.connect_timeout,
        )
        self._slots[slot.peer_id] = slot
        LOG.info("Peer slot %s added for room %s", slot.peer_id, slot.room_id)
        return slot

    def get_slot(self, peer_id: str) -> PeerSlot:
        try:
            return self._slots[peer_id]
        except KeyError:
            raise PeerNotFound(peer_id) from None

    def remove_slot(self, peer_id: str) -> PeerSlot:
        slot = self._slots.pop(peer_id, None)
        if slot is None:
            raise PeerNotFound(peer_id)
        slot.close()
        return slot

    def drop_room(self, room_id: str) -> None:
        for slot in [slot for slot in self._slots.values() if slot.room_id == room_id]:
            self.remove_slot(slot.peer_id)

    async def aclose(self) -> None:
        for slot in self.slots():
            slot.close()
        self._slots.clear()
        await self.control.aclose()
        if self.transport is not self.control and isinstance(self.transport, LoopbackServer):
            await self.transport.aclose()


__all__ = ["ControlPlane", "DashboardState", "PeerNotFound", "build_control", "build_transport"]
