"""
Thin async client for the media server's REST control plane.

Rooms and peers are created here; the returned peer token is what the session
controller later hands to the transport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .models import VIDEO_CODECS, PeerCredentials, RoomInfo

LOG = logging.getLogger(__name__)


class ControlPlaneError(RuntimeError):
    """Raised when the control plane rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ControlPlaneConnectionError(ControlPlaneError):
    """Raised when the control plane cannot be reached over the network."""


@dataclass(slots=True)
class ControlPlaneConfig:
    base_url: str = "http://localhost:5002"
    server_token: Optional[str] = None
    timeout: float = 10.0


def _room_from_payload(payload: Dict[str, Any], address: str) -> RoomInfo:
    config = payload.get("config") or {}
    peers = payload.get("peers") or []
    return RoomInfo(
        room_id=str(payload.get("id")),
        room_address=address,
        max_peers=config.get("maxPeers"),
        video_codec=config.get("videoCodec"),
        peers=[str(peer.get("id")) for peer in peers if isinstance(peer, dict)],
    )


class ControlPlaneClient:
    def __init__(
        self,
        config: ControlPlaneConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def address(self) -> str:
        return httpx.URL(self._config.base_url).netloc.decode("ascii")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {}
            if self._config.server_token:
                headers["Authorization"] = f"Bearer {self._config.server_token}"
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                headers=headers,
                timeout=self._config.timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.ConnectError as exc:
            raise ControlPlaneConnectionError(
                f"Unable to reach the control plane at {self._config.base_url}: {exc}"
            ) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ControlPlaneError(
                f"Control plane returned HTTP {status} for {method} {path}: {exc.response.text.strip()}",
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            raise ControlPlaneError(f"Control plane request {method} {path} failed: {exc}") from exc
        if response.status_code == 204 or not response.content:
            return None
        return response.json().get("data")

    async def health(self) -> dict:
        return await self._request("GET", "/health") or {}

    async def create_room(
        self, max_peers: Optional[int] = None, video_codec: Optional[str] = None
    ) -> RoomInfo:
        body: Dict[str, Any] = {}
        if max_peers is not None:
            body["maxPeers"] = int(max_peers)
        if video_codec is not None:
            if video_codec not in VIDEO_CODECS:
                raise ValueError(f"Unsupported video codec '{video_codec}'")
            body["videoCodec"] = video_codec
        data = await self._request("POST", "/room", json=body)
        address = data.get("jellyfish_address") or self.address
        if address != self.address:
            LOG.info("Room created on %s", address)
        return _room_from_payload(data.get("room") or {}, address)

    async def list_rooms(self) -> List[RoomInfo]:
        data = await self._request("GET", "/room") or []
        return [_room_from_payload(room, self.address) for room in data]

    async def delete_room(self, room_id: str) -> None:
        await self._request("DELETE", f"/room/{room_id}")

    async def add_peer(self, room_id: str, peer_type: str = "webrtc") -> PeerCredentials:
        data = await self._request("POST", f"/room/{room_id}/peer", json={"type": peer_type, "options": {}})
        peer = data.get("peer") or {}
        return PeerCredentials(peer_id=str(peer.get("id")), token=str(data.get("token")), room_id=room_id)

    async def delete_peer(self, room_id: str, peer_id: str) -> None:
        await self._request("DELETE", f"/room/{room_id}/peer/{peer_id}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = [
    "ControlPlaneClient",
    "ControlPlaneConfig",
    "ControlPlaneConnectionError",
    "ControlPlaneError",
]
