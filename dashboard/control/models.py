"""
Control-plane result types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

VIDEO_CODECS = ("h264", "vp8")


@dataclass(slots=True)
class RoomInfo:
    room_id: str
    room_address: str
    max_peers: Optional[int] = None
    video_codec: Optional[str] = None
    peers: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "roomId": self.room_id,
            "roomAddress": self.room_address,
            "maxPeers": self.max_peers,
            "videoCodec": self.video_codec,
            "peers": list(self.peers),
        }


@dataclass(slots=True)
class PeerCredentials:
    peer_id: str
    token: str
    room_id: Optional[str] = None


__all__ = ["PeerCredentials", "RoomInfo", "VIDEO_CODECS"]
