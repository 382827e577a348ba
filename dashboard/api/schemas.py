"""
Pydantic schemas for the operator REST contract.

Form fields stay loosely typed here (the dashboard sends free text); the
route handlers run them through :mod:`dashboard.utils.inputs`.
"""

from __future__ import annotations

from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..core.media import MOCK_SOURCE_IDS

FreeText = Union[str, int, float, None]


class CreateRoomRequest(BaseModel):
    max_peers: Union[str, int, None] = Field(
        default=None, validation_alias=AliasChoices("max_peers", "maxPeers")
    )
    video_codec: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("video_codec", "videoCodec")
    )


class AddPeerRequest(BaseModel):
    name: Optional[str] = None
    peer_type: str = Field(default="webrtc", validation_alias=AliasChoices("peer_type", "type"))


class TokenRequest(BaseModel):
    token: str


class ConnectRequest(BaseModel):
    token: Optional[str] = None
    wait: bool = False


class PublishRequest(BaseModel):
    kind: str = "video"
    source: str = MOCK_SOURCE_IDS[-1]
    simulcast: Union[bool, str, None] = False
    encodings: Union[str, List[str], None] = None
    max_bandwidth: FreeText = Field(
        default=None, validation_alias=AliasChoices("max_bandwidth", "maxBandwidth")
    )
    attach_metadata: Union[bool, str, None] = Field(
        default=True, validation_alias=AliasChoices("attach_metadata", "attachMetadata")
    )
    metadata: Any = None
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("kind", mode="before")
    @classmethod
    def _normalise_kind(cls, value: object) -> str:
        result = str(value or "video").strip().lower()
        if result not in ("audio", "video"):
            raise ValueError("kind must be audio or video")
        return result


class EncodingsRequest(BaseModel):
    """
    Either a single layer toggle (``layer`` + ``enabled``) or a full policy
    (``encodings`` + ``maxBandwidth``) re-applied to every layer.
    """

    layer: Optional[str] = None
    enabled: Optional[bool] = None
    encodings: Union[str, List[str], None] = None
    max_bandwidth: FreeText = Field(
        default=None, validation_alias=AliasChoices("max_bandwidth", "maxBandwidth")
    )


class TrackEnabledRequest(BaseModel):
    enabled: bool


class TrackMetadataRequest(BaseModel):
    metadata: Any = None


class PreferEncodingRequest(BaseModel):
    encoding: str = Field(validation_alias=AliasChoices("encoding", "layer"))


class NotificationModel(BaseModel):
    type: str = "notification"
    level: str = "error"
    peerId: str
    message: str
    reason: Optional[str] = None


__all__ = [
    "AddPeerRequest",
    "ConnectRequest",
    "CreateRoomRequest",
    "EncodingsRequest",
    "NotificationModel",
    "PreferEncodingRequest",
    "PublishRequest",
    "TokenRequest",
    "TrackEnabledRequest",
    "TrackMetadataRequest",
]
