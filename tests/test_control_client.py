"""Tests for the media server control-plane client."""

import asyncio
import json

import httpx
import pytest

from dashboard.control import (
    ControlPlaneClient,
    ControlPlaneConfig,
    ControlPlaneConnectionError,
    ControlPlaneError,
)


def make_client(handler) -> ControlPlaneClient:
    config = ControlPlaneConfig(base_url="http://media.local:5002", server_token="secret")
    return ControlPlaneClient(config, transport=httpx.MockTransport(handler))


def test_create_room_sends_config_and_token() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            201,
            json={
                "data": {
                    "jellyfish_address": "media.local:5002",
                    "room": {"id": "room-1", "config": {"maxPeers": 4, "videoCodec": "h264"}, "peers": []},
                }
            },
        )

    async def scenario() -> None:
        client = make_client(handler)
        room = await client.create_room(max_peers=4, video_codec="h264")
        await client.aclose()

        assert room.room_id == "room-1"
        assert room.room_address == "media.local:5002"
        assert room.max_peers == 4
        assert room.to_dict()["videoCodec"] == "h264"

    asyncio.run(scenario())
    assert seen == {"path": "/room", "auth": "Bearer secret", "body": {"maxPeers": 4, "videoCodec": "h264"}}


def test_unsupported_codec_is_rejected_locally() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never reached
        raise AssertionError("request should not be sent")

    async def scenario() -> None:
        client = make_client(handler)
        with pytest.raises(ValueError):
            await client.create_room(video_codec="av1")

    asyncio.run(scenario())


def test_add_peer_and_list_rooms() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/room/room-1/peer":
            assert json.loads(request.content) == {"type": "webrtc", "options": {}}
            return httpx.Response(201, json={"data": {"peer": {"id": "peer-9"}, "token": "tok"}})
        if request.method == "GET" and request.url.path == "/room":
            return httpx.Response(
                200,
                json={"data": [{"id": "room-1", "config": {}, "peers": [{"id": "peer-9"}]}]},
            )
        return httpx.Response(404, text="not found")

    async def scenario() -> None:
        client = make_client(handler)
        credentials = await client.add_peer("room-1")
        rooms = await client.list_rooms()
        await client.aclose()

        assert credentials.peer_id == "peer-9"
        assert credentials.token == "tok"
        assert credentials.room_id == "room-1"
        assert rooms[0].peers == ["peer-9"]
        assert rooms[0].room_address == "media.local:5002"

    asyncio.run(scenario())


def test_delete_returns_none_on_no_content() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        return httpx.Response(204)

    async def scenario() -> None:
        client = make_client(handler)
        await client.delete_peer("room-1", "peer-9")
        await client.delete_room("room-1")

    asyncio.run(scenario())
    assert calls == [("DELETE", "/room/room-1/peer/peer-9"), ("DELETE", "/room/room-1")]


def test_http_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="room not found")

    async def scenario() -> None:
        client = make_client(handler)
        with pytest.raises(ControlPlaneError) as excinfo:
            await client.delete_room("missing")
        assert excinfo.value.status_code == 404
        assert "room not found" in str(excinfo.value)

    asyncio.run(scenario())


def test_unreachable_server() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario() -> None:
        client = make_client(handler)
        with pytest.raises(ControlPlaneConnectionError):
            await client.health()

    asyncio.run(scenario())
