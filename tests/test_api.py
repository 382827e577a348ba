"""Tests for the operator API running against the loopback server."""

from fastapi.testclient import TestClient

from dashboard.api.server import create_app
from dashboard.config import DashboardConfig
from dashboard.control import ControlPlaneConnectionError
from dashboard.transport import LoopbackServer


class UnreachableRoomDeletes(LoopbackServer):
    async def delete_room(self, room_id: str) -> None:
        raise ControlPlaneConnectionError("media server unreachable")


def make_client(**kwargs) -> TestClient:
    config = DashboardConfig(connect_timeout=kwargs.pop("connect_timeout", 1.0))
    transport = kwargs.pop("transport", None) or LoopbackServer(join_delay=kwargs.pop("join_delay", 0.01))
    return TestClient(create_app(config, transport=transport))


def add_peer(client: TestClient, name: str = "alice", room_id: str = None) -> dict:
    if room_id is None:
        response = client.post("/rooms", json={"maxPeers": "4", "videoCodec": "vp8"})
        assert response.status_code == 200
        room_id = response.json()["roomId"]
    response = client.post(f"/rooms/{room_id}/peers", json={"name": name})
    assert response.status_code == 200
    return response.json()


def connect(client: TestClient, peer_id: str) -> dict:
    response = client.post(f"/peers/{peer_id}/connect", json={"wait": True})
    assert response.status_code == 200, response.text
    return response.json()


def test_health_and_profiles() -> None:
    with make_client() as client:
        health = client.get("/healthz").json()
        assert health["status"] == "ok"
        assert health["peers"] == 0
        assert "default" in client.get("/profiles").json()["profiles"]


def test_room_lifecycle() -> None:
    with make_client() as client:
        created = client.post("/rooms", json={"maxPeers": "2", "videoCodec": "H264"}).json()
        assert created["maxPeers"] == 2
        assert created["videoCodec"] == "h264"

        rooms = client.get("/rooms").json()["rooms"]
        assert [room["roomId"] for room in rooms] == [created["roomId"]]

        assert client.post("/rooms", json={"maxPeers": "two"}).status_code == 400
        assert client.post("/rooms", json={"videoCodec": "av1"}).status_code == 400

        peer = add_peer(client, room_id=created["roomId"])
        assert client.delete(f"/rooms/{created['roomId']}").json()["deleted"] is True
        assert client.get(f"/peers/{peer['peerId']}").status_code == 404


def test_connect_publish_and_disconnect() -> None:
    with make_client() as client:
        peer = add_peer(client)
        peer_id = peer["peerId"]
        assert peer["session"]["status"] == "idle"
        assert peer["session"]["token"]

        joined = connect(client, peer_id)
        assert joined["session"]["status"] == "joined"

        response = client.post(
            f"/peers/{peer_id}/tracks",
            json={
                "kind": "video",
                "source": "HEART_STREAM",
                "simulcast": "true",
                "encodings": "h,l",
                "maxBandwidth": "1700",
                "metadata": "",
            },
        )
        assert response.status_code == 200, response.text
        track = response.json()["track"]
        track_id = track["trackId"]
        assert track["encodings"] == ["h", "l"]
        assert track["maxBandwidth"] == 1700
        assert track["metadata"] == {"name": "track-name", "type": "canvas"}

        toggled = client.post(f"/peers/{peer_id}/tracks/{track_id}/encodings", json={"layer": "m", "enabled": True})
        assert toggled.json()["track"]["encodings"] == ["h", "m", "l"]

        policy = client.post(f"/peers/{peer_id}/tracks/{track_id}/encodings", json={"encodings": ["l"]})
        assert policy.json()["track"]["encodings"] == ["l"]

        last = client.post(f"/peers/{peer_id}/tracks/{track_id}/encodings", json={"layer": "l", "enabled": False})
        assert last.status_code == 409
        assert last.json()["detail"]["reason"] == "last_active_layer"

        muted = client.post(f"/peers/{peer_id}/tracks/{track_id}/enabled", json={"enabled": False})
        assert muted.json()["track"]["enabled"] is False

        removed = client.delete(f"/peers/{peer_id}/tracks/{track_id}").json()
        assert removed["session"]["localTracks"] == []
        assert client.delete(f"/peers/{peer_id}/tracks/{track_id}").status_code == 200

        closed = client.post(f"/peers/{peer_id}/disconnect").json()
        assert closed["session"]["status"] == "closed"
        assert closed["session"]["closeReason"] == "user"


def test_error_mapping() -> None:
    with make_client() as client:
        assert client.post("/peers/nobody/connect").status_code == 404

        peer_id = add_peer(client)["peerId"]
        publish = client.post(f"/peers/{peer_id}/tracks", json={"kind": "video"})
        assert publish.status_code == 409
        assert publish.json()["detail"]["reason"] == "not_connected"

        client.delete(f"/peers/{peer_id}/token")
        missing = client.post(f"/peers/{peer_id}/connect")
        assert missing.status_code == 400
        assert missing.json()["detail"]["reason"] == "missing_token"

        rejected = client.post(f"/peers/{peer_id}/connect", json={"token": "forged"})
        assert rejected.status_code == 502

        connect_resp = client.put(f"/peers/{peer_id}/token", json={"token": "still-forged"})
        assert connect_resp.json()["session"]["token"] == "still-forged"

        assert client.post(f"/peers/{peer_id}/tracks", json={"source": "NOPE"}).status_code == 400
        assert client.post(f"/peers/{peer_id}/tracks", json={"metadata": "{oops"}).status_code == 400
        assert client.post(f"/peers/{peer_id}/tracks/x/encodings", json={"layer": "q"}).status_code == 400


def test_join_timeout_maps_to_gateway_timeout() -> None:
    with make_client(connect_timeout=0.05, join_delay=5.0) as client:
        peer_id = add_peer(client)["peerId"]

        response = client.post(f"/peers/{peer_id}/connect", json={"wait": True})
        assert response.status_code == 504
        assert response.json()["detail"]["reason"] == "timeout"
        assert client.get(f"/peers/{peer_id}").json()["session"]["status"] == "failed"


def test_remote_tracks_between_two_peers() -> None:
    with make_client() as client:
        alice = add_peer(client, "alice")
        bob = add_peer(client, "bob", room_id=alice["roomId"])
        connect(client, alice["peerId"])
        connect(client, bob["peerId"])

        published = client.post(
            f"/peers/{alice['peerId']}/tracks", json={"kind": "video", "simulcast": True}
        ).json()
        track_id = published["trackId"]

        remote = client.get(f"/peers/{bob['peerId']}").json()["session"]["remoteTracks"]
        assert [entry["trackId"] for entry in remote] == [track_id]
        assert remote[0]["encoding"] == "h"
        assert remote[0]["origin"] == alice["peerId"]

        preferred = client.post(
            f"/peers/{bob['peerId']}/remote-tracks/{track_id}/encoding", json={"encoding": "low"}
        )
        assert preferred.status_code == 200
        remote = client.get(f"/peers/{bob['peerId']}").json()["session"]["remoteTracks"]
        assert remote[0]["encoding"] == "l"

        unknown = client.post(f"/peers/{bob['peerId']}/remote-tracks/ghost/encoding", json={"encoding": "h"})
        assert unknown.status_code == 404

        assert client.delete(f"/peers/{alice['peerId']}").json()["deleted"] is True
        assert client.get(f"/peers/{bob['peerId']}").json()["session"]["remoteTracks"] == []
        assert len(client.get("/peers").json()["peers"]) == 1


def test_event_stream_pushes_snapshots_and_notifications() -> None:
    with make_client() as client:
        peer_id = add_peer(client)["peerId"]

        with client.websocket_connect(f"/peers/{peer_id}/events") as websocket:
            initial = websocket.receive_json()
            assert initial["type"] == "snapshot"
            assert initial["session"]["status"] == "idle"

            client.post(f"/peers/{peer_id}/tracks", json={"kind": "video"})
            notice = websocket.receive_json()
            assert notice["type"] == "notification"
            assert notice["reason"] == "not_connected"

            client.post(f"/peers/{peer_id}/connect")
            connecting = websocket.receive_json()
            assert connecting["session"]["status"] == "connecting"


def test_failed_room_delete_keeps_peer_slots() -> None:
    with make_client(transport=UnreachableRoomDeletes(join_delay=0.01)) as client:
        peer = add_peer(client)

        response = client.delete(f"/rooms/{peer['roomId']}")
        assert response.status_code == 502
        assert client.get(f"/peers/{peer['peerId']}").status_code == 200
        assert [room["roomId"] for room in client.get("/rooms").json()["rooms"]] == [peer["roomId"]]


def test_update_track_metadata() -> None:
    with make_client() as client:
        alice = add_peer(client, "alice")
        bob = add_peer(client, "bob", room_id=alice["roomId"])
        connect(client, alice["peerId"])
        connect(client, bob["peerId"])
        track_id = client.post(f"/peers/{alice['peerId']}/tracks", json={"kind": "video"}).json()["trackId"]

        response = client.put(
            f"/peers/{alice['peerId']}/tracks/{track_id}/metadata", json={"metadata": '{"name": "front"}'}
        )
        assert response.status_code == 200
        assert response.json()["track"]["metadata"] == {"name": "front"}
        remote = client.get(f"/peers/{bob['peerId']}").json()["session"]["remoteTracks"]
        assert remote[0]["metadata"] == {"name": "front"}

        bad = client.put(f"/peers/{alice['peerId']}/tracks/{track_id}/metadata", json={"metadata": "{oops"})
        assert bad.status_code == 400
        missing = client.put(f"/peers/{alice['peerId']}/tracks/ghost/metadata", json={"metadata": {}})
        assert missing.status_code == 404
