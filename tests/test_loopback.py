import asyncio

import pytest

from dashboard.core.encoding import EncodingLayer, SimulcastConfig
from dashboard.core.errors import ConnectError, ConnectFailure
from dashboard.core.media import TrackKind, VadStatus, mock_source
from dashboard.core.peer import PeerSlot
from dashboard.core.store import CloseReason, SessionStatus
from dashboard.core.transport import TransportError
from dashboard.transport import LoopbackServer

H, M, L = EncodingLayer.HIGH, EncodingLayer.MEDIUM, EncodingLayer.LOW


async def two_peers(server: LoopbackServer):
    room = await server.create_room(max_peers=2, video_codec="vp8")
    slots = []
    for name in ("alice", "bob"):
        credentials = await server.add_peer(room.room_id)
        slot = PeerSlot(credentials.peer_id, server, room_id=room.room_id, name=name, token=credentials.token)
        await slot.connect()
        await slot.session.wait_joined()
        slots.append(slot)
    return room, slots[0], slots[1]


def test_rooms_and_peers() -> None:
    async def scenario() -> None:
        server = LoopbackServer(join_delay=0.01)
        room = await server.create_room(max_peers=1)
        await server.add_peer(room.room_id)

        with pytest.raises(TransportError):
            await server.add_peer(room.room_id)
        with pytest.raises(TransportError):
            await server.add_peer("missing")

        rooms = await server.list_rooms()
        assert [info.room_id for info in rooms] == [room.room_id]
        assert len(rooms[0].peers) == 1

        await server.delete_room(room.room_id)
        assert await server.list_rooms() == []
        assert (await server.health())["status"] == "ok"

    asyncio.run(scenario())


def test_joined_peer_sees_bandwidth_estimate() -> None:
    async def scenario() -> None:
        server = LoopbackServer(join_delay=0.01, bandwidth_estimate=750_000)
        _room, alice, _bob = await two_peers(server)
        assert alice.snapshot().bandwidth_estimate == 750_000

    asyncio.run(scenario())


def test_invalid_token_is_rejected() -> None:
    async def scenario() -> None:
        server = LoopbackServer(join_delay=0.01)
        slot = PeerSlot("ghost", server, token="not-a-token")

        with pytest.raises(ConnectError) as excinfo:
            await slot.connect()
        assert excinfo.value.reason is ConnectFailure.TRANSPORT_REJECTED

    asyncio.run(scenario())


def test_published_tracks_reach_the_other_peer() -> None:
    async def scenario() -> None:
        server = LoopbackServer(join_delay=0.01)
        _room, alice, bob = await two_peers(server)

        video = await alice.tracks.publish(
            TrackKind.VIDEO,
            mock_source("HEART_STREAM"),
            {"name": "heart"},
            SimulcastConfig(enabled=True),
        )
        audio = await alice.tracks.publish(TrackKind.AUDIO, mock_source("mic", (TrackKind.AUDIO,)))

        remote = bob.snapshot().remote_track(video)
        assert remote.origin_peer_id == alice.peer_id
        assert remote.current_encoding is H
        assert remote.metadata == {"name": "heart"}
        assert bob.snapshot().remote_track(audio).current_encoding is None
        assert bob.snapshot().remote_track(audio).vad_status is VadStatus.SILENCE

        # Dropping the forwarded layer moves the receiver to the next one.
        alice.tracks.set_encoding(video, H, False)
        assert bob.snapshot().remote_track(video).current_encoding is M

        bob.remote.prefer_encoding(video, L)
        assert bob.snapshot().remote_track(video).current_encoding is L

        alice.tracks.update_metadata(video, {"name": "renamed"})
        assert alice.snapshot().local_track(video).metadata == {"name": "renamed"}
        assert bob.snapshot().remote_track(video).metadata == {"name": "renamed"}

        alice.tracks.unpublish(video)
        assert bob.snapshot().remote_track(video) is None
        assert list(bob.snapshot().remote_tracks) == [audio]

    asyncio.run(scenario())


def test_late_joiner_receives_existing_tracks() -> None:
    async def scenario() -> None:
        server = LoopbackServer(join_delay=0.01)
        room = await server.create_room()
        first = await server.add_peer(room.room_id)
        alice = PeerSlot(first.peer_id, server, token=first.token)
        await alice.connect()
        await alice.session.wait_joined()
        track_id = await alice.tracks.publish(TrackKind.VIDEO, mock_source("FROG_STREAM"))

        second = await server.add_peer(room.room_id)
        bob = PeerSlot(second.peer_id, server, token=second.token)
        await bob.connect()
        await bob.session.wait_joined()

        assert list(bob.snapshot().remote_tracks) == [track_id]
        assert bob.snapshot().remote_track(track_id).current_encoding is None

    asyncio.run(scenario())


def test_disconnect_retracts_tracks() -> None:
    async def scenario() -> None:
        server = LoopbackServer(join_delay=0.01)
        _room, alice, bob = await two_peers(server)
        await alice.tracks.publish(TrackKind.VIDEO, mock_source("ELIXIR_STREAM"))

        alice.session.disconnect()
        assert dict(bob.snapshot().remote_tracks) == {}
        assert bob.snapshot().status is SessionStatus.JOINED

    asyncio.run(scenario())


def test_deleting_a_peer_closes_its_session() -> None:
    async def scenario() -> None:
        server = LoopbackServer(join_delay=0.01)
        room, alice, bob = await two_peers(server)

        await server.delete_peer(room.room_id, bob.peer_id)
        assert bob.snapshot().status is SessionStatus.CLOSED
        assert bob.snapshot().close_reason is CloseReason.SERVER
        assert alice.snapshot().status is SessionStatus.JOINED

        with pytest.raises(ConnectError):
            await bob.connect()

    asyncio.run(scenario())
