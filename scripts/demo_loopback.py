"""Quick demo of two dashboard peers talking through the loopback server.

Alice publishes a simulcast video track, Bob receives it, switches the
forwarded layer and watches what happens when Alice drops a layer.

Examples
--------
Run the default scenario::

    python scripts/demo_loopback.py

Cap Alice's bandwidth and only send the high and low layers::

    python scripts/demo_loopback.py --max-bandwidth 1700 --encodings h,l
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Iterable

from dashboard.core.encoding import EncodingLayer, SimulcastConfig
from dashboard.core.media import TrackKind, mock_source
from dashboard.core.peer import PeerSlot
from dashboard.transport import LoopbackServer
from dashboard.utils.inputs import parse_layers, parse_max_bandwidth
from dashboard.utils.logging import configure_logging

LOG = logging.getLogger("demo_loopback")


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Peer session loopback demo")
    parser.add_argument("--encodings", default="h,m,l", help="Simulcast layers Alice sends.")
    parser.add_argument("--max-bandwidth", default="", help="Total bandwidth cap for Alice's video.")
    parser.add_argument("--source", default="HEART_STREAM", help="Mock source to publish.")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def dump(label: str, slot: PeerSlot) -> None:
    print(f"--- {label}")
    print(json.dumps(slot.snapshot().to_dict(), indent=2, default=str))


async def scenario(args: argparse.Namespace) -> None:
    server = LoopbackServer()
    room = await server.create_room(max_peers=2)
    slots = []
    for name in ("alice", "bob"):
        credentials = await server.add_peer(room.room_id)
        slot = PeerSlot(credentials.peer_id, server, room_id=room.room_id, name=name, token=credentials.token)
        await slot.connect()
        await slot.session.wait_joined()
        slots.append(slot)
    alice, bob = slots

    track_id = await alice.tracks.publish(
        TrackKind.VIDEO,
        mock_source(args.source),
        {"name": args.source.lower()},
        SimulcastConfig(enabled=True, layers=parse_layers(args.encodings)),
        parse_max_bandwidth(args.max_bandwidth),
    )
    dump("alice after publish", alice)
    dump("bob after publish", bob)

    bob.remote.prefer_encoding(track_id, EncodingLayer.LOW)
    dump("bob after preferring low", bob)

    active = alice.snapshot().local_track(track_id).active_encodings
    if len(active) > 1:
        alice.tracks.set_encoding(track_id, active[-1], False)
        dump(f"bob after alice dropped {active[-1].name.lower()}", bob)

    alice.session.disconnect()
    bob.session.disconnect()
    await server.aclose()
    LOG.info("Demo finished")


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    asyncio.run(scenario(args))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
