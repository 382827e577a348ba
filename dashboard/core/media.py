"""
Media source primitives handed to the transport.

Real capture (cameras, microphones) lives outside this process; the dashboard
only needs objects that can be published and stopped, plus the canvas-style
mock sources used for manual testing.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple


class TrackKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class VadStatus(str, Enum):
    """Voice activity the server reports for a received audio track."""

    SPEECH = "speech"
    SILENCE = "silence"


_track_ids = itertools.count(1)


@dataclass(eq=False)
class MediaTrack:
    """A single capture track. ``stop()`` releases the underlying device."""

    kind: TrackKind
    label: str = ""
    enabled: bool = True
    stopped: bool = False
    id: str = field(default_factory=lambda: f"mt-{next(_track_ids)}")

    def stop(self) -> None:
        self.stopped = True
        self.enabled = False


@dataclass(eq=False)
class MediaSource:
    source_id: str
    tracks: List[MediaTrack] = field(default_factory=list)

    def tracks_of(self, kind: TrackKind) -> List[MediaTrack]:
        return [track for track in self.tracks if track.kind is kind and not track.stopped]

    def first_track(self, kind: TrackKind) -> Optional[MediaTrack]:
        candidates = self.tracks_of(kind)
        return candidates[0] if candidates else None

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()

    @property
    def stopped(self) -> bool:
        return all(track.stopped for track in self.tracks)


# Canvas streams offered next to the real devices.
MOCK_SOURCE_IDS: Tuple[str, ...] = (
    "OCTOPUS_STREAM",
    "ELIXIR_STREAM",
    "FROG_STREAM",
    "HEART_STREAM",
)


def mock_source(
    source_id: str,
    kinds: Iterable[TrackKind] = (TrackKind.VIDEO,),
) -> MediaSource:
    """Build a fresh mock source with one track per requested kind."""

    tracks = [MediaTrack(kind=TrackKind(kind), label=f"{source_id}:{TrackKind(kind).value}") for kind in kinds]
    return MediaSource(source_id=source_id, tracks=tracks)


__all__ = ["MOCK_SOURCE_IDS", "MediaSource", "MediaTrack", "TrackKind", "VadStatus", "mock_source"]
