"""
Boundary adapters for free-text operator input.

The dashboard form fields are plain strings; everything below turns them into
the typed values the peer session core accepts, so the core never sees raw
text.
"""

from __future__ import annotations

import json
import re
from typing import Any, FrozenSet, Iterable, Optional, Union

from ..control.models import VIDEO_CODECS
from ..core.encoding import LAYERS_BY_PRIORITY, EncodingLayer, normalise_bandwidth
from ..core.errors import InputError

DEFAULT_TRACK_METADATA = {"name": "track-name", "type": "canvas"}

_TRUE = {"1", "true", "yes", "on", "y"}
_FALSE = {"0", "false", "no", "off", "n", ""}
_DIGITS = re.compile(r"^[0-9]*$")


def parse_max_bandwidth(value: Union[str, float, int, None]) -> Optional[float]:
    """
    Parse the max-bandwidth field.

    Empty, invalid and zero input all mean "no cap".
    """

    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return normalise_bandwidth(value)
    text = str(value).strip()
    if not text:
        return None
    match = re.match(r"^[+-]?\d+(\.\d+)?", text)
    if match is None:
        return None
    return normalise_bandwidth(float(match.group(0)))


def parse_flag(value: Union[str, bool, int, None], default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return default


def parse_layers(value: Union[str, Iterable[Any], None]) -> FrozenSet[EncodingLayer]:
    """
    Parse an encoding selection such as ``"h,m,l"`` or ``["high", "low"]``.

    An empty selection falls back to all three layers.
    """

    if value is None:
        return frozenset(LAYERS_BY_PRIORITY)
    if isinstance(value, str):
        items = [item for item in re.split(r"[\s,;]+", value) if item]
    else:
        items = list(value)
    if not items:
        return frozenset(LAYERS_BY_PRIORITY)
    layers = set()
    for item in items:
        try:
            layers.add(EncodingLayer.parse(item))
        except ValueError as exc:
            raise InputError(str(exc)) from exc
    return frozenset(layers)


def parse_metadata(value: Union[str, dict, None], attach: bool = True) -> Any:
    """
    Parse the track metadata text area.

    Returns ``None`` when metadata is not attached, the default track metadata
    for blank text, and raises :class:`InputError` for malformed JSON.
    """

    if not attach:
        return None
    if isinstance(value, dict):
        return value
    text = (value or "").strip()
    if not text:
        return dict(DEFAULT_TRACK_METADATA)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise InputError(f"Track metadata is not valid JSON: {exc.msg}") from exc


def parse_max_peers(value: Union[str, int, None]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0:
            raise InputError("max peers must be a non-negative number")
        return value
    text = str(value).strip()
    if not text:
        return None
    if not _DIGITS.match(text):
        raise InputError(f"max peers must be digits only, got '{value}'")
    return int(text)


def parse_video_codec(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    if text not in VIDEO_CODECS:
        raise InputError(f"video codec must be one of {', '.join(VIDEO_CODECS)}")
    return text


__all__ = [
    "DEFAULT_TRACK_METADATA",
    "parse_flag",
    "parse_layers",
    "parse_max_bandwidth",
    "parse_max_peers",
    "parse_metadata",
    "parse_video_codec",
]
