import pytest

from dashboard.core.encoding import EncodingLayer
from dashboard.core.errors import InputError
from dashboard.utils.inputs import (
    DEFAULT_TRACK_METADATA,
    parse_flag,
    parse_layers,
    parse_max_bandwidth,
    parse_max_peers,
    parse_metadata,
    parse_video_codec,
)


@pytest.mark.parametrize(
    "value, expected",
    [("", None), ("abc", None), ("0", None), (None, None), ("1500", 1500.0), (" 2.5kbps", 2.5), (300, 300.0)],
)
def test_parse_max_bandwidth(value, expected) -> None:
    assert parse_max_bandwidth(value) == expected


def test_parse_flag() -> None:
    assert parse_flag("true") is True
    assert parse_flag("Off") is False
    assert parse_flag(None, default=True) is True
    assert parse_flag("maybe", default=True) is True
    assert parse_flag(False) is False


def test_parse_layers() -> None:
    assert parse_layers("h, l") == frozenset({EncodingLayer.HIGH, EncodingLayer.LOW})
    assert parse_layers(["medium"]) == frozenset({EncodingLayer.MEDIUM})
    assert parse_layers("") == frozenset(EncodingLayer)
    with pytest.raises(InputError):
        parse_layers("h,x")


def test_parse_metadata() -> None:
    assert parse_metadata('{"name": "cam"}') == {"name": "cam"}
    assert parse_metadata("  ") == DEFAULT_TRACK_METADATA
    assert parse_metadata('{"name": "cam"}', attach=False) is None
    with pytest.raises(InputError):
        parse_metadata("{name: cam}")


def test_parse_room_fields() -> None:
    assert parse_max_peers("12") == 12
    assert parse_max_peers("") is None
    with pytest.raises(InputError):
        parse_max_peers("12a")
    with pytest.raises(InputError):
        parse_max_peers(-1)

    assert parse_video_codec("VP8") == "vp8"
    assert parse_video_codec("") is None
    with pytest.raises(InputError):
        parse_video_codec("av1")
