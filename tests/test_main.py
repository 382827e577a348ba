import pydantic
import pytest

from dashboard.main import parse_args, resolve_config


def test_cli_flags_override_the_profile(tmp_path) -> None:
    args = parse_args(["--config", str(tmp_path / "missing.yaml"), "--port", "9200", "--connect-timeout", "1.5"])
    config = resolve_config(args)

    assert config.port == 9200
    assert config.connect_timeout == 1.5
    assert config.host == "127.0.0.1"


def test_cli_flags_are_validated(tmp_path) -> None:
    args = parse_args(["--config", str(tmp_path / "missing.yaml"), "--connect-timeout", "-1"])
    with pytest.raises(pydantic.ValidationError):
        resolve_config(args)
