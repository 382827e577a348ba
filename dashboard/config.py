"""
Dashboard configuration profiles.

Profiles live in ``configs/profiles.yaml`` next to this package; every field
can be overridden from the environment with a ``DASHBOARD_`` prefix (for
example ``DASHBOARD_PORT=9000``), and the CLI flags override both.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .core.session import DEFAULT_CONNECT_TIMEOUT
from .core.transport import SignalingTarget

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"
ENV_PREFIX = "DASHBOARD_"
DEFAULT_PROFILE = "default"

LOG = logging.getLogger(__name__)


class SignalingModel(BaseModel):
    host: str
    protocol: str = "ws"
    path: str = "/socket/peer/websocket"

    @field_validator("protocol", mode="before")
    @classmethod
    def _normalise_protocol(cls, value: object) -> str:
        result = str(value or "ws").strip().lower()
        if result not in ("ws", "wss"):
            raise ValueError("signaling protocol must be ws or wss")
        return result

    def target(self) -> SignalingTarget:
        return SignalingTarget(host=self.host, protocol=self.protocol, path=self.path)


class DashboardConfig(BaseModel):
    profile: str = DEFAULT_PROFILE
    host: str = "127.0.0.1"
    port: int = 8080
    control_url: Optional[str] = None
    server_token: Optional[str] = None
    signaling: Optional[SignalingModel] = None
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    transport: str = "loopback"
    log_level: str = "INFO"
    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    @field_validator("connect_timeout", mode="before")
    @classmethod
    def _positive_timeout(cls, value: object) -> float:
        try:
            coerced = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise ValueError("connect_timeout must be a number") from None
        if coerced <= 0:
            raise ValueError("connect_timeout must be positive")
        return coerced

    @field_validator("transport", mode="before")
    @classmethod
    def _known_transport(cls, value: object) -> str:
        result = str(value or "loopback").strip().lower()
        if result != "loopback":
            raise ValueError(f"unsupported transport '{result}'")
        return result

    @field_validator("control_url", "server_token", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def signaling_target(self) -> Optional[SignalingTarget]:
        return self.signaling.target() if self.signaling is not None else None


def read_profiles(path: Optional[Path] = None) -> Dict[str, Any]:
    profiles_path = Path(path) if path is not None else PROFILES_PATH
    try:
        with profiles_path.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.debug("No profiles file at %s; using defaults", profiles_path)
        profiles = {}
    if not isinstance(profiles, dict):
        raise ValueError(f"{profiles_path} must contain a mapping of profile names")
    return profiles


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name in DashboardConfig.model_fields:
        if name in ("profile", "signaling"):
            continue
        key = ENV_PREFIX + name.upper()
        if key in env:
            overrides[name] = env[key]
    signaling_host = env.get(ENV_PREFIX + "SIGNALING_HOST")
    if signaling_host:
        overrides["signaling"] = {
            "host": signaling_host,
            "protocol": env.get(ENV_PREFIX + "SIGNALING_PROTOCOL", "ws"),
            "path": env.get(ENV_PREFIX + "SIGNALING_PATH", "/socket/peer/websocket"),
        }
    return overrides


def load_config(
    profile: Optional[str] = None,
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> DashboardConfig:
    """
    Resolve a profile from the profiles file and apply environment overrides.

    Unknown profile names fall back to defaults with a warning, matching what
    an operator sees when the profiles file is missing altogether.
    """

    environ = os.environ if env is None else env
    name = profile or environ.get(ENV_PREFIX + "PROFILE") or DEFAULT_PROFILE
    profiles = read_profiles(path)
    values = profiles.get(name)
    if values is None:
        if profiles:
            LOG.warning("Profile '%s' not found; using defaults", name)
        values = {}
    merged: Dict[str, Any] = {**dict(values), **_env_overrides(environ)}
    merged["profile"] = name
    return DashboardConfig(**merged)


__all__ = [
    "CONFIG_DIR",
    "DashboardConfig",
    "PROFILES_PATH",
    "SignalingModel",
    "load_config",
    "read_profiles",
]
