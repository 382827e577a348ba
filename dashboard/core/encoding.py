"""
Simulcast encoding policy.

Pure translation from a declarative simulcast request (enabled flag, layer set,
bandwidth cap) into the per-layer enable/disable decisions and ceilings the
transport has to apply.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union


class EncodingLayer(str, Enum):
    """Simulcast quality tier. Values match the media server wire format."""

    LOW = "l"
    MEDIUM = "m"
    HIGH = "h"

    @property
    def priority(self) -> int:
        return _PRIORITY[self]

    @classmethod
    def parse(cls, value: object) -> "EncodingLayer":
        if isinstance(value, EncodingLayer):
            return value
        text = str(value or "").strip().lower()
        for layer in cls:
            if text in (layer.value, layer.name.lower()):
                return layer
        raise ValueError(f"Unknown encoding layer '{value}'")


_PRIORITY = {EncodingLayer.HIGH: 2, EncodingLayer.MEDIUM: 1, EncodingLayer.LOW: 0}

# Highest priority first; the order used for every listing.
LAYERS_BY_PRIORITY: Tuple[EncodingLayer, ...] = (
    EncodingLayer.HIGH,
    EncodingLayer.MEDIUM,
    EncodingLayer.LOW,
)

# Relative share of a bandwidth cap; each tier doubles resolution on both axes.
LAYER_WEIGHTS: Dict[EncodingLayer, int] = {
    EncodingLayer.LOW: 1,
    EncodingLayer.MEDIUM: 4,
    EncodingLayer.HIGH: 16,
}

BandwidthLimit = Union[None, float, Mapping[EncodingLayer, float]]


def order_layers(layers: Iterable[EncodingLayer]) -> Tuple[EncodingLayer, ...]:
    """Return the distinct ``layers`` sorted high → low."""

    present = set(layers)
    return tuple(layer for layer in LAYERS_BY_PRIORITY if layer in present)


def default_layer(layers: Iterable[EncodingLayer]) -> Optional[EncodingLayer]:
    ordered = order_layers(layers)
    return ordered[0] if ordered else None


def normalise_bandwidth(value: Optional[float]) -> Optional[float]:
    """
    Collapse every "no cap" spelling to ``None``.

    Zero, negative and missing values all mean unlimited, never zero throughput.
    """

    if value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if numeric != numeric or numeric <= 0:  # NaN or non-positive
        return None
    return numeric


@dataclass(frozen=True, slots=True)
class SimulcastConfig:
    """Operator-facing simulcast choice attached to a video publish."""

    enabled: bool = False
    layers: FrozenSet[EncodingLayer] = frozenset(LAYERS_BY_PRIORITY)


@dataclass(frozen=True, slots=True)
class EncodingRequest:
    enabled: bool
    layers: FrozenSet[EncodingLayer]
    max_bandwidth: Optional[float] = None

    @classmethod
    def from_config(
        cls, config: Optional[SimulcastConfig], max_bandwidth: Optional[float] = None
    ) -> "EncodingRequest":
        if config is None:
            return cls(enabled=False, layers=frozenset(), max_bandwidth=max_bandwidth)
        return cls(
            enabled=config.enabled,
            layers=frozenset(config.layers),
            max_bandwidth=max_bandwidth,
        )


@dataclass(frozen=True, slots=True)
class LayerPlan:
    layer: EncodingLayer
    enabled: bool
    max_bandwidth: Optional[float] = None


@dataclass(frozen=True, slots=True)
class SimulcastOptions:
    """Simulcast arguments handed to ``Transport.publish_track``."""

    enabled: bool
    active_encodings: Tuple[EncodingLayer, ...] = ()


@dataclass(frozen=True, slots=True)
class EncodingPlan:
    """
    Concrete per-layer decisions.

    ``layers`` always lists all three tiers in priority order, so layers that
    must be off are stated explicitly rather than omitted.
    """

    simulcast: bool
    layers: Tuple[LayerPlan, ...]
    max_bandwidth: Optional[float] = None

    @property
    def enabled_layers(self) -> Tuple[EncodingLayer, ...]:
        return tuple(entry.layer for entry in self.layers if entry.enabled)

    @property
    def disabled_layers(self) -> Tuple[EncodingLayer, ...]:
        return tuple(entry.layer for entry in self.layers if not entry.enabled)

    def is_enabled(self, layer: EncodingLayer) -> bool:
        return any(entry.layer is layer and entry.enabled for entry in self.layers)

    def ceiling(self, layer: EncodingLayer) -> Optional[float]:
        for entry in self.layers:
            if entry.layer is layer:
                return entry.max_bandwidth
        return None

    def simulcast_options(self) -> SimulcastOptions:
        return SimulcastOptions(enabled=self.simulcast, active_encodings=self.enabled_layers)

    def bandwidth_limit(self) -> BandwidthLimit:
        if self.max_bandwidth is None:
            return None
        if not self.simulcast:
            return self.max_bandwidth
        return {
            entry.layer: entry.max_bandwidth
            for entry in self.layers
            if entry.enabled and entry.max_bandwidth is not None
        }


def resolve(request: EncodingRequest) -> EncodingPlan:
    cap = normalise_bandwidth(request.max_bandwidth)
    wanted = set(request.layers) if request.enabled else set()

    total_weight = sum(LAYER_WEIGHTS[layer] for layer in wanted)
    layers = []
    for layer in LAYERS_BY_PRIORITY:
        enabled = layer in wanted
        ceiling: Optional[float] = None
        if enabled and cap is not None:
            ceiling = cap * LAYER_WEIGHTS[layer] / total_weight
        layers.append(LayerPlan(layer=layer, enabled=enabled, max_bandwidth=ceiling))

    return EncodingPlan(simulcast=bool(wanted), layers=tuple(layers), max_bandwidth=cap)


__all__ = [
    "BandwidthLimit",
    "EncodingLayer",
    "EncodingPlan",
    "EncodingRequest",
    "LAYERS_BY_PRIORITY",
    "LAYER_WEIGHTS",
    "LayerPlan",
    "SimulcastConfig",
    "SimulcastOptions",
    "default_layer",
    "normalise_bandwidth",
    "order_layers",
    "resolve",
]
