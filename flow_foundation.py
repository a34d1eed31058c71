"""
NeuronFlow Foundation - Shared data model for the signal propagation engine.

Defines the three-layer neuron population (input, hidden, output), the
synaptic connections between adjacent layers, and the transient in-flight
signals that travel along them.  Also provides population generation, the
layer layout used to place signals, and dict serialization for renderers.

Design principles:
    - Plain dataclasses mutated in place by the engine's periodic processes
    - Spatial coordinates are derived from (layer, index), never stored
    - Enum values serialize as lowercase strings
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from flow_config import LayoutConfig, PopulationConfig


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Layer(Enum):
    """Neuron layer; defines both topology order and rendering column."""
    INPUT = "input"
    HIDDEN = "hidden"
    OUTPUT = "output"

    @property
    def order(self) -> int:
        return _LAYER_ORDER[self]

    def next(self) -> Optional["Layer"]:
        """The layer immediately after this one, or None for OUTPUT."""
        idx = self.order + 1
        return LAYERS[idx] if idx < len(LAYERS) else None


LAYERS: List[Layer] = [Layer.INPUT, Layer.HIDDEN, Layer.OUTPUT]
_LAYER_ORDER: Dict[Layer, int] = {layer: i for i, layer in enumerate(LAYERS)}


class TrafficState(Enum):
    """Aggregate behavioural state of a neuron."""
    NORMAL = "normal"
    SUSPICIOUS = "suspicious"
    ANOMALY = "anomaly"


class SignalKind(Enum):
    """Classification tag carried by an in-flight signal."""
    NORMAL = "normal"
    SUSPICIOUS = "suspicious"
    ANOMALY = "anomaly"


# ---------------------------------------------------------------------------
# Core Data Structures
# ---------------------------------------------------------------------------

@dataclass
class Position:
    x: float
    y: float


@dataclass
class Neuron:
    """One neuron of the population.

    Attributes:
        neuron_id: Unique identifier, ``"<layer>-<index>"`` when generated.
        layer: INPUT, HIDDEN or OUTPUT; fixed at creation.
        index: Position within the layer, used for layout.
        traffic_state: Written only by the traffic state updater.
        intensity: Nominally [0, 1]; not clamped on write.
        spike_count: Number of firing events; never decreases.
        last_fired: Time of the most recent firing event (seconds), or None.
        connections: IDs of the connections this neuron is source or target of.
    """

    neuron_id: str
    layer: Layer
    index: int = 0
    traffic_state: TrafficState = TrafficState.NORMAL
    intensity: float = 0.3
    spike_count: int = 0
    last_fired: Optional[float] = None
    connections: List[str] = field(default_factory=list)

    def record_spike(self, now: float) -> None:
        self.spike_count += 1
        self.last_fired = now


@dataclass
class SynapticConnection:
    """Directed, weighted edge between neurons in adjacent layers.

    Attributes:
        connection_id: ``"<source_id>-<target_id>"``; unique per ordered pair.
        strength: In (0, 1]; fixed at creation.
        active: Transient; cleared by decay once the last signal goes stale.
        last_signal: Time the last signal was carried, or None if never.
        last_signal_kind: Classification of that last signal.
    """

    connection_id: str
    source_id: str
    target_id: str
    source_layer: Layer
    target_layer: Layer
    strength: float
    active: bool = False
    last_signal: Optional[float] = None
    last_signal_kind: SignalKind = SignalKind.NORMAL

    def carry(self, kind: SignalKind, now: float) -> None:
        """Mark the connection as having just carried a signal of ``kind``."""
        self.active = True
        self.last_signal = now
        self.last_signal_kind = kind


@dataclass
class InFlightSignal:
    """One packet of activity travelling between two positions.

    ``progress`` runs from 0 (departed) to 1 (arrived) and advances by
    ``speed`` every signal tick.
    """

    source_id: str
    target_id: str
    origin: Position
    destination: Position
    speed: float
    intensity: float
    kind: SignalKind = SignalKind.NORMAL
    color: str = "#10B981"
    progress: float = 0.0
    signal_id: str = field(default_factory=lambda: f"signal-{uuid.uuid4()}")

    def position(self) -> Position:
        """Current interpolated position along origin → destination."""
        t = self.progress
        return Position(
            x=self.origin.x + (self.destination.x - self.origin.x) * t,
            y=self.origin.y + (self.destination.y - self.origin.y) * t,
        )


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------

@dataclass
class FlowTelemetry:
    """Engine statistics snapshot.

    Attributes:
        signal_ticks: Signal ticks run while active.
        traffic_ticks: Traffic state updates run while active.
        signals_emitted: Kept new signals per kind name.
        signals_dropped: New signals discarded by the per-tick cap.
        signals_arrived: Signals removed on reaching progress 1.
        in_flight: Current in-flight signal count.
        active_connections: Connections currently flagged active.
        total_connections: Size of the connection set.
        state_counts: Neurons per traffic state name.
        mean_intensity: Mean neuron intensity.
    """

    signal_ticks: int = 0
    traffic_ticks: int = 0
    signals_emitted: Dict[str, int] = field(default_factory=dict)
    signals_dropped: int = 0
    signals_arrived: int = 0
    in_flight: int = 0
    active_connections: int = 0
    total_connections: int = 0
    state_counts: Dict[str, int] = field(default_factory=dict)
    mean_intensity: float = 0.0


# ---------------------------------------------------------------------------
# Population & Layout
# ---------------------------------------------------------------------------

def generate_population(config: Optional[PopulationConfig] = None) -> List[Neuron]:
    """Create the neuron population in bulk, ordered input, hidden, output.

    Raises:
        ValueError: If any layer count is negative.
    """
    cfg = config or PopulationConfig()
    counts = {
        Layer.INPUT: cfg.input_count,
        Layer.HIDDEN: cfg.hidden_count,
        Layer.OUTPUT: cfg.output_count,
    }
    neurons: List[Neuron] = []
    for layer in LAYERS:
        count = counts[layer]
        if count < 0:
            raise ValueError(f"Neuron count for {layer.value} layer must be >= 0, got {count}")
        for i in range(count):
            neurons.append(
                Neuron(
                    neuron_id=f"{layer.value}-{i}",
                    layer=layer,
                    index=i,
                    intensity=cfg.initial_intensity,
                )
            )
    return neurons


def neurons_in_layer(neurons: List[Neuron], layer: Layer) -> List[Neuron]:
    return [n for n in neurons if n.layer is layer]


def neuron_position(layer: Layer, index: int, layout: Optional[LayoutConfig] = None) -> Position:
    """Rendering position of the ``index``-th neuron of ``layer``."""
    lay = layout or LayoutConfig()
    if layer is Layer.INPUT:
        return Position(lay.input_x, lay.input_y + index * lay.input_spacing)
    if layer is Layer.HIDDEN:
        return Position(lay.hidden_x, lay.hidden_y + index * lay.hidden_spacing)
    return Position(lay.output_x, lay.output_y + index * lay.output_spacing)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def neuron_to_dict(neuron: Neuron) -> Dict[str, Any]:
    return {
        "id": neuron.neuron_id,
        "layer": neuron.layer.value,
        "index": neuron.index,
        "traffic_state": neuron.traffic_state.value,
        "intensity": neuron.intensity,
        "spike_count": neuron.spike_count,
        "last_fired": neuron.last_fired,
        "connections": list(neuron.connections),
    }


def connection_to_dict(conn: SynapticConnection) -> Dict[str, Any]:
    return {
        "id": conn.connection_id,
        "source": conn.source_id,
        "target": conn.target_id,
        "strength": conn.strength,
        "active": conn.active,
        "last_signal": conn.last_signal,
    }


def signal_to_dict(signal: InFlightSignal) -> Dict[str, Any]:
    return {
        "id": signal.signal_id,
        "source": signal.source_id,
        "target": signal.target_id,
        "from": [signal.origin.x, signal.origin.y],
        "to": [signal.destination.x, signal.destination.y],
        "progress": signal.progress,
        "speed": signal.speed,
        "intensity": signal.intensity,
        "kind": signal.kind.value,
        "color": signal.color,
    }
