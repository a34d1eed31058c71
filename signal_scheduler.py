"""
Signal Scheduler - the per-tick propagation state machine.

One call to ``tick()`` advances the simulated network by one fast tick:

    1. Snapshot per-neuron traffic state written by the traffic updater
    2. Spontaneous input firing → signals to the hidden layer
    3. Hidden-layer integrate-and-fire → signals to the output layer
    4. Age in-flight signals; drop arrivals; cap newly created signals
    5. Decay connections whose last signal has gone stale

The order is fixed: step 3 reads connection activity written by step 2 in
the same tick.  Nothing here blocks or performs I/O.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from connectivity import adjacency
from flow_config import LayoutConfig, SchedulerConfig
from flow_foundation import (
    InFlightSignal,
    Layer,
    Neuron,
    SignalKind,
    SynapticConnection,
    TrafficState,
    neuron_position,
)

logger = logging.getLogger("neuronflow.scheduler")

# Renderer colours per (source layer, kind)
INPUT_COLORS: Dict[SignalKind, str] = {
    SignalKind.NORMAL: "#10B981",
    SignalKind.SUSPICIOUS: "#F59E0B",
    SignalKind.ANOMALY: "#EF4444",
}
HIDDEN_COLORS: Dict[SignalKind, str] = {
    SignalKind.NORMAL: "#3B82F6",
    SignalKind.ANOMALY: "#EF4444",
}


# ---------------------------------------------------------------------------
# Tick Result
# ---------------------------------------------------------------------------

@dataclass
class TickResult:
    """Result returned from ``tick()``.

    Unpacks as ``(signals, connections)``.

    Attributes:
        signals: In-flight signals after aging and capping.
        connections: The connection mapping, updated in place.
        emitted: New signals kept this tick.
        dropped: New signals discarded by the per-tick cap.
        arrived: Signals removed on reaching progress 1.
        fired_ids: Neurons that fired this tick.
    """

    signals: List[InFlightSignal] = field(default_factory=list)
    connections: Dict[str, SynapticConnection] = field(default_factory=dict)
    emitted: List[InFlightSignal] = field(default_factory=list)
    dropped: int = 0
    arrived: List[InFlightSignal] = field(default_factory=list)
    fired_ids: List[str] = field(default_factory=list)

    def __iter__(self) -> Iterator:
        return iter((self.signals, self.connections))


@dataclass(frozen=True)
class NeuronSnapshot:
    traffic_state: TrafficState
    intensity: float


def snapshot_states(neurons: List[Neuron]) -> Dict[str, NeuronSnapshot]:
    """Freeze each neuron's traffic state and intensity for one tick."""
    return {
        n.neuron_id: NeuronSnapshot(n.traffic_state, n.intensity) for n in neurons
    }


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _gated_chance(score: float, threshold: float, base: float, slope: float) -> float:
    """Probability that is zero at or below ``threshold`` and rises above it."""
    if score <= threshold:
        return 0.0
    return base + slope * (score - threshold)


def classify_input_signal(
    anomaly_score: float,
    source_state: TrafficState,
    cfg: SchedulerConfig,
    rng: np.random.Generator,
) -> SignalKind:
    """Classify a signal leaving an input neuron."""
    anomaly_p = _gated_chance(
        anomaly_score, cfg.anomaly_threshold, cfg.anomaly_chance, cfg.anomaly_slope
    )
    if anomaly_p > 0.0 and source_state is TrafficState.ANOMALY:
        anomaly_p += cfg.anomaly_source_bonus
    if anomaly_p > 0.0 and rng.random() < anomaly_p:
        return SignalKind.ANOMALY

    suspicious_p = _gated_chance(
        anomaly_score, cfg.suspicious_threshold, cfg.suspicious_chance, cfg.suspicious_slope
    )
    if suspicious_p > 0.0 and rng.random() < suspicious_p:
        return SignalKind.SUSPICIOUS
    return SignalKind.NORMAL


def _input_speed(kind: SignalKind, cfg: SchedulerConfig) -> float:
    if kind is SignalKind.ANOMALY:
        return cfg.anomaly_speed
    if kind is SignalKind.SUSPICIOUS:
        return cfg.suspicious_speed
    return cfg.normal_speed


def firing_probability(
    anomaly_score: float, state: TrafficState, cfg: SchedulerConfig
) -> float:
    """Spontaneous firing probability of an input neuron."""
    p = cfg.base_fire_rate + anomaly_score * cfg.fire_rate_scale
    if state is TrafficState.SUSPICIOUS:
        p += cfg.suspicious_state_boost
    elif state is TrafficState.ANOMALY:
        p += cfg.anomaly_state_boost
    return p


# ---------------------------------------------------------------------------
# Tick
# ---------------------------------------------------------------------------

def tick(
    neurons: List[Neuron],
    connections: Dict[str, SynapticConnection],
    signals: List[InFlightSignal],
    anomaly_score: float,
    active: bool,
    *,
    now: Optional[float] = None,
    config: Optional[SchedulerConfig] = None,
    layout: Optional[LayoutConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> TickResult:
    """Advance the network by one signal tick.

    Args:
        neurons: Population; spike counts and last-fired times are updated
            in place.
        connections: Connection mapping; active flags and last-signal
            stamps are updated in place.
        signals: In-flight signals from the previous tick.  Not mutated;
            aged copies are returned.
        anomaly_score: Caller-clamped score in [0, 1].
        active: When False nothing runs and no signals survive.
        now: Current time in seconds (``time.time()`` if None).
        config: Scheduler tunables.
        layout: Coordinates used for signal origin and destination.
        rng: Random source; a fresh non-seeded generator if None.

    Returns:
        TickResult, unpackable as ``(signals, connections)``.
    """
    if not active:
        return TickResult(signals=[], connections=connections)

    cfg = config or SchedulerConfig()
    rng = rng if rng is not None else np.random.default_rng()
    now = time.time() if now is None else now
    result = TickResult(connections=connections)

    # 1. Snapshot traffic state for the whole tick
    snapshot = snapshot_states(neurons)

    by_id: Dict[str, Neuron] = {n.neuron_id: n for n in neurons}
    outgoing, incoming = adjacency(connections)

    new_signals: List[InFlightSignal] = []

    # 2. Spontaneous input firing
    for neuron in neurons:
        if neuron.layer is not Layer.INPUT:
            continue
        state = snapshot[neuron.neuron_id].traffic_state
        if rng.random() >= firing_probability(anomaly_score, state, cfg):
            continue
        neuron.record_spike(now)
        result.fired_ids.append(neuron.neuron_id)

        for conn in outgoing.get(neuron.neuron_id, []):
            target = by_id.get(conn.target_id)
            if target is None or target.layer is not neuron.layer.next():
                continue
            if rng.random() >= conn.strength:
                continue
            kind = classify_input_signal(anomaly_score, state, cfg, rng)
            new_signals.append(
                InFlightSignal(
                    source_id=neuron.neuron_id,
                    target_id=target.neuron_id,
                    origin=neuron_position(neuron.layer, neuron.index, layout),
                    destination=neuron_position(target.layer, target.index, layout),
                    speed=_input_speed(kind, cfg),
                    intensity=conn.strength,
                    kind=kind,
                    color=INPUT_COLORS[kind],
                )
            )
            conn.carry(kind, now)

    # 3. Hidden-layer integrate-and-fire
    lo, hi = cfg.hidden_threshold_range
    for neuron in neurons:
        if neuron.layer is not Layer.HIDDEN:
            continue
        recent = [
            c for c in incoming.get(neuron.neuron_id, [])
            if c.active
            and c.last_signal is not None
            and now - c.last_signal < cfg.recency_window
        ]
        total = sum(c.strength for c in recent)
        # Fresh threshold per neuron per tick, not stored on the neuron
        threshold = float(rng.uniform(lo, hi))
        if total <= threshold:
            continue
        neuron.record_spike(now)
        result.fired_ids.append(neuron.neuron_id)

        has_anomaly_input = any(c.last_signal_kind is SignalKind.ANOMALY for c in recent)
        for conn in outgoing.get(neuron.neuron_id, []):
            target = by_id.get(conn.target_id)
            if target is None or target.layer is not neuron.layer.next():
                continue
            if rng.random() >= conn.strength:
                continue
            escalated = (
                anomaly_score > cfg.hidden_anomaly_threshold
                and rng.random() < cfg.hidden_anomaly_chance
            )
            if has_anomaly_input or escalated:
                kind, speed = SignalKind.ANOMALY, cfg.hidden_anomaly_speed
            else:
                kind, speed = SignalKind.NORMAL, cfg.hidden_normal_speed
            new_signals.append(
                InFlightSignal(
                    source_id=neuron.neuron_id,
                    target_id=target.neuron_id,
                    origin=neuron_position(neuron.layer, neuron.index, layout),
                    destination=neuron_position(target.layer, target.index, layout),
                    speed=speed,
                    intensity=conn.strength,
                    kind=kind,
                    color=HIDDEN_COLORS[kind],
                )
            )
            conn.carry(kind, now)

    # 4. Age in-flight signals, then append capped new ones
    survivors, arrived = age_signals(signals)
    for sig in arrived:
        target = by_id.get(sig.target_id)
        if target is not None and target.layer is Layer.OUTPUT:
            target.record_spike(now)
    result.arrived = arrived

    kept = new_signals[: cfg.max_new_signals]
    result.dropped = len(new_signals) - len(kept)
    if result.dropped:
        logger.debug(
            "Signal cap reached: kept %d, dropped %d new signals",
            len(kept), result.dropped,
        )
    result.emitted = kept
    result.signals = survivors + kept

    # 5. Connection decay
    decay_connections(connections, now, cfg.staleness_window)

    return result


def age_signals(
    signals: List[InFlightSignal],
) -> Tuple[List[InFlightSignal], List[InFlightSignal]]:
    """Advance every signal by its speed.

    Returns:
        (survivors, arrived): aged copies still in flight, and those that
        reached progress 1 and leave the active set.
    """
    survivors: List[InFlightSignal] = []
    arrived: List[InFlightSignal] = []
    for sig in signals:
        aged = InFlightSignal(
            source_id=sig.source_id,
            target_id=sig.target_id,
            origin=sig.origin,
            destination=sig.destination,
            speed=sig.speed,
            intensity=sig.intensity,
            kind=sig.kind,
            color=sig.color,
            progress=min(1.0, sig.progress + sig.speed),
            signal_id=sig.signal_id,
        )
        if aged.progress >= 1.0:
            arrived.append(aged)
        else:
            survivors.append(aged)
    return survivors, arrived


def decay_connections(
    connections: Dict[str, SynapticConnection], now: float, staleness_window: float
) -> int:
    """Clear ``active`` on connections whose last signal is stale.

    A connection stays active while ``now - last_signal < staleness_window``.

    Returns:
        Number of connections deactivated.
    """
    cleared = 0
    for conn in connections.values():
        if not conn.active:
            continue
        if conn.last_signal is None or now - conn.last_signal >= staleness_window:
            conn.active = False
            cleared += 1
    return cleared
