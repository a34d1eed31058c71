"""Traffic State Updater: slow-tick reclassification of every neuron.

Each neuron's traffic state is drawn from a distribution driven by the
anomaly score scaled by a per-layer sensitivity:

    effective    = anomaly_score * sensitivity[layer]
    p_anomaly    = anomaly_gain * effective ** 2
    p_suspicious = min(suspicious_gain * effective, 1 - p_anomaly)

so the chance of ``ANOMALY`` strictly increases with the score and is zero
when the score is zero.  Intensity follows the effective score plus a state
bonus and uniform noise; it is deliberately left unclamped.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np

from flow_config import TrafficConfig
from flow_foundation import Layer, Neuron, TrafficState

logger = logging.getLogger("neuronflow.traffic")


def _sensitivity(cfg: TrafficConfig) -> Dict[Layer, float]:
    return {
        Layer.INPUT: cfg.input_sensitivity,
        Layer.HIDDEN: cfg.hidden_sensitivity,
        Layer.OUTPUT: cfg.output_sensitivity,
    }


def state_probabilities(
    anomaly_score: float, layer: Layer, config: Optional[TrafficConfig] = None
) -> Dict[TrafficState, float]:
    """Probability of each traffic state for a neuron of ``layer``."""
    cfg = config or TrafficConfig()
    effective = max(0.0, anomaly_score) * _sensitivity(cfg)[layer]
    p_anomaly = min(1.0, cfg.anomaly_gain * effective ** 2)
    p_suspicious = min(cfg.suspicious_gain * effective, 1.0 - p_anomaly)
    return {
        TrafficState.ANOMALY: p_anomaly,
        TrafficState.SUSPICIOUS: p_suspicious,
        TrafficState.NORMAL: max(0.0, 1.0 - p_anomaly - p_suspicious),
    }


def update_traffic_states(
    neurons: List[Neuron],
    anomaly_score: float,
    active: bool,
    *,
    config: Optional[TrafficConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> List[Neuron]:
    """Recompute traffic state and intensity of every neuron in place.

    Does nothing while ``active`` is False; neurons keep their last state.

    Returns:
        The same ``neurons`` list.
    """
    if not active:
        return neurons

    cfg = config or TrafficConfig()
    rng = rng if rng is not None else np.random.default_rng()
    sensitivity = _sensitivity(cfg)
    bonus = {
        TrafficState.NORMAL: 0.0,
        TrafficState.SUSPICIOUS: cfg.suspicious_intensity_bonus,
        TrafficState.ANOMALY: cfg.anomaly_intensity_bonus,
    }

    for neuron in neurons:
        probs = state_probabilities(anomaly_score, neuron.layer, cfg)
        draw = rng.random()
        if draw < probs[TrafficState.ANOMALY]:
            state = TrafficState.ANOMALY
        elif draw < probs[TrafficState.ANOMALY] + probs[TrafficState.SUSPICIOUS]:
            state = TrafficState.SUSPICIOUS
        else:
            state = TrafficState.NORMAL

        effective = max(0.0, anomaly_score) * sensitivity[neuron.layer]
        noise = float(rng.uniform(-cfg.intensity_noise, cfg.intensity_noise))
        neuron.traffic_state = state
        neuron.intensity = (
            cfg.base_intensity + cfg.intensity_gain * effective + bonus[state] + noise
        )

    logger.debug("Updated traffic state of %d neurons at score %.3f", len(neurons), anomaly_score)
    return neurons
