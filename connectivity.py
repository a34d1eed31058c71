"""Connectivity Builder: random bipartite wiring between adjacent layers.

Every ordered (source, target) pair with the target in the layer right after
the source is considered once and wired with a layer-pair probability.  The
resulting set replaces any previous one; neuron connection lists are rebuilt
to match.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from flow_config import ConnectivityConfig
from flow_foundation import LAYERS, Layer, Neuron, SynapticConnection, neurons_in_layer

logger = logging.getLogger("neuronflow.connectivity")


def _layer_pairs(cfg: ConnectivityConfig) -> List[Tuple[Layer, Layer, float, Tuple[float, float]]]:
    """(source layer, next layer, probability, strength range) for each wired pair."""
    wiring = {
        Layer.INPUT: (cfg.input_hidden_probability, cfg.input_hidden_strength),
        Layer.HIDDEN: (cfg.hidden_output_probability, cfg.hidden_output_strength),
    }
    pairs = []
    for src_layer in LAYERS:
        dst_layer = src_layer.next()
        if dst_layer is None:
            continue
        prob, strength = wiring[src_layer]
        pairs.append((src_layer, dst_layer, prob, strength))
    return pairs


def build_connections(
    neurons: List[Neuron],
    config: Optional[ConnectivityConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> Dict[str, SynapticConnection]:
    """Build the full synaptic connection set for ``neurons``.

    Args:
        neurons: The population.  Each neuron's ``connections`` list is
            reset and refilled with the IDs of the new edges it touches.
        config: Probabilities and strength ranges per layer pair.
        rng: Random source; a fresh non-seeded generator if None.

    Returns:
        Dict of connection_id → SynapticConnection, inactive and with no
        prior signal.

    Raises:
        ValueError: On a probability outside [0, 1] or a strength range
            outside (0, 1].
    """
    cfg = config or ConnectivityConfig()
    rng = rng if rng is not None else np.random.default_rng()

    pairs = _layer_pairs(cfg)
    for src_layer, dst_layer, prob, (lo, hi) in pairs:
        if not 0.0 <= prob <= 1.0:
            raise ValueError(
                f"{src_layer.value}->{dst_layer.value} probability must be within [0, 1], got {prob}"
            )
        if not (0.0 < lo <= hi <= 1.0):
            raise ValueError(
                f"{src_layer.value}->{dst_layer.value} strength range must lie in (0, 1], got {(lo, hi)}"
            )

    for neuron in neurons:
        neuron.connections = []
    by_id = {n.neuron_id: n for n in neurons}

    connections: Dict[str, SynapticConnection] = {}
    for src_layer, dst_layer, prob, (lo, hi) in pairs:
        sources = neurons_in_layer(neurons, src_layer)
        targets = neurons_in_layer(neurons, dst_layer)
        for src in sources:
            for dst in targets:
                if rng.random() >= prob:
                    continue
                conn_id = f"{src.neuron_id}-{dst.neuron_id}"
                if conn_id in connections:
                    continue
                connections[conn_id] = SynapticConnection(
                    connection_id=conn_id,
                    source_id=src.neuron_id,
                    target_id=dst.neuron_id,
                    source_layer=src_layer,
                    target_layer=dst_layer,
                    strength=float(rng.uniform(lo, hi)) if lo < hi else lo,
                )
                by_id[src.neuron_id].connections.append(conn_id)
                by_id[dst.neuron_id].connections.append(conn_id)

    logger.debug(
        "Built %d connections for %d neurons", len(connections), len(neurons)
    )
    return connections


def adjacency(
    connections: Dict[str, SynapticConnection],
) -> Tuple[Dict[str, List[SynapticConnection]], Dict[str, List[SynapticConnection]]]:
    """Index connections by endpoint.

    Returns:
        (outgoing, incoming): neuron_id → connections leaving it, and
        neuron_id → connections arriving at it.
    """
    outgoing: Dict[str, List[SynapticConnection]] = {}
    incoming: Dict[str, List[SynapticConnection]] = {}
    for conn in connections.values():
        outgoing.setdefault(conn.source_id, []).append(conn)
        incoming.setdefault(conn.target_id, []).append(conn)
    return outgoing, incoming
