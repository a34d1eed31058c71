"""Simple usage example for NeuronFlow.

Runs the signal propagation engine for a few seconds at a rising anomaly
score and prints what a renderer would see.
"""

import asyncio
import logging
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flow_config import load_flow_config
from flow_monitoring import health_context
from flow_simulation import FlowSimulation


async def run(sim: FlowSimulation) -> None:
    sim.start()
    for score in (0.1, 0.5, 0.9):
        sim.set_anomaly_score(score)
        await asyncio.sleep(2.0)
        tel = sim.get_telemetry()
        print(f"\n=== anomaly score {score:.1f} ===")
        print(health_context(sim))
        print(f"signals emitted: {tel.signals_emitted}")
        print(f"dropped by cap:  {tel.signals_dropped}")
        print(f"neuron states:   {tel.state_counts}")
    sim.stop()


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")

    sim = FlowSimulation(load_flow_config({"seed": 7}))
    print("=== Initial State ===")
    print(health_context(sim))

    asyncio.run(run(sim))

    snap = sim.snapshot()
    print("\n=== After stop ===")
    print(f"in-flight signals: {len(snap['signals'])}")
    busiest = max(snap["neurons"], key=lambda n: n["spike_count"])
    print(f"busiest neuron: {busiest['id']} ({busiest['spike_count']} spikes)")


if __name__ == "__main__":
    main()
