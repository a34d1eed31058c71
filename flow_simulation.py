"""
NeuronFlow Simulation - owned context running the engine's two periodic loops.

``FlowSimulation`` owns the neuron population, the connection set, the
in-flight signals, the random source and the host-supplied inputs (anomaly
score, active flag).  Both periodic processes receive this context; there is
no module-level mutable state.

The signal tick and the traffic tick run as two independent asyncio tasks on
the same event loop.  Each tick runs to completion without awaiting, so the
shared state is never observed half-updated.

Usage::

    sim = FlowSimulation(load_flow_config())
    sim.set_anomaly_score(0.8)

    async def main():
        sim.start()
        await asyncio.sleep(5.0)
        sim.stop()
        print(sim.snapshot())

    asyncio.run(main())
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from connectivity import build_connections
from flow_config import FlowConfig, PopulationConfig, load_flow_config, validate_flow_config
from flow_foundation import (
    FlowTelemetry,
    InFlightSignal,
    Neuron,
    SignalKind,
    SynapticConnection,
    TrafficState,
    connection_to_dict,
    generate_population,
    neuron_to_dict,
    signal_to_dict,
)
from signal_scheduler import TickResult, tick
from traffic_state import update_traffic_states

logger = logging.getLogger("neuronflow.simulation")


class FlowSimulation:
    """Simulation context shared by the signal and traffic loops.

    Args:
        config: Engine configuration; validated here so a bad tick period
            fails at setup rather than at runtime.
        rng: Random source.  Defaults to ``np.random.default_rng(config.seed)``.
        clock: Returns the current time in seconds (``time.time`` default).

    Raises:
        ValueError: If the configuration is invalid.
    """

    def __init__(
        self,
        config: Optional[FlowConfig] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = validate_flow_config(config or load_flow_config())
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self._clock = clock or time.time

        # --- Shared state ---
        self.neurons: List[Neuron] = []
        self.connections: Dict[str, SynapticConnection] = {}
        self.signals: List[InFlightSignal] = []

        # --- Host inputs ---
        self.anomaly_score: float = 0.0
        self.active: bool = False

        # --- Timers ---
        self._signal_task: Optional[asyncio.Task] = None
        self._traffic_task: Optional[asyncio.Task] = None

        # --- Event handlers ---
        self._event_handlers: Dict[str, List[Callable]] = {}

        # --- Telemetry counters ---
        self._signal_ticks = 0
        self._traffic_ticks = 0
        self._emitted: Dict[str, int] = {kind.value: 0 for kind in SignalKind}
        self._dropped = 0
        self._arrived = 0

        self.regenerate()

    # -----------------------------------------------------------------------
    # Population & Connectivity
    # -----------------------------------------------------------------------

    def regenerate(self, population: Optional[PopulationConfig] = None) -> None:
        """Replace the population and rebuild its connections.

        In-flight signals refer to the old population and are discarded.
        """
        neurons = generate_population(population or self.config.population)
        if population is not None:
            self.config.population = population
        self.neurons = neurons
        self.signals = []
        self.rebuild_connections()
        self._emit("regenerated", neurons=len(self.neurons), connections=len(self.connections))

    def rebuild_connections(self) -> None:
        """Run the connectivity builder over the current population."""
        self.connections = build_connections(
            self.neurons, self.config.connectivity, rng=self.rng
        )
        logger.info(
            "Connectivity rebuilt: %d neurons, %d connections",
            len(self.neurons), len(self.connections),
        )

    # -----------------------------------------------------------------------
    # Host Inputs
    # -----------------------------------------------------------------------

    def set_anomaly_score(self, score: float) -> None:
        """Store the host's anomaly score; range is the caller's concern."""
        self.anomaly_score = score

    def set_active(self, active: bool) -> None:
        """Flip the analysis flag.  Going inactive drops all in-flight signals."""
        self.active = active
        if not active:
            self.signals = []

    # -----------------------------------------------------------------------
    # Ticks
    # -----------------------------------------------------------------------

    def signal_tick(self) -> TickResult:
        """Run one signal tick against this context."""
        result = tick(
            self.neurons,
            self.connections,
            self.signals,
            self.anomaly_score,
            self.active,
            now=self._clock(),
            config=self.config.scheduler,
            layout=self.config.layout,
            rng=self.rng,
        )
        self.signals = result.signals
        self.connections = result.connections
        if self.active:
            self._signal_ticks += 1
            for sig in result.emitted:
                self._emitted[sig.kind.value] += 1
            self._dropped += result.dropped
            self._arrived += len(result.arrived)
            self._emit("signal_tick", result=result)
        return result

    def traffic_tick(self) -> List[Neuron]:
        """Run one traffic state update against this context."""
        update_traffic_states(
            self.neurons,
            self.anomaly_score,
            self.active,
            config=self.config.traffic,
            rng=self.rng,
        )
        if self.active:
            self._traffic_ticks += 1
            self._emit("traffic_tick", neurons=self.neurons)
        return self.neurons

    # -----------------------------------------------------------------------
    # Periodic Scheduling
    # -----------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """True while both timer tasks are scheduled."""
        return (
            self._signal_task is not None
            and self._traffic_task is not None
            and not self._signal_task.done()
            and not self._traffic_task.done()
        )

    def start(self) -> None:
        """Activate and schedule both loops on the running event loop.

        Must be called from within a coroutine.  Restarting resumes from
        the current neuron and connection state.  Loops left over from a
        previous run are cancelled first.
        """
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._cancel_tasks()
        self.set_active(True)
        self._signal_task = loop.create_task(
            self._run_periodic(self.config.scheduler.tick_period, self.signal_tick),
            name="neuronflow-signal",
        )
        self._traffic_task = loop.create_task(
            self._run_periodic(self.config.traffic.tick_period, self.traffic_tick),
            name="neuronflow-traffic",
        )
        logger.info(
            "Simulation started (signal %.3fs, traffic %.3fs)",
            self.config.scheduler.tick_period, self.config.traffic.tick_period,
        )

    def stop(self) -> None:
        """Deactivate, clear in-flight signals and cancel both loops.

        Synchronous: the signal list is empty when this returns.  The
        ``stopped`` event fires only when loops were actually scheduled.
        """
        self.set_active(False)
        if not self._cancel_tasks():
            return
        logger.info("Simulation stopped")
        self._emit("stopped")

    async def run_for(self, duration: float) -> None:
        """Start, let the loops run for ``duration`` seconds, then stop."""
        self.start()
        try:
            await asyncio.sleep(duration)
        finally:
            self.stop()

    def _cancel_tasks(self) -> bool:
        """Cancel both timer tasks; True if any was scheduled."""
        had_tasks = False
        for task in (self._signal_task, self._traffic_task):
            if task is not None:
                had_tasks = True
                task.cancel()
        self._signal_task = None
        self._traffic_task = None
        return had_tasks

    async def _run_periodic(self, period: float, step: Callable[[], Any]) -> None:
        while True:
            try:
                step()
            except Exception:
                # One failed tick takes the whole simulation down
                logger.exception("%s failed; stopping simulation", step.__name__)
                self.stop()
                return
            await asyncio.sleep(period)

    # -----------------------------------------------------------------------
    # Query Methods
    # -----------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Current state for the rendering collaborator."""
        return {
            "anomaly_score": self.anomaly_score,
            "active": self.active,
            "neurons": [neuron_to_dict(n) for n in self.neurons],
            "connections": [connection_to_dict(c) for c in self.connections.values()],
            "signals": [signal_to_dict(s) for s in self.signals],
        }

    def get_telemetry(self) -> FlowTelemetry:
        """Engine statistics snapshot."""
        intensities = [n.intensity for n in self.neurons]
        state_counts = {state.value: 0 for state in TrafficState}
        for n in self.neurons:
            state_counts[n.traffic_state.value] += 1
        return FlowTelemetry(
            signal_ticks=self._signal_ticks,
            traffic_ticks=self._traffic_ticks,
            signals_emitted=dict(self._emitted),
            signals_dropped=self._dropped,
            signals_arrived=self._arrived,
            in_flight=len(self.signals),
            active_connections=sum(1 for c in self.connections.values() if c.active),
            total_connections=len(self.connections),
            state_counts=state_counts,
            mean_intensity=float(np.mean(intensities)) if intensities else 0.0,
        )

    def stats(self) -> Dict[str, Any]:
        """Telemetry as a plain dict."""
        tel = self.get_telemetry()
        return {
            "neurons": len(self.neurons),
            "connections": tel.total_connections,
            "active_connections": tel.active_connections,
            "in_flight": tel.in_flight,
            "signal_ticks": tel.signal_ticks,
            "traffic_ticks": tel.traffic_ticks,
            "signals_emitted": tel.signals_emitted,
            "signals_dropped": tel.signals_dropped,
            "signals_arrived": tel.signals_arrived,
            "state_counts": tel.state_counts,
            "mean_intensity": tel.mean_intensity,
            "anomaly_score": self.anomaly_score,
            "active": self.active,
            "running": self.is_running,
        }

    # -----------------------------------------------------------------------
    # Event System
    # -----------------------------------------------------------------------

    def register_event_handler(self, event_type: str, callback: Callable) -> None:
        """Subscribe to ``signal_tick``, ``traffic_tick``, ``regenerated``, ``stopped``."""
        self._event_handlers.setdefault(event_type, []).append(callback)

    def unregister_event_handler(self, event_type: str, callback: Callable) -> None:
        """Remove a callback added with ``register_event_handler``."""
        handlers = self._event_handlers.get(event_type, [])
        if callback in handlers:
            handlers.remove(callback)

    def _emit(self, event_type: str, **kwargs: Any) -> None:
        for cb in self._event_handlers.get(event_type, []):
            cb(**kwargs)
