"""
NeuronFlow Monitoring - Health summary, event log, and HTTP dashboard.

``FlowMonitor`` attaches to a running ``FlowSimulation`` and provides:

1. ``health_context()`` - one-line summary of the simulation
   (e.g. "NeuronFlow: 18 neurons, 52 connections, ...").
2. ``FlowLogger`` - JSON-line event log at ``<log_dir>/flow.log``, rotated by
   size.  The monitor feeds it the simulation's ``regenerated`` and
   ``stopped`` events plus a periodic summary of signal traffic, including
   how many new signals the per-tick cap discarded.
3. ``MonitoringDashboard`` - HTTP server with JSON endpoints ``/health``,
   ``/stats`` and ``/snapshot`` for external tools and renderers.

Usage::

    from flow_monitoring import FlowMonitor
    monitor = FlowMonitor(simulation, flow_config)
    monitor.start()
    ...
    monitor.stop()
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type

from flow_config import FlowConfig, MonitoringConfig

logger = logging.getLogger("neuronflow.monitoring")


# ── Health summary ─────────────────────────────────────────────────────


def health_context(simulation: Any) -> str:
    """One-line status of ``simulation``; never raises."""
    try:
        stats = simulation.stats()
    except Exception as exc:
        return f"NeuronFlow: status unavailable ({exc})"

    parts = [
        f"NeuronFlow: {stats.get('neurons', 0):,} neurons",
        f"{stats.get('connections', 0):,} connections",
    ]
    in_flight = stats.get("in_flight", 0)
    if in_flight:
        parts.append(f"{in_flight} signals in flight")
    parts.append(f"anomaly score {stats.get('anomaly_score', 0.0):.2f}")
    anomalous = stats.get("state_counts", {}).get("anomaly", 0)
    if anomalous:
        parts.append(f"{anomalous} neurons in anomaly state")
    parts.append("running" if stats.get("running") else "idle")
    return ", ".join(parts)


# ── Event log ──────────────────────────────────────────────────────────


class _EventFormatter(logging.Formatter):
    """Render a record carrying ``event``/``data`` extras as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            {
                "timestamp": record.created,
                "event": getattr(record, "event", record.getMessage()),
                "data": getattr(record, "data", {}),
            },
            default=str,
        )


class FlowLogger:
    """Structured event log written through a size-rotated file handler.

    Args:
        flow_config: ``FlowConfig``; ``monitoring.log_dir``,
            ``max_log_size_mb`` and ``backup_count`` are used.
    """

    def __init__(self, flow_config: FlowConfig) -> None:
        cfg = flow_config.monitoring
        log_dir = Path(cfg.log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        self.path = log_dir / "flow.log"

        self._handler: Optional[logging.Handler] = logging.handlers.RotatingFileHandler(
            str(self.path),
            maxBytes=cfg.max_log_size_mb * 1024 * 1024,
            backupCount=cfg.backup_count,
        )
        self._handler.setFormatter(_EventFormatter())
        self._logger = logging.getLogger("neuronflow.events")
        self._logger.setLevel(logging.INFO)
        self._logger.addHandler(self._handler)

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        self._logger.info(event_type, extra={"event": event_type, "data": data})

    def close(self) -> None:
        """Detach and close the file handler.  Safe to call twice."""
        if self._handler is None:
            return
        self._logger.removeHandler(self._handler)
        self._handler.close()
        self._handler = None


# ── HTTP dashboard ─────────────────────────────────────────────────────


def _make_handler(simulation: Any) -> Type[BaseHTTPRequestHandler]:
    """Build a request handler class bound to ``simulation``."""

    routes: Dict[str, Callable[[], Dict[str, Any]]] = {
        "/health": lambda: {
            "status": "ok",
            "timestamp": time.time(),
            "context": health_context(simulation),
        },
        "/stats": simulation.stats,
        "/snapshot": simulation.snapshot,
    }

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            route = routes.get(self.path)
            if route is None:
                self.send_error(404, "Not Found")
                return
            try:
                payload = route()
                status = 200
            except Exception as exc:
                logger.warning("Dashboard %s failed: %s", self.path, exc)
                payload, status = {"error": str(exc)}, 500

            body = json.dumps(payload, default=str).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug("dashboard: " + format, *args)

    return Handler


class MonitoringDashboard:
    """JSON-over-HTTP view of a simulation, served from a daemon thread.

    Args:
        monitoring: ``MonitoringConfig`` (port, enable flag).
        simulation: ``FlowSimulation`` to report on.
    """

    def __init__(self, monitoring: MonitoringConfig, simulation: Any) -> None:
        self._cfg = monitoring
        self._simulation = simulation
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if not self._cfg.http_enabled or self._server is not None:
            return
        try:
            self._server = ThreadingHTTPServer(
                ("0.0.0.0", self._cfg.http_port), _make_handler(self._simulation)
            )
        except OSError as exc:
            logger.warning("NeuronFlow dashboard could not bind port %d: %s",
                           self._cfg.http_port, exc)
            return
        self._thread = threading.Thread(
            target=self._server.serve_forever, daemon=True, name="neuronflow-dashboard"
        )
        self._thread.start()
        logger.info("NeuronFlow dashboard listening on port %d", self.port)

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that is 0."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._cfg.http_port

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


# ── Coordinator ────────────────────────────────────────────────────────


class FlowMonitor:
    """Ties the event log, dashboard and health checks to one simulation.

    While started, the monitor subscribes to the simulation's events:

    - ``regenerated`` and ``stopped`` are written to the event log as they
      happen.
    - ``signal_tick`` results are tallied and flushed as a
      ``signal_summary`` event (emitted, dropped by the cap, arrived) on
      every health check and when the simulation stops.

    Health checks run every ``monitoring.health_interval`` seconds on a
    ``threading.Timer``.

    Args:
        simulation: ``FlowSimulation`` instance.
        flow_config: ``FlowConfig`` with monitoring parameters.
    """

    def __init__(self, simulation: Any, flow_config: FlowConfig) -> None:
        self._simulation = simulation
        self._cfg = flow_config.monitoring
        self.events = FlowLogger(flow_config)
        self.dashboard = MonitoringDashboard(self._cfg, simulation)

        self._lock = threading.Lock()
        self._window = {"ticks": 0, "emitted": 0, "dropped": 0, "arrived": 0}
        self._health_timer: Optional[threading.Timer] = None
        self._subscriptions = [
            ("regenerated", self._on_regenerated),
            ("stopped", self._on_stopped),
            ("signal_tick", self._on_signal_tick),
        ]
        self._attached = False

    def start(self) -> None:
        if not self._attached:
            for event_type, callback in self._subscriptions:
                self._simulation.register_event_handler(event_type, callback)
            self._attached = True
        self.dashboard.start()
        self._schedule_health_check()

    def stop(self) -> None:
        if self._attached:
            for event_type, callback in self._subscriptions:
                self._simulation.unregister_event_handler(event_type, callback)
            self._attached = False
        if self._health_timer is not None:
            self._health_timer.cancel()
            self._health_timer = None
        self.dashboard.stop()
        self.events.close()

    def get_health(self) -> Dict[str, Any]:
        health: Dict[str, Any] = {
            "context": health_context(self._simulation),
            "dashboard_running": self.dashboard.is_running,
            "dashboard_port": self.dashboard.port,
        }
        try:
            stats = self._simulation.stats()
        except Exception:
            health["status"] = "stats_unavailable"
            return health
        for key in ("neurons", "connections", "in_flight", "anomaly_score", "running"):
            health[key] = stats.get(key)
        return health

    # ── Event handlers ─────────────────────────────────────────────────

    def _on_regenerated(self, neurons: int, connections: int) -> None:
        self.events.log_event("regenerated", {"neurons": neurons, "connections": connections})

    def _on_stopped(self) -> None:
        self._flush_signal_summary()
        self.events.log_event("stopped", self._simulation.stats())

    def _on_signal_tick(self, result: Any) -> None:
        with self._lock:
            self._window["ticks"] += 1
            self._window["emitted"] += len(result.emitted)
            self._window["dropped"] += result.dropped
            self._window["arrived"] += len(result.arrived)

    def _flush_signal_summary(self) -> None:
        with self._lock:
            window = dict(self._window)
            for key in self._window:
                self._window[key] = 0
        if window["ticks"] == 0:
            return
        if window["dropped"]:
            logger.info(
                "Signal cap discarded %d new signals over %d ticks",
                window["dropped"], window["ticks"],
            )
        self.events.log_event("signal_summary", window)

    # ── Health checks ──────────────────────────────────────────────────

    def _schedule_health_check(self) -> None:
        if self._health_timer is not None:
            self._health_timer.cancel()
        self._health_timer = threading.Timer(self._cfg.health_interval, self._health_check)
        self._health_timer.daemon = True
        self._health_timer.start()

    def _health_check(self) -> None:
        try:
            self._flush_signal_summary()
            self.events.log_event("health_check", self.get_health())
        except Exception as exc:
            logger.warning("Health check failed: %s", exc)
        if self._health_timer is not None:
            self._schedule_health_check()
