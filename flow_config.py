"""
NeuronFlow Configuration - Centralized tunables for the signal propagation engine.

Provides a single ``FlowConfig`` dataclass that groups every tuneable
parameter of the engine (population, layout, connectivity, signal
scheduler, traffic state updater) plus the monitoring infrastructure.
Configuration can be loaded from a dict of overrides, a JSON file, or left
at sensible defaults.

Usage::

    from flow_config import load_flow_config

    # Defaults
    cfg = load_flow_config()

    # With overrides
    cfg = load_flow_config({"scheduler": {"tick_period": 0.1}})

    # From JSON file
    cfg = load_flow_config(config_path="~/.neuronflow/flow.json")
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger("neuronflow.config")

SECTIONS = (
    "population",
    "layout",
    "connectivity",
    "scheduler",
    "traffic",
    "monitoring",
)


# ── Section dataclasses ────────────────────────────────────────────────


@dataclass
class PopulationConfig:
    """Neuron counts per layer."""

    input_count: int = 6
    hidden_count: int = 8
    output_count: int = 4
    initial_intensity: float = 0.3


@dataclass
class LayoutConfig:
    """Rendering coordinates per layer: column x, first-row y, row spacing."""

    input_x: float = 150.0
    input_y: float = 120.0
    input_spacing: float = 40.0
    hidden_x: float = 350.0
    hidden_y: float = 100.0
    hidden_spacing: float = 30.0
    output_x: float = 550.0
    output_y: float = 140.0
    output_spacing: float = 60.0


@dataclass
class ConnectivityConfig:
    """Edge probability and strength range per adjacent layer pair."""

    input_hidden_probability: float = 0.6
    input_hidden_strength: Tuple[float, float] = (0.3, 1.0)
    hidden_output_probability: float = 0.7
    hidden_output_strength: Tuple[float, float] = (0.4, 1.0)


@dataclass
class SchedulerConfig:
    """Configuration for the fast signal tick."""

    tick_period: float = 0.15
    base_fire_rate: float = 0.3
    fire_rate_scale: float = 0.4
    suspicious_state_boost: float = 0.05
    anomaly_state_boost: float = 0.1

    # Input-layer classification
    anomaly_threshold: float = 0.7
    anomaly_chance: float = 0.3
    anomaly_slope: float = 0.5
    anomaly_source_bonus: float = 0.1
    suspicious_threshold: float = 0.4
    suspicious_chance: float = 0.2
    suspicious_slope: float = 0.3

    # Hidden-layer integrate-and-fire
    recency_window: float = 1.0
    hidden_threshold_range: Tuple[float, float] = (0.5, 0.8)
    hidden_anomaly_threshold: float = 0.6
    hidden_anomaly_chance: float = 0.4

    # Signal speeds (progress per tick)
    normal_speed: float = 0.015
    suspicious_speed: float = 0.02
    anomaly_speed: float = 0.025
    hidden_normal_speed: float = 0.018
    hidden_anomaly_speed: float = 0.028

    # Resource bounds
    max_new_signals: int = 15
    staleness_window: float = 2.0


@dataclass
class TrafficConfig:
    """Configuration for the slow traffic state tick."""

    tick_period: float = 0.8
    input_sensitivity: float = 0.8
    hidden_sensitivity: float = 1.0
    output_sensitivity: float = 1.2
    anomaly_gain: float = 0.6
    suspicious_gain: float = 0.4
    base_intensity: float = 0.2
    intensity_gain: float = 0.6
    suspicious_intensity_bonus: float = 0.1
    anomaly_intensity_bonus: float = 0.2
    intensity_noise: float = 0.1


@dataclass
class MonitoringConfig:
    """Configuration for the NeuronFlow monitoring infrastructure."""

    log_dir: str = "~/.neuronflow/logs/"
    max_log_size_mb: int = 10
    backup_count: int = 5
    http_port: int = 8848
    health_interval: float = 30.0
    http_enabled: bool = True


# ── Top-level config ───────────────────────────────────────────────────


@dataclass
class FlowConfig:
    """Top-level NeuronFlow configuration.

    Groups all tunables into sections.  Use ``load_flow_config()``
    to create an instance with user overrides applied.  ``seed`` seeds the
    default random source; ``None`` means a fresh, non-reproducible one.
    """

    population: PopulationConfig = field(default_factory=PopulationConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    traffic: TrafficConfig = field(default_factory=TrafficConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    seed: Optional[int] = None


# ── Factory ────────────────────────────────────────────────────────────


def _apply_overrides(obj: Any, overrides: Dict[str, Any]) -> None:
    """Apply a dict of overrides to a dataclass instance (in-place)."""
    for key, value in overrides.items():
        if hasattr(obj, key):
            # JSON has no tuples; ranges arrive as lists
            if isinstance(getattr(obj, key), tuple) and isinstance(value, list):
                value = tuple(value)
            setattr(obj, key, value)


def _apply_sections(cfg: FlowConfig, data: Dict[str, Any]) -> None:
    for section in SECTIONS:
        if section in data:
            _apply_overrides(getattr(cfg, section), data[section])
    if "seed" in data:
        cfg.seed = data["seed"]


def load_flow_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> FlowConfig:
    """Create a ``FlowConfig`` with defaults, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` JSON file
        3. Built-in defaults

    Args:
        overrides: Dict keyed by section name (``population``, ``layout``,
            ``connectivity``, ``scheduler``, ``traffic``, ``monitoring``)
            whose values are dicts of field→value pairs.  A top-level
            ``seed`` key is also honoured.
        config_path: Path to a JSON file with the same structure as
            ``overrides``.

    Returns:
        Fully populated ``FlowConfig``.  Not validated; call
        ``validate_flow_config()`` before running a simulation.
    """
    cfg = FlowConfig()

    # Layer 1: JSON file
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p) as f:
                    file_data = json.load(f)
                file_cfg = FlowConfig()
                _apply_sections(file_cfg, file_data)
                cfg = file_cfg
            except (OSError, ValueError, AttributeError, TypeError) as exc:
                logger.warning("Failed to load NeuronFlow config from %s: %s", p, exc)

    # Layer 2: dict overrides (win over file)
    if overrides is not None:
        _apply_sections(cfg, overrides)

    return cfg


# ── Validation ─────────────────────────────────────────────────────────


def _check_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


def _check_strength_range(name: str, bounds: Tuple[float, float]) -> None:
    lo, hi = bounds
    if not (0.0 < lo <= hi <= 1.0):
        raise ValueError(f"{name} must satisfy 0 < low <= high <= 1, got {bounds}")


def validate_flow_config(cfg: FlowConfig) -> FlowConfig:
    """Reject configurations the engine cannot run with.

    Raises:
        ValueError: On a non-positive tick period, a negative neuron count,
            a probability outside [0, 1], an invalid strength range or a
            staleness window shorter than the recency window.
    """
    if cfg.scheduler.tick_period <= 0:
        raise ValueError(
            f"scheduler.tick_period must be positive, got {cfg.scheduler.tick_period}"
        )
    if cfg.traffic.tick_period <= 0:
        raise ValueError(
            f"traffic.tick_period must be positive, got {cfg.traffic.tick_period}"
        )

    pop = cfg.population
    for name in ("input_count", "hidden_count", "output_count"):
        if getattr(pop, name) < 0:
            raise ValueError(f"population.{name} must be >= 0, got {getattr(pop, name)}")

    conn = cfg.connectivity
    _check_probability("connectivity.input_hidden_probability", conn.input_hidden_probability)
    _check_probability("connectivity.hidden_output_probability", conn.hidden_output_probability)
    _check_strength_range("connectivity.input_hidden_strength", conn.input_hidden_strength)
    _check_strength_range("connectivity.hidden_output_strength", conn.hidden_output_strength)

    sched = cfg.scheduler
    if sched.max_new_signals < 0:
        raise ValueError(f"scheduler.max_new_signals must be >= 0, got {sched.max_new_signals}")
    if sched.staleness_window < sched.recency_window:
        raise ValueError(
            "scheduler.staleness_window must not be shorter than scheduler.recency_window"
        )
    lo, hi = sched.hidden_threshold_range
    if lo > hi:
        raise ValueError(f"scheduler.hidden_threshold_range is inverted: {sched.hidden_threshold_range}")

    return cfg
