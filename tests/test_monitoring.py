"""Tests for flow_monitoring: health summary, event log, dashboard, coordinator."""

import asyncio
import json
import os
import sys
import urllib.error
import urllib.request
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from flow_config import load_flow_config
from flow_monitoring import FlowLogger, FlowMonitor, MonitoringDashboard, health_context
from flow_simulation import FlowSimulation


@pytest.fixture
def flow_config(tmp_path):
    cfg = load_flow_config({"seed": 21})
    cfg.monitoring.log_dir = str(tmp_path)
    cfg.monitoring.http_enabled = False
    cfg.monitoring.health_interval = 3600.0
    return cfg


@pytest.fixture
def simulation(flow_config):
    return FlowSimulation(flow_config)


def read_events(path):
    return [json.loads(line) for line in path.read_text().splitlines() if line]


class TestHealthContext:
    def test_health_context_format(self):
        mock_sim = MagicMock()
        mock_sim.stats.return_value = {
            "neurons": 1234,
            "connections": 5678,
            "in_flight": 9,
            "anomaly_score": 0.75,
            "state_counts": {"anomaly": 3},
            "running": True,
        }
        result = health_context(mock_sim)
        assert "1,234 neurons" in result
        assert "5,678 connections" in result
        assert "9 signals in flight" in result
        assert "anomaly score 0.75" in result
        assert "3 neurons in anomaly state" in result
        assert result.endswith("running")

    def test_health_context_idle(self, simulation):
        result = health_context(simulation)
        assert "18 neurons" in result
        assert result.endswith("idle")

    def test_health_context_handles_error(self):
        mock_sim = MagicMock()
        mock_sim.stats.side_effect = RuntimeError("boom")
        assert "unavailable" in health_context(mock_sim)


class TestFlowLogger:
    def test_log_event_writes_json_line(self, tmp_path, flow_config):
        events = FlowLogger(flow_config)
        try:
            events.log_event("test_event", {"key": "value"})
        finally:
            events.close()

        assert events.path == tmp_path / "flow.log"
        (entry,) = read_events(events.path)
        assert entry["event"] == "test_event"
        assert entry["data"] == {"key": "value"}
        assert isinstance(entry["timestamp"], float)

    def test_close_twice(self, flow_config):
        events = FlowLogger(flow_config)
        events.close()
        events.close()


class TestMonitoringDashboard:
    def test_dashboard_disabled(self, flow_config, simulation):
        dashboard = MonitoringDashboard(flow_config.monitoring, simulation)
        dashboard.start()
        assert not dashboard.is_running
        dashboard.stop()

    def test_dashboard_serves_stats_and_snapshot(self, flow_config, simulation):
        flow_config.monitoring.http_enabled = True
        flow_config.monitoring.http_port = 0  # OS-assigned port
        dashboard = MonitoringDashboard(flow_config.monitoring, simulation)
        try:
            dashboard.start()
            if not dashboard.is_running:
                pytest.skip("could not bind a local port")
            base = f"http://127.0.0.1:{dashboard.port}"
            with urllib.request.urlopen(base + "/stats", timeout=5) as resp:
                stats = json.loads(resp.read())
            assert stats["neurons"] == 18
            with urllib.request.urlopen(base + "/snapshot", timeout=5) as resp:
                snap = json.loads(resp.read())
            assert len(snap["neurons"]) == 18
            with urllib.request.urlopen(base + "/health", timeout=5) as resp:
                health = json.loads(resp.read())
            assert health["status"] == "ok"
            assert "18 neurons" in health["context"]
            with pytest.raises(urllib.error.HTTPError) as err:
                urllib.request.urlopen(base + "/missing", timeout=5)
            assert err.value.code == 404
        finally:
            dashboard.stop()

    def test_dashboard_reports_failures(self, flow_config):
        flow_config.monitoring.http_enabled = True
        flow_config.monitoring.http_port = 0
        mock_sim = MagicMock()
        mock_sim.stats.side_effect = RuntimeError("boom")
        dashboard = MonitoringDashboard(flow_config.monitoring, mock_sim)
        try:
            dashboard.start()
            if not dashboard.is_running:
                pytest.skip("could not bind a local port")
            with pytest.raises(urllib.error.HTTPError) as err:
                urllib.request.urlopen(f"http://127.0.0.1:{dashboard.port}/stats", timeout=5)
            assert err.value.code == 500
            assert json.loads(err.value.read())["error"] == "boom"
        finally:
            dashboard.stop()


class TestFlowMonitor:
    def test_get_health(self, flow_config, simulation):
        monitor = FlowMonitor(simulation, flow_config)
        try:
            health = monitor.get_health()
            assert health["neurons"] == 18
            assert health["dashboard_running"] is False
            assert health["running"] is False
            assert "18 neurons" in health["context"]
        finally:
            monitor.stop()

    def test_get_health_stats_unavailable(self, flow_config):
        mock_sim = MagicMock()
        mock_sim.stats.side_effect = RuntimeError("boom")
        monitor = FlowMonitor(mock_sim, flow_config)
        try:
            assert monitor.get_health()["status"] == "stats_unavailable"
        finally:
            monitor.stop()

    def test_start_stop_lifecycle(self, flow_config, simulation):
        monitor = FlowMonitor(simulation, flow_config)
        monitor.start()
        assert monitor._health_timer is not None
        monitor.stop()
        assert monitor._health_timer is None

    def test_logs_regenerated_event(self, flow_config, simulation):
        monitor = FlowMonitor(simulation, flow_config)
        monitor.start()
        try:
            simulation.regenerate()
        finally:
            monitor.stop()
        events = read_events(monitor.events.path)
        regenerated = [e for e in events if e["event"] == "regenerated"]
        assert regenerated[0]["data"]["neurons"] == 18

    def test_signal_summary_counts_cap_drops(self, flow_config, simulation):
        simulation.config.scheduler.max_new_signals = 0
        simulation.config.scheduler.base_fire_rate = 1.0
        monitor = FlowMonitor(simulation, flow_config)
        monitor.start()
        try:
            simulation.set_active(True)
            for _ in range(5):
                simulation.signal_tick()
            monitor._health_check()
        finally:
            monitor.stop()
        events = read_events(monitor.events.path)
        (summary,) = [e for e in events if e["event"] == "signal_summary"]
        assert summary["data"]["ticks"] == 5
        assert summary["data"]["emitted"] == 0
        assert summary["data"]["dropped"] == simulation.get_telemetry().signals_dropped
        assert summary["data"]["dropped"] > 0
        assert any(e["event"] == "health_check" for e in events)

    def test_stopped_event_flushes_summary(self, flow_config, simulation):
        flow_config.scheduler.tick_period = 0.01
        flow_config.traffic.tick_period = 0.03
        monitor = FlowMonitor(simulation, flow_config)
        monitor.start()
        try:
            asyncio.run(simulation.run_for(0.1))
        finally:
            monitor.stop()
        names = [e["event"] for e in read_events(monitor.events.path)]
        assert names[-2:] == ["signal_summary", "stopped"]

    def test_stop_detaches_from_simulation(self, flow_config, simulation):
        monitor = FlowMonitor(simulation, flow_config)
        monitor.start()
        monitor.stop()
        simulation.regenerate()
        events = read_events(monitor.events.path) if monitor.events.path.exists() else []
        assert not any(e["event"] == "regenerated" for e in events)
