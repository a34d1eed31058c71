"""Tests for flow_config: defaults, overrides, JSON file loading, validation."""

import json
import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from flow_config import (
    FlowConfig,
    SchedulerConfig,
    load_flow_config,
    validate_flow_config,
)


class TestFlowConfigDefaults:
    def test_default_population(self):
        cfg = load_flow_config()
        assert cfg.population.input_count == 6
        assert cfg.population.hidden_count == 8
        assert cfg.population.output_count == 4

    def test_default_periods(self):
        cfg = load_flow_config()
        assert cfg.scheduler.tick_period == 0.15
        assert cfg.traffic.tick_period == 0.8
        assert cfg.scheduler.tick_period < cfg.traffic.tick_period

    def test_staleness_longer_than_recency(self):
        cfg = SchedulerConfig()
        assert cfg.staleness_window > cfg.recency_window

    def test_default_seed_is_none(self):
        assert FlowConfig().seed is None


class TestFlowConfigOverrides:
    def test_override_section(self):
        cfg = load_flow_config({"scheduler": {"max_new_signals": 5}})
        assert cfg.scheduler.max_new_signals == 5
        # Other defaults preserved
        assert cfg.scheduler.tick_period == 0.15

    def test_override_seed(self):
        cfg = load_flow_config({"seed": 42})
        assert cfg.seed == 42

    def test_list_becomes_tuple(self):
        cfg = load_flow_config({"connectivity": {"input_hidden_strength": [0.5, 0.9]}})
        assert cfg.connectivity.input_hidden_strength == (0.5, 0.9)

    def test_unknown_keys_ignored(self):
        cfg = load_flow_config({"traffic": {"nonexistent_key": 42}})
        assert not hasattr(cfg.traffic, "nonexistent_key")


class TestFlowConfigFile:
    def test_load_from_json_file(self, tmp_path):
        config_file = tmp_path / "flow.json"
        config_file.write_text(json.dumps({
            "population": {"hidden_count": 12},
            "monitoring": {"http_port": 9999},
        }))
        cfg = load_flow_config(config_path=str(config_file))
        assert cfg.population.hidden_count == 12
        assert cfg.monitoring.http_port == 9999

    def test_dict_overrides_win_over_file(self, tmp_path):
        config_file = tmp_path / "flow.json"
        config_file.write_text(json.dumps({"population": {"hidden_count": 12}}))
        cfg = load_flow_config(
            overrides={"population": {"hidden_count": 3}},
            config_path=str(config_file),
        )
        assert cfg.population.hidden_count == 3

    def test_missing_file_uses_defaults(self):
        cfg = load_flow_config(config_path="/nonexistent/path.json")
        assert cfg.population.hidden_count == 8

    def test_corrupt_file_uses_defaults(self, tmp_path):
        config_file = tmp_path / "flow.json"
        config_file.write_text("{not json")
        cfg = load_flow_config(config_path=str(config_file))
        assert cfg.population.input_count == 6


    def test_malformed_section_uses_defaults(self, tmp_path, caplog):
        config_file = tmp_path / "flow.json"
        config_file.write_text(json.dumps({
            "population": {"input_count": 2},
            "scheduler": None,
        }))
        with caplog.at_level(logging.WARNING, logger="neuronflow.config"):
            cfg = load_flow_config(config_path=str(config_file))
        assert cfg.population.input_count == 6
        assert cfg.scheduler.tick_period == 0.15
        assert any("Failed to load" in r.getMessage() for r in caplog.records)

    def test_non_object_file_uses_defaults(self, tmp_path):
        config_file = tmp_path / "flow.json"
        config_file.write_text("42")
        cfg = load_flow_config(config_path=str(config_file))
        assert cfg.population.hidden_count == 8


class TestValidation:
    def test_defaults_are_valid(self):
        cfg = load_flow_config()
        assert validate_flow_config(cfg) is cfg

    @pytest.mark.parametrize("period", [0, -0.5])
    def test_rejects_non_positive_signal_period(self, period):
        cfg = load_flow_config({"scheduler": {"tick_period": period}})
        with pytest.raises(ValueError, match="tick_period"):
            validate_flow_config(cfg)

    def test_rejects_non_positive_traffic_period(self):
        cfg = load_flow_config({"traffic": {"tick_period": 0.0}})
        with pytest.raises(ValueError, match="traffic.tick_period"):
            validate_flow_config(cfg)

    def test_rejects_negative_count(self):
        cfg = load_flow_config({"population": {"output_count": -1}})
        with pytest.raises(ValueError, match="output_count"):
            validate_flow_config(cfg)

    def test_rejects_bad_probability(self):
        cfg = load_flow_config({"connectivity": {"input_hidden_probability": 1.5}})
        with pytest.raises(ValueError):
            validate_flow_config(cfg)

    def test_rejects_zero_strength(self):
        cfg = load_flow_config({"connectivity": {"hidden_output_strength": [0.0, 0.5]}})
        with pytest.raises(ValueError):
            validate_flow_config(cfg)

    def test_rejects_staleness_shorter_than_recency(self):
        cfg = load_flow_config({"scheduler": {"staleness_window": 0.5, "recency_window": 1.0}})
        with pytest.raises(ValueError, match="staleness_window"):
            validate_flow_config(cfg)
