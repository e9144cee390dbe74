"""Tests for the engine configuration."""

import dataclasses
import pickle

import pytest

from risk_models.config import DEFAULT_CONFIG, EngineConfig, FrozenTable
from risk_models.records import EventType


class TestDefaults:
    def test_event_weights(self):
        assert DEFAULT_CONFIG.event_weight("strike") == 0.85
        assert DEFAULT_CONFIG.event_weight(EventType.BANKRUPTCY) == 0.90
        assert DEFAULT_CONFIG.event_weight("volcano") == 0.65

    def test_severity_ranges(self):
        assert DEFAULT_CONFIG.severity_range("strike") == (3, 5)
        assert DEFAULT_CONFIG.severity_range("volcano") == (1, 3)

    def test_thresholds(self):
        assert DEFAULT_CONFIG.min_confidence_threshold == 0.60
        assert DEFAULT_CONFIG.weekly_decay_rate == 0.05
        assert DEFAULT_CONFIG.materiality_threshold == 0.10


class TestImmutability:
    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            DEFAULT_CONFIG.weekly_decay_rate = 0.5

    def test_tables_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_CONFIG.event_type_weights["strike"] = 1.0

    def test_picklable_and_hashable(self):
        restored = pickle.loads(pickle.dumps(DEFAULT_CONFIG))
        assert restored == DEFAULT_CONFIG
        assert hash(restored) == hash(DEFAULT_CONFIG)

    def test_overrides_return_copy(self):
        config = DEFAULT_CONFIG.with_overrides(weekly_decay_rate=0.1, region_lead_times={"peru": 8})
        assert config.weekly_decay_rate == 0.1
        assert isinstance(config.region_lead_times, FrozenTable)
        assert config.region_lead_times["peru"] == 8
        assert DEFAULT_CONFIG.weekly_decay_rate == 0.05
        assert DEFAULT_CONFIG.region_lead_times["peru"] == 4


class TestFromRiskConfig:
    def test_rows_applied(self):
        config = EngineConfig.from_risk_config([
            {"config_key": "severity_weight_strike", "config_value": "0.5"},
            {"config_key": "impact_decay_rate", "config_value": "0.1"},
            {"config_key": "substitution_difficulty_low", "config_value": "1.5"},
            {"config_key": "dashboard_theme", "config_value": "dark"},
        ])
        assert config.event_weight("strike") == 0.5
        assert config.event_weight("bankruptcy") == 0.90
        assert config.weekly_decay_rate == 0.1
        assert config.substitution_multipliers["low"] == 1.5

    def test_non_numeric_value_rejected(self):
        with pytest.raises(ValueError, match="min_confidence_threshold"):
            EngineConfig.from_risk_config([
                {"config_key": "min_confidence_threshold", "config_value": "high"},
            ])

    def test_empty_rows(self):
        assert EngineConfig.from_risk_config([]) == DEFAULT_CONFIG


class TestFromEnv:
    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("RISK_DECAY_RATE", "0.1")
        monkeypatch.setenv("RISK_MATERIALITY_THRESHOLD", "0.2")
        config = EngineConfig.from_env()
        assert config.weekly_decay_rate == 0.1
        assert config.materiality_threshold == 0.2

    def test_unset(self, monkeypatch):
        for name in ("RISK_DECAY_RATE", "RISK_MIN_CONFIDENCE", "RISK_MATERIALITY_THRESHOLD"):
            monkeypatch.delenv(name, raising=False)
        assert EngineConfig.from_env() == DEFAULT_CONFIG

    def test_bad_value(self, monkeypatch):
        monkeypatch.setenv("RISK_MIN_CONFIDENCE", "very")
        with pytest.raises(ValueError, match="RISK_MIN_CONFIDENCE"):
            EngineConfig.from_env()
