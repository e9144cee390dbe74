"""
Engine Configuration — Calibration Constants for Risk Scoring
==============================================================

Every weight, threshold and lookup table the scoring engine uses lives
in one immutable structure. Engine functions take an optional `config`
argument that defaults to DEFAULT_CONFIG, so a test suite or a batch
job can substitute its own deterministic weight set.

Several constants are calibration heuristics rather than measured
quantities and are expected to be revised as outcome data accumulates:
- capacity_reference_tonnes / capacity_floor_tonnes (small facilities
  are treated as more fragile; not a market-clearing model)
- single_source_penalty (x1.5 concentration penalty)
- alternative_source_reduction (20% per alternative source)

Overrides can come from the `risk_config` key/value table kept by the
persistence layer (see from_risk_config) or from environment variables
(see from_env).
"""

import os
from dataclasses import dataclass, field, replace
from collections.abc import Mapping
from typing import Iterable, Optional


class FrozenTable(Mapping):
    """Read-only, hashable, picklable lookup table."""

    __slots__ = ("_data",)

    def __init__(self, data=()):
        self._data = dict(data)

    def __getitem__(self, key):
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)

    def __hash__(self):
        return hash(frozenset(self._data.items()))

    def __repr__(self):
        return f"FrozenTable({self._data!r})"


# ─── DEFAULT TABLES ──────────────────────────────────────────────

EVENT_TYPE_WEIGHTS = {
    "strike": 0.85,
    "bankruptcy": 0.90,
    "environmental_shutdown": 0.75,
    "regulatory_action": 0.70,
    "infrastructure_outage": 0.60,
    "labor_protest": 0.65,
}

SEVERITY_RANGES = {
    "strike": (3, 5),
    "bankruptcy": (4, 5),
    "environmental_shutdown": (2, 4),
    "regulatory_action": (2, 4),
    "infrastructure_outage": (1, 3),
    "labor_protest": (1, 3),
}

SUBSTITUTION_MULTIPLIERS = {
    "high": 3.0,
    "medium": 2.0,
    "low": 1.0,
}

# Weeks of shipping / processing lead time by source region
REGION_LEAD_TIMES = {
    "peru": 4,
    "mexico": 2,
    "vietnam": 3,
    "china": 4,
    "india": 5,
    "other": 6,
}

# Typical disruption length in days when no explicit estimate exists
TYPICAL_DURATIONS = {
    "strike": 21,
    "bankruptcy": 180,
    "environmental_shutdown": 60,
    "regulatory_action": 45,
    "infrastructure_outage": 7,
    "labor_protest": 3,
}

# Weeks before a facility outage reaches the OEM
# (mine → smelter → component → OEM is the longest chain)
FACILITY_IMPACT_DELAYS = {
    "mine": 4.0,
    "smelter": 2.0,
    "refinery": 2.0,
    "manufacturing": 1.0,
    "assembly": 0.5,
}

# Risk categories (aggregated) → event type whose weights they use
RISK_CATEGORY_EVENT_TYPES = {
    "labor_unrest": "strike",
    "bankruptcy": "bankruptcy",
    "environmental": "environmental_shutdown",
    "regulatory": "regulatory_action",
    "infrastructure": "infrastructure_outage",
}

# Keys of the persisted risk_config table → EngineConfig attribute or
# (table attribute, table key)
RISK_CONFIG_KEYS = {
    "severity_weight_strike": ("event_type_weights", "strike"),
    "severity_weight_bankruptcy": ("event_type_weights", "bankruptcy"),
    "severity_weight_environmental": ("event_type_weights", "environmental_shutdown"),
    "severity_weight_regulatory": ("event_type_weights", "regulatory_action"),
    "severity_weight_infrastructure": ("event_type_weights", "infrastructure_outage"),
    "severity_weight_labor_protest": ("event_type_weights", "labor_protest"),
    "substitution_difficulty_high": ("substitution_multipliers", "high"),
    "substitution_difficulty_medium": ("substitution_multipliers", "medium"),
    "substitution_difficulty_low": ("substitution_multipliers", "low"),
    "min_confidence_threshold": "min_confidence_threshold",
    "impact_decay_rate": "weekly_decay_rate",
    "materiality_threshold": "materiality_threshold",
    "single_source_penalty": "single_source_penalty",
}

ENV_OVERRIDES = {
    "RISK_DECAY_RATE": "weekly_decay_rate",
    "RISK_MIN_CONFIDENCE": "min_confidence_threshold",
    "RISK_MATERIALITY_THRESHOLD": "materiality_threshold",
}


@dataclass(frozen=True)
class EngineConfig:
    """Immutable calibration set for the scoring engine."""

    # Severity & event weighting
    event_type_weights: Mapping = field(default_factory=lambda: FrozenTable(EVENT_TYPE_WEIGHTS))
    default_event_weight: float = 0.65
    risk_category_event_types: Mapping = field(default_factory=lambda: FrozenTable(RISK_CATEGORY_EVENT_TYPES))
    severity_ranges: Mapping = field(default_factory=lambda: FrozenTable(SEVERITY_RANGES))
    default_severity_range: tuple = (1, 3)
    major_participants: int = 1000
    moderate_participants: int = 500

    # Risk score
    min_confidence_threshold: float = 0.60
    weekly_decay_rate: float = 0.05
    substitution_multipliers: Mapping = field(default_factory=lambda: FrozenTable(SUBSTITUTION_MULTIPLIERS))
    default_substitution_multiplier: float = 1.0
    criticality_cap: float = 2.0
    criticality_scale: float = 3.0
    capacity_reference_tonnes: float = 100.0
    capacity_floor_tonnes: float = 10.0
    error_risk_score: float = 0.3

    # Exposure
    alternative_source_reduction: float = 0.2
    alternative_source_floor: float = 0.1
    single_source_penalty: float = 1.5
    materiality_threshold: float = 0.10
    error_exposure_score: float = 0.2
    commodity_alternative_reduction: float = 0.25
    region_lead_times: Mapping = field(default_factory=lambda: FrozenTable(REGION_LEAD_TIMES))
    unmapped_region_lead_time: float = 4.0
    buffer_step_pct: float = 20.0
    supply_gap_alternative_cap: float = 3.0

    # Disruption probability & forecast
    escalation_factor: float = 1.2
    no_start_timeline_factor: float = 0.5
    beyond_horizon_timeline_factor: float = 0.2
    timeline_slope: float = 0.3
    forecast_weekly_decay: float = 0.95
    probability_horizon_weeks: int = 6
    error_probability: float = 0.3
    default_exposure_score: float = 0.5

    # Risk level buckets (applied to exposure and disruption scores)
    high_level_threshold: float = 0.6
    medium_level_threshold: float = 0.3

    # Durations & timelines
    typical_durations: Mapping = field(default_factory=lambda: FrozenTable(TYPICAL_DURATIONS))
    default_duration_days: int = 14
    facility_impact_delays: Mapping = field(default_factory=lambda: FrozenTable(FACILITY_IMPACT_DELAYS))
    default_facility_delay: float = 3.0
    default_lead_time_weeks: float = 4.0

    # Neutral defaults for missing input fields
    default_severity: int = 3
    default_confidence: float = 0.5
    default_capacity_tonnes: float = 1000.0
    default_production_share: float = 0.5
    default_substitution: str = "medium"
    default_dependency_pct: float = 5.0

    # Recommendations
    qualification_cost_range: tuple = (15_000, 50_000)

    def severity_range(self, event_type: str) -> tuple:
        event_type = getattr(event_type, "value", event_type)
        return self.severity_ranges.get(event_type, self.default_severity_range)

    def event_weight(self, event_type: str) -> float:
        event_type = getattr(event_type, "value", event_type)
        return self.event_type_weights.get(event_type, self.default_event_weight)

    # ─── OVERRIDES ───────────────────────────────────────────────

    def with_overrides(self, **overrides) -> "EngineConfig":
        """Return a copy with scalar fields and/or whole tables replaced."""
        tables = {
            k: FrozenTable(v) for k, v in overrides.items()
            if isinstance(getattr(self, k, None), Mapping)
        }
        return replace(self, **{**overrides, **tables})

    @classmethod
    def from_risk_config(
        cls,
        rows: Iterable[Mapping],
        base: Optional["EngineConfig"] = None,
    ) -> "EngineConfig":
        """
        Build a config from rows of the persisted risk_config table.

        Each row carries `config_key` and `config_value` (stored as text).
        Unknown keys are skipped; a value that is not numeric raises
        ValueError so a bad table is caught before a batch starts.
        """
        base = base or cls()
        scalars = {}
        tables = {}

        for row in rows:
            key = row.get("config_key")
            target = RISK_CONFIG_KEYS.get(key)
            if target is None:
                continue
            try:
                value = float(row.get("config_value"))
            except (TypeError, ValueError):
                raise ValueError(
                    f"risk_config '{key}' is not numeric: {row.get('config_value')!r}"
                )

            if isinstance(target, tuple):
                table_name, table_key = target
                table = tables.setdefault(table_name, dict(getattr(base, table_name)))
                table[table_key] = value
            else:
                scalars[target] = value

        return base.with_overrides(**scalars, **tables)

    @classmethod
    def from_env(cls, base: Optional["EngineConfig"] = None) -> "EngineConfig":
        """Apply RISK_* environment overrides on top of `base`."""
        base = base or cls()
        overrides = {}
        for env_name, attr in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw:
                try:
                    overrides[attr] = float(raw)
                except ValueError:
                    raise ValueError(f"{env_name} must be numeric, got {raw!r}")
        return base.with_overrides(**overrides) if overrides else base


DEFAULT_CONFIG = EngineConfig()
