"""
Engine Records — Typed Inputs, Outputs and Diagnostics
=======================================================

Plain dataclasses passed between the scoring stages:

    Event ──► risk_score ──► Risk ──► propagate_exposure ──► ExposureResult
                                  └──► forecast_disruption ──► ForecastResult

Input records mirror the rows supplied by the persistence layer. Fields
the collaborators may leave out are Optional; the engine substitutes the
neutral defaults from EngineConfig and reports each substitution as a
Diagnostic instead of failing the batch.

Every public engine function returns an Outcome: the best-effort value
plus the diagnostics raised while computing it. Diagnostics are for the
caller to log; they are never part of to_dict() output.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class EventType(Enum):
    STRIKE = "strike"
    BANKRUPTCY = "bankruptcy"
    ENVIRONMENTAL_SHUTDOWN = "environmental_shutdown"
    REGULATORY_ACTION = "regulatory_action"
    INFRASTRUCTURE_OUTAGE = "infrastructure_outage"
    LABOR_PROTEST = "labor_protest"


class RiskStatus(Enum):
    ACTIVE = "active"
    ESCALATING = "escalating"
    RESOLVED = "resolved"
    MITIGATED = "mitigated"


class DiagnosticKind(Enum):
    DEFAULTED_FIELD = "defaulted_field"
    COMPUTATION_ERROR = "computation_error"


def to_datetime(value) -> Optional[datetime]:
    """Coerce ISO strings / datetimes to timezone-aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_value(value):
    return value.value if isinstance(value, Enum) else value


# ─── DIAGNOSTICS ─────────────────────────────────────────────────

@dataclass(frozen=True)
class Diagnostic:
    """Why a result is degraded: a defaulted input or a caught error."""
    stage: str
    kind: DiagnosticKind
    field: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "kind": self.kind.value,
            "field": self.field,
            "detail": self.detail,
        }


@dataclass
class Outcome:
    """Best-effort engine result paired with its diagnostics."""
    value: Any
    diagnostics: list[Diagnostic] = field(default_factory=list)
    detail: Any = None

    @property
    def degraded(self) -> bool:
        return any(d.kind == DiagnosticKind.COMPUTATION_ERROR for d in self.diagnostics)

    @property
    def defaulted_fields(self) -> list[str]:
        return [
            d.field for d in self.diagnostics
            if d.kind == DiagnosticKind.DEFAULTED_FIELD
        ]


def resolve(value, default, field_name: str, stage: str, diagnostics: list):
    """Return `value`, or `default` with a defaulted_field diagnostic when missing."""
    if value is None:
        diagnostics.append(Diagnostic(
            stage=stage,
            kind=DiagnosticKind.DEFAULTED_FIELD,
            field=field_name,
            detail=f"missing, using {default!r}",
        ))
        return default
    return value


def computation_error(stage: str, err: Exception, fallback) -> Diagnostic:
    return Diagnostic(
        stage=stage,
        kind=DiagnosticKind.COMPUTATION_ERROR,
        field=None,
        detail=f"{type(err).__name__}: {err}; returned {fallback!r}",
    )


# Errors a malformed record can trigger inside a numeric stage
COMPUTATION_ERRORS = (TypeError, ValueError, ArithmeticError, KeyError, AttributeError)


# ─── INPUT RECORDS ───────────────────────────────────────────────

@dataclass(frozen=True)
class EventIndicators:
    """Severity hints extracted by the classifier."""
    scope: Optional[str] = None              # none / moderate / major
    participants: Optional[int] = None
    historical_impact: Optional[str] = None  # low / medium / high

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "EventIndicators":
        d = d or {}
        return cls(
            scope=d.get("scope"),
            participants=d.get("participants"),
            historical_impact=d.get("historical_impact"),
        )


@dataclass(frozen=True)
class Event:
    """A classified signal. Read-only to the engine."""
    event_id: str
    event_type: str
    severity: Optional[int] = None
    confidence: Optional[float] = None
    detected_date: Optional[datetime] = None
    indicators: EventIndicators = field(default_factory=EventIndicators)
    expected_duration_days: Optional[int] = None
    facility_id: Optional[str] = None
    region: Optional[str] = None
    title: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "Event":
        return cls(
            event_id=d.get("event_id") or d.get("id", ""),
            event_type=_enum_value(d.get("event_type", "unknown")),
            severity=d.get("severity"),
            confidence=d.get("confidence"),
            detected_date=to_datetime(d.get("detected_date")),
            indicators=EventIndicators.from_dict(d.get("indicators")),
            expected_duration_days=d.get("expected_duration_days"),
            facility_id=d.get("facility_id"),
            region=d.get("region"),
            title=d.get("title", ""),
        )


@dataclass(frozen=True)
class Facility:
    """A physical production site from the external catalog."""
    facility_id: str
    name: str = ""
    region: Optional[str] = None
    commodity: Optional[str] = None
    facility_type: Optional[str] = None   # mine / smelter / refinery / manufacturing / assembly
    annual_capacity_tonnes: Optional[float] = None
    regional_share_pct: Optional[float] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Facility":
        return cls(
            facility_id=d.get("facility_id") or d.get("id", ""),
            name=d.get("name", ""),
            region=d.get("region"),
            commodity=d.get("commodity"),
            facility_type=d.get("facility_type"),
            annual_capacity_tonnes=d.get("annual_capacity_tonnes"),
            regional_share_pct=d.get("regional_share_pct"),
        )


@dataclass(frozen=True)
class Region:
    """Production-share record: the region's share (0-1) of global output."""
    code: str
    name: str = ""
    country: str = ""
    production_percentage: Optional[float] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Region":
        return cls(
            code=d.get("code") or d.get("region_code", ""),
            name=d.get("name", ""),
            country=d.get("country", ""),
            production_percentage=d.get("production_percentage"),
        )


@dataclass(frozen=True)
class Commodity:
    code: str
    name: str = ""
    category: Optional[str] = None               # raw_material / component / finished_good
    substitution_difficulty: Optional[str] = None  # high / medium / low

    @property
    def is_raw_material(self) -> bool:
        return self.category == "raw_material" or "raw_material" in self.code

    @classmethod
    def from_dict(cls, d: dict) -> "Commodity":
        return cls(
            code=d.get("code") or d.get("commodity_code", ""),
            name=d.get("name", ""),
            category=d.get("category"),
            substitution_difficulty=d.get("substitution_difficulty"),
        )


@dataclass(frozen=True)
class Risk:
    """An aggregated disruption tied to events and facilities."""
    risk_id: str
    title: str = ""
    category: str = ""
    region: Optional[str] = None
    commodity: Optional[str] = None
    severity: Optional[int] = None
    confidence: Optional[float] = None
    exposure_score: Optional[float] = None
    detected_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    expected_duration_days: Optional[int] = None
    status: RiskStatus = RiskStatus.ACTIVE
    affected_facility_ids: tuple = ()

    @property
    def is_escalating(self) -> bool:
        return self.status == RiskStatus.ESCALATING

    @classmethod
    def from_dict(cls, d: dict) -> "Risk":
        return cls(
            risk_id=d.get("risk_id") or d.get("id", ""),
            title=d.get("title", ""),
            category=d.get("category", ""),
            region=d.get("region"),
            commodity=d.get("commodity"),
            severity=d.get("severity"),
            confidence=d.get("confidence"),
            exposure_score=d.get("exposure_score"),
            detected_date=to_datetime(d.get("detected_date")),
            start_date=to_datetime(d.get("start_date")),
            expected_duration_days=d.get("expected_duration_days"),
            status=RiskStatus(d.get("status", "active")),
            affected_facility_ids=tuple(d.get("affected_facility_ids", ())),
        )


@dataclass(frozen=True)
class SupplyChainConnection:
    """Edge supplier → buyer. Tier 1 sells directly to the OEM."""
    supplier_id: str
    buyer_id: str
    tier: int
    dependency_pct: Optional[float] = None
    commodity: Optional[str] = None
    alternative_available: bool = False

    @classmethod
    def from_dict(cls, d: dict) -> "SupplyChainConnection":
        return cls(
            supplier_id=d["supplier_id"],
            buyer_id=d["buyer_id"],
            tier=int(d.get("tier", d.get("supplier_tier", 1))),
            dependency_pct=d.get("dependency_pct"),
            commodity=d.get("commodity"),
            alternative_available=bool(d.get("alternative_available", False)),
        )


@dataclass(frozen=True)
class CommoditySupply:
    """How one OEM sources one commodity."""
    commodity: str
    dependency_pct: Optional[float] = None
    source_regions: tuple = ()
    active_risk_severities: tuple = ()
    tier2_supplier_count: Optional[int] = None
    alternative_supplier_count: Optional[int] = None
    annual_value_usd: float = 0.0

    @classmethod
    def from_dict(cls, commodity: str, d: dict) -> "CommoditySupply":
        risks = d.get("active_risks", ())
        return cls(
            commodity=commodity,
            dependency_pct=d.get("dependency_pct"),
            source_regions=tuple(d.get("source_regions", ())),
            active_risk_severities=tuple(
                r.get("severity") if isinstance(r, dict) else r for r in risks
            ),
            tier2_supplier_count=d.get("tier2_supplier_count"),
            alternative_supplier_count=d.get("alternative_supplier_count"),
            annual_value_usd=d.get("annual_value_usd", 0.0),
        )


@dataclass(frozen=True)
class OEM:
    oem_id: str
    name: str = ""
    headquarters: str = ""
    supplies: tuple = ()   # tuple[CommoditySupply, ...]

    @classmethod
    def from_dict(cls, d: dict) -> "OEM":
        return cls(
            oem_id=d.get("oem_id") or d.get("id", ""),
            name=d.get("name", ""),
            headquarters=d.get("headquarters", ""),
            supplies=tuple(
                CommoditySupply.from_dict(code, info)
                for code, info in d.get("commodities", {}).items()
            ),
        )


# ─── OUTPUT RECORDS ──────────────────────────────────────────────

@dataclass
class ChainSummary:
    """Aggregate of the connections linking an at-risk facility to one OEM."""
    commodity: str
    dependency_percentage: float   # mean over chain links
    affected_tier1_suppliers: int
    tier2_suppliers: int
    alternative_sources: int
    connection_count: int

    @property
    def single_sourced(self) -> bool:
        return self.affected_tier1_suppliers == 1


@dataclass
class ScoreBreakdown:
    """Running value after each risk-score stage."""
    event_weight: float
    base_score: float
    confidence_adjusted: float
    weeks_since_detected: float
    time_decay: float
    time_adjusted: float
    regional_multiplier: float
    commodity_criticality: float
    capacity_factor: float
    final_score: float

    def to_dict(self) -> dict:
        return {k: round(v, 4) for k, v in asdict(self).items()}


@dataclass
class ImpactTimeline:
    earliest_impact_weeks: float
    typical_impact_weeks: float
    impact_days: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Recommendation:
    action: str
    detail: str
    priority: str         # URGENT / HIGH / MEDIUM
    timeline: str
    estimated_cost: Optional[str] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        if d["estimated_cost"] is None:
            del d["estimated_cost"]
        return d


@dataclass
class ImpactAssessment:
    risk_level: str
    supply_gap_estimate: float
    recommendations: list[Recommendation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "risk_level": self.risk_level,
            "supply_gap_estimate": self.supply_gap_estimate,
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


@dataclass
class ExposureResult:
    """One OEM's exposure to one risk."""
    oem_id: str
    risk_id: str
    exposure_score: float
    exposed: bool
    affected_tier1_suppliers: int
    tier2_suppliers: int
    commodity: str
    dependency_percentage: float
    alternative_sources: int
    disruption_probability_6w: float
    estimated_disruption_days: int
    impact_assessment: ImpactAssessment
    oem_name: str = ""
    risk_title: str = ""

    def to_dict(self) -> dict:
        return {
            "oem_id": self.oem_id,
            "oem_name": self.oem_name,
            "risk_id": self.risk_id,
            "risk_title": self.risk_title,
            "exposed": self.exposed,
            "exposure_score": self.exposure_score,
            "affected_tier1_suppliers": self.affected_tier1_suppliers,
            "tier2_suppliers": self.tier2_suppliers,
            "commodity": self.commodity,
            "dependency_percentage": self.dependency_percentage,
            "alternative_sources": self.alternative_sources,
            "disruption_probability_6w": self.disruption_probability_6w,
            "estimated_disruption_days": self.estimated_disruption_days,
            "impact_assessment": self.impact_assessment.to_dict(),
        }


@dataclass
class CommodityExposure:
    commodity: str
    dependency_percentage: float
    primary_source_regions: list[str]
    regional_concentration_risk: str
    tier2_supplier_count: int
    alternative_supplier_count: int
    active_risks: int          # highest active-risk severity, 0 when none
    exposure_score: float
    lead_time_weeks: int
    recommended_buffer_weeks: int

    def to_dict(self) -> dict:
        d = asdict(self)
        del d["commodity"]
        return d


@dataclass
class ForecastPoint:
    week: int
    probability: float
    expected_disruption: float
    risk_level: str

    def to_dict(self) -> dict:
        return {
            "week": self.week,
            "probability": round(self.probability, 3),
            "expected_disruption": round(self.expected_disruption, 3),
            "risk_level": self.risk_level,
        }


@dataclass
class ForecastResult:
    time_horizon_weeks: int
    forecast: list[ForecastPoint]
    peak_risk_week: Optional[ForecastPoint]

    def to_dict(self) -> dict:
        return {
            "time_horizon_weeks": self.time_horizon_weeks,
            "forecast": [p.to_dict() for p in self.forecast],
            "peak_risk_week": self.peak_risk_week.to_dict() if self.peak_risk_week else None,
        }


@dataclass
class ValueAtRisk:
    total_supply_chain_value: float
    value_at_risk: float
    percentage_at_risk: float

    def to_dict(self) -> dict:
        return asdict(self)
