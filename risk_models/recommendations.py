"""
Mitigation Recommendation Generator
====================================

Deterministic rules that turn propagated exposure figures into actions.

Per (OEM, risk) exposure, evaluated in order, any subset may fire:
1. Increase inventory buffer        always; ceil(dependency/20) weeks
2. Activate alternative suppliers   fewer than 2 alternative sources
3. Financial hedging                raw-material commodities
4. Strengthen supplier relationships always

Per OEM (across its commodities):
- Diversify supplier base           any commodity with HIGH regional concentration
- Activate contingency plans        any active risk with severity >= 4
"""

import math
from typing import Iterable, Mapping, Optional

from risk_models.config import DEFAULT_CONFIG, EngineConfig
from risk_models.records import (
    COMPUTATION_ERRORS,
    ChainSummary,
    Commodity,
    CommodityExposure,
    ImpactTimeline,
    Outcome,
    Recommendation,
    computation_error,
    resolve,
)


def buffer_weeks(dependency_pct: float, config: EngineConfig = DEFAULT_CONFIG) -> int:
    """One week of buffer inventory per 20 percentage points of dependency."""
    return math.ceil(dependency_pct / config.buffer_step_pct)


def is_raw_material(commodity_code: str, commodity: Optional[Commodity] = None) -> bool:
    if commodity is not None and commodity.is_raw_material:
        return True
    return "raw_material" in (commodity_code or "")


def _weeks(value: float) -> str:
    return f"{value:g} weeks"


def generate_recommendations(
    chain: ChainSummary,
    risk,
    timeline: ImpactTimeline,
    commodity: Optional[Commodity] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Outcome:
    """Mitigation actions for one OEM's exposure to one risk."""
    stage = "recommendations"
    diagnostics = []
    try:
        severity = resolve(getattr(risk, "severity", None), config.default_severity,
                           "severity", stage, diagnostics)
        recommendations = []

        weeks = buffer_weeks(chain.dependency_percentage, config)
        recommendations.append(Recommendation(
            action="Increase inventory buffer",
            detail=f"{weeks}-{weeks + 2} weeks of {chain.commodity} inventory",
            priority="URGENT" if severity >= 4 else "HIGH",
            timeline="Immediately",
        ))

        if chain.alternative_sources < 2:
            source = "new" if chain.alternative_sources == 0 else "existing alternative"
            recommendations.append(Recommendation(
                action="Activate alternative suppliers",
                detail=f"Source from {source} suppliers to reduce concentration risk",
                priority="HIGH",
                timeline=_weeks(timeline.earliest_impact_weeks),
            ))

        if is_raw_material(chain.commodity, commodity):
            recommendations.append(Recommendation(
                action="Financial hedging",
                detail="Consider futures contracts or price locks on critical commodities",
                priority="MEDIUM",
                timeline="1-2 weeks",
            ))

        recommendations.append(Recommendation(
            action="Strengthen supplier relationships",
            detail="Contact Tier-1 suppliers to discuss contingency plans and backup sourcing",
            priority="MEDIUM",
            timeline="Within 1 week",
        ))

    except COMPUTATION_ERRORS as e:
        diagnostics.append(computation_error(stage, e, []))
        return Outcome(value=[], diagnostics=diagnostics)

    return Outcome(value=recommendations, diagnostics=diagnostics)


def oem_recommendations(
    commodity_exposures: Mapping[str, CommodityExposure],
    risks: Iterable = (),
    config: EngineConfig = DEFAULT_CONFIG,
) -> Outcome:
    """
    OEM-level actions across all commodities the OEM depends on.

    Args:
        commodity_exposures: Output of commodity_exposure() for the OEM
        risks: Active Risk records touching the OEM's supply chain
        config: Calibration set
    """
    stage = "oem_recommendations"
    diagnostics = []
    try:
        recommendations = []

        concentrated = sorted(
            code for code, exp in commodity_exposures.items()
            if exp.regional_concentration_risk == "HIGH"
        )
        if concentrated:
            low, high = config.qualification_cost_range
            n = len(concentrated)
            recommendations.append(Recommendation(
                action="Diversify supplier base",
                detail=f"Qualify suppliers in additional regions for {', '.join(concentrated)}",
                priority="HIGH",
                timeline="60-90 days",
                estimated_cost=f"${low * n:,.0f}-${high * n:,.0f} (supplier qualification)",
            ))

        severities = [getattr(r, "severity", None) for r in risks]
        severities += [exp.active_risks for exp in commodity_exposures.values()]
        if any(s is not None and s >= 4 for s in severities):
            recommendations.append(Recommendation(
                action="Activate contingency plans",
                detail="Severe active risk in the supply base; brief procurement and production planning",
                priority="URGENT",
                timeline="1-2 weeks",
            ))

    except COMPUTATION_ERRORS as e:
        diagnostics.append(computation_error(stage, e, []))
        return Outcome(value=[], diagnostics=diagnostics)

    return Outcome(value=recommendations, diagnostics=diagnostics)
