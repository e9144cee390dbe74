"""
Exposure Propagation Through Multi-Tier Supply Chains
======================================================

Walks the supply graph from an at-risk facility downstream to every OEM
it feeds (facility → Tier-2 → Tier-1 → OEM) and estimates each OEM's
exposure:

    exposure = (mean dependency %/100) × (severity/5)
             × max(0.1, 1 − 0.2 × alternatives)   if any alternative source
             × 1.5                                if single Tier-1 supplier
    clamped to [0, 1]

Dependency is averaged over chain links, not summed, so several paths
carrying the same commodity are not double counted. An OEM counts as
exposed only above the 0.10 materiality threshold.

The x1.5 single-source penalty and the 20%-per-alternative reduction are
calibration constants (see EngineConfig), not measured quantities.

Per-commodity exposure (independent of one risk):

    exposure = (dependency %/100) × (max active severity/5) × (1 − 0.25 × alternatives)

with regional concentration HIGH / MEDIUM / LOW for 1 / 2 / 3+ source
regions and lead time the rounded-up mean of per-region lead times.
"""

import logging
import math
from datetime import datetime
from typing import Iterable, Optional

import networkx as nx
import numpy as np

from risk_models.config import DEFAULT_CONFIG, EngineConfig
from risk_models.forecast import disruption_probability
from risk_models.records import (
    COMPUTATION_ERRORS,
    ChainSummary,
    Commodity,
    CommodityExposure,
    CommoditySupply,
    ExposureResult,
    Facility,
    ImpactAssessment,
    ImpactTimeline,
    OEM,
    Outcome,
    SupplyChainConnection,
    ValueAtRisk,
    computation_error,
    resolve,
)
from risk_models.recommendations import buffer_weeks, generate_recommendations
from risk_models.severity import risk_level

logger = logging.getLogger(__name__)


# ─── GRAPH CONSTRUCTION ─────────────────────────────────────────

def build_supply_chain_graph(
    connections: Iterable[SupplyChainConnection],
    oems: Iterable[OEM] = (),
    facilities: Iterable[Facility] = (),
    commodities: Iterable[Commodity] = (),
) -> nx.DiGraph:
    """
    Build a directed supplier → buyer graph.

    Node attribute `kind` is "oem", "facility" or "supplier"; OEM and
    facility nodes also carry their record under `record`. Each edge keeps
    every SupplyChainConnection between the pair under `connections`.
    Commodity records are kept on the graph under G.graph["commodities"].
    """
    G = nx.DiGraph(commodities={c.code: c for c in commodities})

    for oem in oems:
        G.add_node(oem.oem_id, kind="oem", name=oem.name, record=oem)
    for facility in facilities:
        G.add_node(facility.facility_id, kind="facility", name=facility.name, record=facility)

    for conn in connections:
        for node_id in (conn.supplier_id, conn.buyer_id):
            if node_id not in G:
                G.add_node(node_id, kind="supplier", name=node_id)
        if G.has_edge(conn.supplier_id, conn.buyer_id):
            G[conn.supplier_id][conn.buyer_id]["connections"].append(conn)
        else:
            G.add_edge(conn.supplier_id, conn.buyer_id, connections=[conn])

    return G


def chain_connections(G: nx.DiGraph, facility_id: str, oem_id: str) -> list[SupplyChainConnection]:
    """Every connection lying on some path from the facility to the OEM."""
    if facility_id not in G or oem_id not in G:
        return []

    downstream = nx.descendants(G, facility_id) | {facility_id}
    upstream = nx.ancestors(G, oem_id) | {oem_id}
    on_path = downstream & upstream
    if oem_id not in on_path:
        return []

    links = []
    for u, v, data in G.edges(data=True):
        if u in on_path and v in on_path:
            links.extend(data["connections"])
    return links


def reachable_oems(G: nx.DiGraph, facility_id: str) -> list[str]:
    if facility_id not in G:
        return []
    return [
        n for n in nx.descendants(G, facility_id)
        if G.nodes[n].get("kind") == "oem"
    ]


# ─── CHAIN AGGREGATION ──────────────────────────────────────────

def summarize_chain(
    connections: list[SupplyChainConnection],
    config: EngineConfig = DEFAULT_CONFIG,
    diagnostics: Optional[list] = None,
) -> ChainSummary:
    diagnostics = diagnostics if diagnostics is not None else []
    dependencies = [
        resolve(c.dependency_pct, config.default_dependency_pct,
                "dependency_pct", "exposure", diagnostics)
        for c in connections
    ]
    commodity = next((c.commodity for c in connections if c.commodity), None) or "unknown"

    return ChainSummary(
        commodity=commodity,
        dependency_percentage=float(np.mean(dependencies)) if dependencies else 0.0,
        affected_tier1_suppliers=sum(1 for c in connections if c.tier == 1),
        tier2_suppliers=sum(1 for c in connections if c.tier == 2),
        alternative_sources=sum(1 for c in connections if c.alternative_available),
        connection_count=len(connections),
    )


def supply_gap_estimate(chain: ChainSummary, config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Share of demand left uncovered once alternatives are counted."""
    coverage = min(1.0, chain.alternative_sources / config.supply_gap_alternative_cap)
    return chain.dependency_percentage * (1 - coverage)


# ─── SCORES ──────────────────────────────────────────────────────

def exposure_score(
    dependency_pct: float,
    severity: float,
    alternative_sources: int = 0,
    affected_tier1_suppliers: int = 0,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Outcome:
    """OEM exposure (0-1) for a chain with the given dependency and redundancy."""
    try:
        score = (dependency_pct / 100) * (severity / 5)

        if alternative_sources > 0:
            reduction = 1 - alternative_sources * config.alternative_source_reduction
            score *= max(config.alternative_source_floor, reduction)

        if affected_tier1_suppliers == 1:
            score *= config.single_source_penalty

        if not math.isfinite(score):
            raise ValueError(f"non-finite exposure {score!r}")
        return Outcome(value=float(np.clip(score, 0.0, 1.0)))

    except COMPUTATION_ERRORS as e:
        return Outcome(
            value=config.error_exposure_score,
            diagnostics=[computation_error("exposure_score", e, config.error_exposure_score)],
        )


def estimate_impact_timeline(
    facility_type: Optional[str] = None,
    lead_time_weeks: Optional[float] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Outcome:
    """How long until a facility outage reaches the OEM."""
    try:
        lead = config.default_lead_time_weeks if lead_time_weeks is None else float(lead_time_weeks)
        delay = config.facility_impact_delays.get(facility_type, config.default_facility_delay)
        total = delay + lead
        return Outcome(value=ImpactTimeline(
            earliest_impact_weeks=delay,
            typical_impact_weeks=total,
            impact_days=math.floor(total * 7),
        ))
    except COMPUTATION_ERRORS as e:
        fallback = ImpactTimeline(earliest_impact_weeks=2, typical_impact_weeks=4, impact_days=28)
        return Outcome(value=fallback, diagnostics=[computation_error("impact_timeline", e, fallback)])


# ─── PER-RISK PROPAGATION ───────────────────────────────────────

def propagate_exposure(
    risk,
    facility: Optional[Facility],
    connections: list[SupplyChainConnection],
    oem_id: Optional[str] = None,
    oem_name: str = "",
    commodity: Optional[Commodity] = None,
    lead_time_weeks: Optional[float] = None,
    config: EngineConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> Outcome:
    """
    Exposure of one OEM to one risk through the given chain links.

    Args:
        risk: Risk (or Event) record with severity / confidence / dates
        facility: The at-risk facility (its type drives the impact delay)
        connections: Chain links from the facility to the OEM
        oem_id: OEM identifier; defaults to the buyer of the first
                Tier-1 connection
        commodity: Commodity record, used for raw-material detection
        lead_time_weeks: Supply lead time; default 4 weeks

    Returns:
        Outcome wrapping an ExposureResult, or None when the computation
        failed ("exposure unknown").
    """
    stage = "exposure"
    diagnostics = []
    try:
        connections = list(connections or [])
        if oem_id is None:
            oem_id = next((c.buyer_id for c in connections if c.tier == 1), "unknown")

        chain = summarize_chain(connections, config, diagnostics)
        severity = resolve(getattr(risk, "severity", None), config.default_severity,
                           "severity", stage, diagnostics)

        score = exposure_score(
            chain.dependency_percentage, severity,
            chain.alternative_sources, chain.affected_tier1_suppliers, config,
        )
        probability = disruption_probability(risk, config.probability_horizon_weeks, config, now)
        timeline = estimate_impact_timeline(
            getattr(facility, "facility_type", None), lead_time_weeks, config
        )
        recs = generate_recommendations(chain, risk, timeline.value, commodity, config)
        for outcome in (score, probability, timeline, recs):
            diagnostics.extend(outcome.diagnostics)

        result = ExposureResult(
            oem_id=oem_id,
            oem_name=oem_name,
            risk_id=getattr(risk, "risk_id", None) or getattr(risk, "event_id", ""),
            risk_title=getattr(risk, "title", ""),
            exposure_score=score.value,
            exposed=score.value > config.materiality_threshold,
            affected_tier1_suppliers=chain.affected_tier1_suppliers,
            tier2_suppliers=chain.tier2_suppliers,
            commodity=chain.commodity,
            dependency_percentage=chain.dependency_percentage,
            alternative_sources=chain.alternative_sources,
            disruption_probability_6w=probability.value,
            estimated_disruption_days=timeline.value.impact_days,
            impact_assessment=ImpactAssessment(
                risk_level=risk_level(score.value, config),
                supply_gap_estimate=supply_gap_estimate(chain, config),
                recommendations=recs.value,
            ),
        )
    except COMPUTATION_ERRORS as e:
        diagnostics.append(computation_error(stage, e, None))
        return Outcome(value=None, diagnostics=diagnostics)

    logger.debug(
        "OEM exposure calculated: oem=%s risk=%s exposure=%.3f probability=%.3f",
        result.oem_id, result.risk_id, result.exposure_score, result.disruption_probability_6w,
    )
    return Outcome(value=result, diagnostics=diagnostics)


def affected_oems(
    risk,
    G: nx.DiGraph,
    config: EngineConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> Outcome:
    """
    All OEMs materially exposed to `risk`, highest exposure first.

    Starts from every node in risk.affected_facility_ids and follows the
    graph downstream. OEMs reached from several facilities are assessed
    once over the union of their chain links. Exposures at or below the
    materiality threshold are dropped.
    """
    stage = "affected_oems"
    diagnostics = []
    try:
        facility_ids = list(getattr(risk, "affected_facility_ids", ()) or ())
        chains = {}
        origin = {}

        for facility_id in facility_ids:
            if facility_id not in G:
                diagnostics.append(computation_error(
                    stage, KeyError(f"facility {facility_id} not in supply graph"), "skipped"
                ))
                continue
            for oem_id in reachable_oems(G, facility_id):
                links = chains.setdefault(oem_id, [])
                for conn in chain_connections(G, facility_id, oem_id):
                    if conn not in links:
                        links.append(conn)
                origin.setdefault(oem_id, facility_id)

        results = []
        for oem_id, links in chains.items():
            facility = G.nodes[origin[oem_id]].get("record")
            oem_record = G.nodes[oem_id].get("record")
            code = next((c.commodity for c in links if c.commodity), None)
            outcome = propagate_exposure(
                risk, facility, links,
                oem_id=oem_id,
                oem_name=getattr(oem_record, "name", ""),
                commodity=G.graph.get("commodities", {}).get(code),
                lead_time_weeks=_oem_lead_time(oem_record, links, config),
                config=config,
                now=now,
            )
            diagnostics.extend(outcome.diagnostics)
            if outcome.value is not None and outcome.value.exposed:
                results.append(outcome.value)

    except COMPUTATION_ERRORS as e:
        diagnostics.append(computation_error(stage, e, []))
        return Outcome(value=[], diagnostics=diagnostics)

    results.sort(key=lambda r: r.exposure_score, reverse=True)
    return Outcome(value=results, diagnostics=diagnostics)


def _oem_lead_time(oem: Optional[OEM], links: list, config: EngineConfig) -> Optional[float]:
    """Lead time of the OEM's supply record for the chain commodity, if known."""
    if oem is None:
        return None
    commodities = {c.commodity for c in links}
    regions = [
        r for s in oem.supplies if s.commodity in commodities for r in s.source_regions
    ]
    return lead_time_weeks(regions, config) if regions else None


# ─── PER-COMMODITY EXPOSURE ─────────────────────────────────────

def concentration_risk(regions: Iterable[str]) -> str:
    n = len(list(regions))
    if n == 0:
        return "UNKNOWN"
    if n == 1:
        return "HIGH"
    if n == 2:
        return "MEDIUM"
    return "LOW"


def lead_time_weeks(regions: Iterable[str], config: EngineConfig = DEFAULT_CONFIG) -> int:
    """Rounded-up mean of the per-region lead times (0 with no regions)."""
    times = [
        config.region_lead_times.get(r.lower(), config.unmapped_region_lead_time)
        for r in regions
    ]
    return math.ceil(sum(times) / max(len(times), 1))


def commodity_exposure(
    oem_id: str,
    supplies: Iterable[CommoditySupply],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Outcome:
    """Exposure metrics for every commodity an OEM depends on, keyed by commodity."""
    stage = "commodity_exposure"
    diagnostics = []
    try:
        exposures = {}
        for supply in supplies:
            dependency = resolve(supply.dependency_pct, config.default_dependency_pct,
                                 f"{supply.commodity}.dependency_pct", stage, diagnostics)
            alternatives = resolve(supply.alternative_supplier_count, 0,
                                   f"{supply.commodity}.alternative_supplier_count", stage, diagnostics)
            tier2 = resolve(supply.tier2_supplier_count, 0,
                            f"{supply.commodity}.tier2_supplier_count", stage, diagnostics)
            regions = list(supply.source_regions)
            severities = [
                resolve(s, config.default_severity,
                        f"{supply.commodity}.active_risks.severity", stage, diagnostics)
                for s in supply.active_risk_severities
            ]
            max_severity = max(severities, default=0)

            score = (
                (dependency / 100)
                * (max_severity / 5)
                * (1 - alternatives * config.commodity_alternative_reduction)
            )
            exposures[supply.commodity] = CommodityExposure(
                commodity=supply.commodity,
                dependency_percentage=dependency,
                primary_source_regions=regions,
                regional_concentration_risk=concentration_risk(regions),
                tier2_supplier_count=tier2,
                alternative_supplier_count=alternatives,
                active_risks=max_severity,
                exposure_score=float(np.clip(score, 0.0, 1.0)),
                lead_time_weeks=lead_time_weeks(regions, config),
                recommended_buffer_weeks=buffer_weeks(dependency, config),
            )
    except COMPUTATION_ERRORS as e:
        diagnostics.append(computation_error(stage, e, {}))
        logger.debug("Commodity exposure failed for %s: %s", oem_id, e)
        return Outcome(value={}, diagnostics=diagnostics)

    return Outcome(value=exposures, diagnostics=diagnostics)


def supply_chain_value_at_risk(
    supplies: Iterable[CommoditySupply],
    risks: Iterable = (),
) -> Outcome:
    """Annual supply value jeopardised by active risks on the OEM's commodities."""
    stage = "value_at_risk"
    try:
        at_risk_commodities = {getattr(r, "commodity", None) for r in risks}
        total = 0.0
        at_risk = 0.0
        for supply in supplies:
            total += supply.annual_value_usd
            if supply.commodity in at_risk_commodities:
                at_risk += supply.annual_value_usd * ((supply.dependency_pct or 0) / 100)

        return Outcome(value=ValueAtRisk(
            total_supply_chain_value=total,
            value_at_risk=at_risk,
            percentage_at_risk=(at_risk / total) * 100 if total > 0 else 0.0,
        ))
    except COMPUTATION_ERRORS as e:
        empty = ValueAtRisk(0.0, 0.0, 0.0)
        return Outcome(value=empty, diagnostics=[computation_error(stage, e, empty)])
