"""Tests for exposure propagation through the supply graph."""

import pytest

from conftest import NOW
from risk_models.exposure import (
    affected_oems,
    build_supply_chain_graph,
    chain_connections,
    commodity_exposure,
    concentration_risk,
    estimate_impact_timeline,
    exposure_score,
    lead_time_weeks,
    propagate_exposure,
    reachable_oems,
    summarize_chain,
    supply_chain_value_at_risk,
)
from risk_models.records import (
    CommoditySupply,
    DiagnosticKind,
    Facility,
    OEM,
    Risk,
    SupplyChainConnection,
)


def two_path_graph(dependency_pct):
    """Facility feeding one OEM through two Tier-1 suppliers at equal dependency."""
    links = [
        SupplyChainConnection("FAC", "SUP-A", tier=2, dependency_pct=dependency_pct),
        SupplyChainConnection("FAC", "SUP-B", tier=2, dependency_pct=dependency_pct),
        SupplyChainConnection("SUP-A", "OEM", tier=1, dependency_pct=dependency_pct),
        SupplyChainConnection("SUP-B", "OEM", tier=1, dependency_pct=dependency_pct),
    ]
    return build_supply_chain_graph(links, [OEM("OEM")], [Facility("FAC")])


# ══════════════════════════════════════════════════════════
# Exposure score
# ══════════════════════════════════════════════════════════

class TestExposureScore:
    def test_base_formula(self):
        assert exposure_score(40, 5, 0, 2).value == pytest.approx(0.4)
        assert exposure_score(50, 4, 0, 3).value == pytest.approx(0.4)

    def test_single_source_penalty(self):
        assert exposure_score(40, 5, 0, 1).value == pytest.approx(0.6)

    def test_alternatives_reduce_exposure(self):
        assert exposure_score(50, 5, 1, 2).value == pytest.approx(0.4)
        assert exposure_score(50, 5, 2, 2).value == pytest.approx(0.3)

    def test_alternative_reduction_floor(self):
        assert exposure_score(50, 5, 10, 2).value == pytest.approx(0.05)
        assert exposure_score(50, 5, 10, 2).value > 0

    def test_extreme_inputs_clamped_to_one(self):
        assert exposure_score(1000, 5, 0, 1).value == 1.0

    def test_never_negative(self):
        assert exposure_score(-50, 5).value == 0.0

    def test_error_sentinel(self):
        outcome = exposure_score("lots", 5)
        assert outcome.value == 0.2
        assert outcome.degraded


class TestImpactTimeline:
    def test_mine_default_lead_time(self):
        timeline = estimate_impact_timeline("mine").value
        assert timeline.earliest_impact_weeks == 4.0
        assert timeline.typical_impact_weeks == 8.0
        assert timeline.impact_days == 56

    def test_assembly_with_lead_time(self):
        timeline = estimate_impact_timeline("assembly", 3).value
        assert timeline.typical_impact_weeks == 3.5
        assert timeline.impact_days == 24

    def test_unknown_facility_type(self):
        assert estimate_impact_timeline("warehouse").value.impact_days == 49
        assert estimate_impact_timeline(None).value.earliest_impact_weeks == 3.0

    def test_bad_lead_time_falls_back(self):
        outcome = estimate_impact_timeline("mine", "soon")
        assert outcome.degraded
        assert outcome.value.impact_days == 28


# ══════════════════════════════════════════════════════════
# Graph
# ══════════════════════════════════════════════════════════

class TestSupplyGraph:
    def test_node_kinds(self, supply_graph):
        assert supply_graph.nodes["OEM-A"]["kind"] == "oem"
        assert supply_graph.nodes["FAC-MINE"]["kind"] == "facility"
        assert supply_graph.nodes["SUP-T1"]["kind"] == "supplier"
        assert "copper_cathode" in supply_graph.graph["commodities"]

    def test_parallel_connections_kept(self):
        links = [
            SupplyChainConnection("S", "B", tier=1, dependency_pct=10, commodity="a"),
            SupplyChainConnection("S", "B", tier=1, dependency_pct=30, commodity="b"),
        ]
        G = build_supply_chain_graph(links)
        assert len(G["S"]["B"]["connections"]) == 2
        assert set(G["S"]["B"]) == {"connections"}

    def test_reachable_oems(self, supply_graph):
        assert sorted(reachable_oems(supply_graph, "FAC-MINE")) == ["OEM-A", "OEM-B"]
        assert reachable_oems(supply_graph, "NOWHERE") == []

    def test_chain_connections_only_on_path(self, supply_graph):
        links = chain_connections(supply_graph, "FAC-MINE", "OEM-A")
        assert {(c.supplier_id, c.buyer_id) for c in links} == {
            ("FAC-MINE", "SUP-T1"), ("SUP-T1", "OEM-A"),
        }

    def test_chain_connections_unreachable(self, supply_graph):
        assert chain_connections(supply_graph, "OEM-A", "FAC-MINE") == []

    def test_summarize_chain_averages_dependency(self, chain_links):
        chain = summarize_chain(chain_links)
        assert chain.dependency_percentage == pytest.approx(100 / 3)
        assert chain.affected_tier1_suppliers == 2
        assert chain.tier2_suppliers == 1
        assert chain.alternative_sources == 1
        assert chain.commodity == "copper_cathode"

    def test_summarize_chain_defaults_missing_dependency(self):
        diagnostics = []
        chain = summarize_chain([SupplyChainConnection("A", "B", tier=1)], diagnostics=diagnostics)
        assert chain.dependency_percentage == 5.0
        assert chain.commodity == "unknown"
        assert diagnostics[0].field == "dependency_pct"


# ══════════════════════════════════════════════════════════
# Per-risk propagation
# ══════════════════════════════════════════════════════════

class TestPropagateExposure:
    def test_single_sourced_chain(self, severe_risk, small_facility, chain_links):
        outcome = propagate_exposure(severe_risk, small_facility, chain_links[:2], now=NOW)
        result = outcome.value
        assert result.oem_id == "OEM-A"
        assert result.exposure_score == pytest.approx(0.6)
        assert result.exposed
        assert result.affected_tier1_suppliers == 1
        assert result.estimated_disruption_days == 56
        assert 0.0 <= result.disruption_probability_6w <= 1.0

    def test_single_sourced_gets_alternative_supplier_action(self, severe_risk, small_facility, chain_links):
        result = propagate_exposure(severe_risk, small_facility, chain_links[:2], now=NOW).value
        actions = {r.action: r for r in result.impact_assessment.recommendations}
        assert actions["Activate alternative suppliers"].priority == "HIGH"
        assert actions["Activate alternative suppliers"].timeline == "4 weeks"

    def test_result_dict_shape(self, severe_risk, small_facility, chain_links):
        d = propagate_exposure(severe_risk, small_facility, chain_links[:2], now=NOW).value.to_dict()
        assert set(d) >= {
            "oem_id", "risk_id", "exposure_score", "affected_tier1_suppliers", "commodity",
            "dependency_percentage", "alternative_sources", "disruption_probability_6w",
            "estimated_disruption_days", "impact_assessment",
        }
        assert set(d["impact_assessment"]) == {"risk_level", "supply_gap_estimate", "recommendations"}

    def test_supply_gap_counts_alternatives(self, severe_risk, small_facility, chain_links):
        links = [chain_links[0], chain_links[2]]
        result = propagate_exposure(severe_risk, small_facility, links, now=NOW).value
        # mean dependency 30, one alternative covers a third
        assert result.impact_assessment.supply_gap_estimate == pytest.approx(20.0)

    def test_missing_severity_defaulted(self, small_facility, chain_links):
        risk = Risk("r", confidence=0.8)
        outcome = propagate_exposure(risk, small_facility, chain_links[:2], now=NOW)
        assert "severity" in outcome.defaulted_fields
        assert outcome.value.exposure_score == pytest.approx(0.4 * 0.6 * 1.5)

    def test_failure_returns_none(self, severe_risk, small_facility):
        outcome = propagate_exposure(severe_risk, small_facility, 42, now=NOW)
        assert outcome.value is None
        assert outcome.degraded


class TestAffectedOems:
    def test_sorted_descending(self, severe_risk, supply_graph):
        results = affected_oems(severe_risk, supply_graph, now=NOW).value
        assert [r.oem_id for r in results] == ["OEM-A", "OEM-B"]
        assert results[0].exposure_score == pytest.approx(0.6)
        # mean(40, 20) × 0.8 alternative × 1.5 single source
        assert results[1].exposure_score == pytest.approx(0.36)
        assert results[1].oem_name == "Beta Trucks"

    def test_raw_material_commodity_from_graph(self, severe_risk, supply_graph):
        result = affected_oems(severe_risk, supply_graph, now=NOW).value[0]
        actions = [r.action for r in result.impact_assessment.recommendations]
        assert "Financial hedging" in actions

    def test_materiality_threshold_is_strict(self):
        risk = Risk("r", severity=5, confidence=0.9, affected_facility_ids=("FAC",))
        assert affected_oems(risk, two_path_graph(10), now=NOW).value == []
        included = affected_oems(risk, two_path_graph(11), now=NOW).value
        assert len(included) == 1
        assert included[0].exposure_score == pytest.approx(0.11)

    def test_oem_assessed_once_across_facilities(self):
        links = [
            SupplyChainConnection("F1", "SUP", tier=2, dependency_pct=60),
            SupplyChainConnection("F2", "SUP", tier=2, dependency_pct=60),
            SupplyChainConnection("SUP", "OEM", tier=1, dependency_pct=60),
        ]
        G = build_supply_chain_graph(links, [OEM("OEM")], [Facility("F1"), Facility("F2")])
        risk = Risk("r", severity=5, confidence=0.9, affected_facility_ids=("F1", "F2"))
        results = affected_oems(risk, G, now=NOW).value
        assert len(results) == 1
        assert results[0].exposure_score == pytest.approx(0.9)

    def test_unknown_facility_reported(self, supply_graph):
        risk = Risk("r", severity=5, confidence=0.9, affected_facility_ids=("GHOST",))
        outcome = affected_oems(risk, supply_graph, now=NOW)
        assert outcome.value == []
        assert outcome.diagnostics[0].kind == DiagnosticKind.COMPUTATION_ERROR

    def test_oem_lead_time_from_supply_record(self, severe_risk, chain_links, small_facility):
        supply = CommoditySupply("copper_cathode", dependency_pct=40, source_regions=("mexico",))
        G = build_supply_chain_graph(
            chain_links[:2], [OEM("OEM-A", supplies=(supply,))], [small_facility]
        )
        result = affected_oems(severe_risk, G, now=NOW).value[0]
        # mine delay 4 + mexico lead time 2
        assert result.estimated_disruption_days == 42


# ══════════════════════════════════════════════════════════
# Per-commodity exposure
# ══════════════════════════════════════════════════════════

class TestConcentrationAndLeadTime:
    def test_concentration_labels(self):
        assert concentration_risk([]) == "UNKNOWN"
        assert concentration_risk(["peru"]) == "HIGH"
        assert concentration_risk(["peru", "mexico"]) == "MEDIUM"
        assert concentration_risk(["peru", "mexico", "vietnam"]) == "LOW"

    def test_lead_time_rounded_up_mean(self):
        assert lead_time_weeks(["peru"]) == 4
        assert lead_time_weeks(["peru", "mexico"]) == 3
        assert lead_time_weeks(["india", "china"]) == 5
        assert lead_time_weeks(["Vietnam"]) == 3

    def test_lead_time_unmapped_region(self):
        assert lead_time_weeks(["atlantis"]) == 4
        assert lead_time_weeks(["other"]) == 6
        assert lead_time_weeks([]) == 0


class TestCommodityExposure:
    def test_metrics(self, copper_supply):
        exposures = commodity_exposure("OEM-A", [copper_supply]).value
        copper = exposures["copper_cathode"]
        assert copper.exposure_score == pytest.approx(0.35 * 1.0 * 0.75)
        assert copper.regional_concentration_risk == "HIGH"
        assert copper.lead_time_weeks == 4
        assert copper.recommended_buffer_weeks == 2
        assert copper.active_risks == 5
        assert "commodity" not in copper.to_dict()

    def test_no_active_risks_means_zero_exposure(self):
        supply = CommoditySupply("lithium", dependency_pct=40, source_regions=("chile",))
        assert commodity_exposure("OEM", [supply]).value["lithium"].exposure_score == 0.0

    def test_many_alternatives_clamped(self):
        supply = CommoditySupply("chips", dependency_pct=80, active_risk_severities=(5,),
                                 alternative_supplier_count=6)
        assert commodity_exposure("OEM", [supply]).value["chips"].exposure_score == 0.0

    def test_missing_fields_defaulted(self):
        outcome = commodity_exposure("OEM", [CommoditySupply("chips")])
        chips = outcome.value["chips"]
        assert chips.dependency_percentage == 5.0
        assert chips.alternative_supplier_count == 0
        assert chips.tier2_supplier_count == 0
        assert "chips.dependency_pct" in outcome.defaulted_fields

    def test_missing_risk_severity_defaulted(self):
        chips = CommoditySupply("chips", dependency_pct=40, active_risk_severities=(4,))
        copper = CommoditySupply("copper", dependency_pct=50, active_risk_severities=(None,))
        outcome = commodity_exposure("OEM", [chips, copper])
        assert set(outcome.value) == {"chips", "copper"}
        assert outcome.value["chips"].exposure_score == pytest.approx(0.4 * 0.8)
        assert outcome.value["copper"].active_risks == 3
        assert outcome.value["copper"].exposure_score == pytest.approx(0.5 * 0.6)
        assert "copper.active_risks.severity" in outcome.defaulted_fields
        assert not outcome.degraded

    def test_oem_record_without_risk_severity(self):
        oem = OEM.from_dict({
            "oem_id": "OEM-X",
            "commodities": {"copper": {"dependency_pct": 50, "active_risks": [{"risk_id": "R"}]}},
        })
        assert oem.supplies[0].active_risk_severities == (None,)
        assert commodity_exposure("OEM-X", oem.supplies).value["copper"].active_risks == 3

    def test_failure_returns_empty(self):
        supply = CommoditySupply("chips", dependency_pct="half", active_risk_severities=(3,))
        outcome = commodity_exposure("OEM", [supply])
        assert outcome.value == {}
        assert outcome.degraded


class TestValueAtRisk:
    def test_value_at_risk(self, copper_supply, severe_risk):
        chips = CommoditySupply("chips", dependency_pct=20, annual_value_usd=3_000_000)
        var = supply_chain_value_at_risk([copper_supply, chips], [severe_risk]).value
        assert var.total_supply_chain_value == 4_000_000
        assert var.value_at_risk == pytest.approx(350_000)
        assert var.percentage_at_risk == pytest.approx(8.75)

    def test_empty(self):
        var = supply_chain_value_at_risk([]).value
        assert var.percentage_at_risk == 0.0
