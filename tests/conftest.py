"""Shared fixtures: a fixed reference time and a small supply network."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from risk_models.exposure import build_supply_chain_graph
from risk_models.records import (
    Commodity,
    CommoditySupply,
    Event,
    Facility,
    OEM,
    Region,
    Risk,
    RiskStatus,
    SupplyChainConnection,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
SAMPLE_NETWORK = Path(__file__).resolve().parent.parent / "data" / "sample_network.json"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def sample_network_path():
    return str(SAMPLE_NETWORK)


# ── Reference records ───────────────────────────────────

@pytest.fixture
def strike_event():
    return Event(
        event_id="EVT-1",
        event_type="strike",
        severity=5,
        confidence=0.9,
        detected_date=NOW,
    )


@pytest.fixture
def small_facility():
    return Facility(facility_id="FAC-MINE", name="Test Mine", region="peru",
                    commodity="copper_cathode", facility_type="mine",
                    annual_capacity_tonnes=50)


@pytest.fixture
def major_region():
    return Region(code="peru", name="Arequipa", country="Peru", production_percentage=0.8)


@pytest.fixture
def hard_commodity():
    return Commodity(code="copper_cathode", name="Copper cathode",
                     category="raw_material", substitution_difficulty="high")


@pytest.fixture
def severe_risk():
    return Risk(
        risk_id="RISK-1",
        title="Mine strike",
        category="labor_unrest",
        region="peru",
        commodity="copper_cathode",
        severity=5,
        confidence=0.9,
        detected_date=NOW,
        status=RiskStatus.ACTIVE,
        affected_facility_ids=("FAC-MINE",),
    )


# ── Supply graph ────────────────────────────────────────
# FAC-MINE ─(tier 2, 40%)→ SUP-T1 ─(tier 1, 40%)→ OEM-A
#                                 └(tier 1, 20%, alt)→ OEM-B

@pytest.fixture
def chain_links():
    return [
        SupplyChainConnection("FAC-MINE", "SUP-T1", tier=2, dependency_pct=40,
                              commodity="copper_cathode"),
        SupplyChainConnection("SUP-T1", "OEM-A", tier=1, dependency_pct=40,
                              commodity="copper_cathode"),
        SupplyChainConnection("SUP-T1", "OEM-B", tier=1, dependency_pct=20,
                              commodity="copper_cathode", alternative_available=True),
    ]


@pytest.fixture
def supply_graph(chain_links, small_facility, hard_commodity):
    oems = [OEM("OEM-A", name="Alpha Motors"), OEM("OEM-B", name="Beta Trucks")]
    return build_supply_chain_graph(chain_links, oems, [small_facility], [hard_commodity])


@pytest.fixture
def copper_supply():
    return CommoditySupply(
        commodity="copper_cathode",
        dependency_pct=35,
        source_regions=("peru",),
        active_risk_severities=(5,),
        tier2_supplier_count=4,
        alternative_supplier_count=1,
        annual_value_usd=1_000_000,
    )


def weeks_ago(n: float) -> datetime:
    return NOW - timedelta(weeks=n)


def weeks_ahead(n: float) -> datetime:
    return NOW + timedelta(weeks=n)
