"""
Batch Orchestrator — Runs the Scoring Engine over a Supply Network
====================================================================

Pipeline: Severity → Risk Score → Exposure → Forecast → Recommendations

This orchestrator is the calling layer around the pure engine:
1. Loads facilities, regions, commodities, OEMs, connections, events
   and risks from a network JSON document
2. Validates caller inputs (horizon, OEM id) before the engine sees them
3. Fans independent (event, facility) and (risk, graph) pairs out to a
   worker pool; each pair is an isolated computation
4. Logs every degraded result with its diagnostics
5. Writes a JSON bundle and a CSV exposure table
"""

import json
import logging
import os
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from datetime import datetime
from typing import Optional

import pandas as pd

from risk_models.config import EngineConfig
from risk_models.exposure import (
    affected_oems,
    build_supply_chain_graph,
    commodity_exposure,
    reachable_oems,
    supply_chain_value_at_risk,
)
from risk_models.forecast import forecast_disruption
from risk_models.recommendations import oem_recommendations
from risk_models.records import (
    Commodity,
    Event,
    Facility,
    OEM,
    Outcome,
    Region,
    Risk,
    RiskStatus,
    SupplyChainConnection,
    to_datetime,
    utcnow,
)
from risk_models.risk_score import risk_score
from risk_models.severity import (
    estimate_duration_days,
    meets_confidence_threshold,
    score_event_severity,
)

logger = logging.getLogger(__name__)

MAX_HORIZON_WEEKS = 52
ACTIVE_STATUSES = (RiskStatus.ACTIVE, RiskStatus.ESCALATING)


class InvalidRequestError(ValueError):
    """Caller input rejected before reaching the engine."""


def validate_horizon(horizon) -> int:
    if isinstance(horizon, bool) or not isinstance(horizon, (int, str)):
        raise InvalidRequestError(f"time horizon must be an integer, got {horizon!r}")
    try:
        value = int(horizon)
    except ValueError:
        raise InvalidRequestError(f"time horizon must be an integer, got {horizon!r}") from None
    if value < 0 or value > MAX_HORIZON_WEEKS:
        raise InvalidRequestError(f"time horizon must be within 0-{MAX_HORIZON_WEEKS} weeks")
    return value


def validate_oem_id(oem_id) -> str:
    if not isinstance(oem_id, str) or not oem_id.strip():
        raise InvalidRequestError("OEM ID is required")
    return oem_id.strip()


# ─── LOGGING ─────────────────────────────────────────────────────

class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, "%Y-%m-%d %H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "diagnostics"):
            payload["diagnostics"] = record.diagnostics
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None):
    """Configure the root logger from LOG_LEVEL / LOG_FORMAT."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    fmt = fmt or os.getenv("LOG_FORMAT", "text")

    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S"
        ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)


def log_outcome(label: str, outcome: Outcome):
    if not outcome.diagnostics:
        return
    diags = [d.to_dict() for d in outcome.diagnostics]
    if outcome.degraded:
        logger.warning("%s degraded", label, extra={"diagnostics": diags})
    else:
        logger.debug("%s used defaults for %s", label, ", ".join(outcome.defaulted_fields))


# ─── WORKER FUNCTIONS ────────────────────────────────────────────
# Module-level so ProcessPoolExecutor can pickle them.

def _score_event_task(args) -> dict:
    event, facility, region, commodity, config, now = args
    severity = score_event_severity(event, config)
    outcome = risk_score(event, facility, region, commodity, config, now)
    return {
        "outcome": outcome,
        "event_id": event.event_id,
        "facility_id": getattr(facility, "facility_id", None),
        "event_type": event.event_type,
        "severity": severity,
        "expected_duration_days": estimate_duration_days(event, config),
        "passes_confidence_threshold": meets_confidence_threshold(
            event.confidence if event.confidence is not None else config.default_confidence,
            config,
        ),
    }


def _assess_risk_task(args) -> dict:
    risk, G, horizon, config, now = args
    exposures = affected_oems(risk, G, config, now)
    oems = []
    for exposure in exposures.value:
        forecast = forecast_disruption(risk, horizon, exposure.exposure_score, config, now)
        exposures.diagnostics.extend(forecast.diagnostics)
        oems.append({
            **exposure.to_dict(),
            "forecast": forecast.value.to_dict(),
        })
    return {"outcome": exposures, "risk_id": risk.risk_id, "title": risk.title, "affected_oems": oems}


# ─── ORCHESTRATOR ────────────────────────────────────────────────

class Orchestrator:
    """
    Runs the scoring engine over every event, risk and OEM in a network.
    """

    def __init__(
        self,
        network_path: str = "data/sample_network.json",
        config: Optional[EngineConfig] = None,
        max_workers: int = 1,
        executor: str = "thread",
        now: Optional[datetime] = None,
    ):
        with open(network_path) as f:
            self.network_data = json.load(f)

        self.config = config or EngineConfig.from_env()
        self.max_workers = max_workers
        self.executor = executor
        self.now = to_datetime(now) or utcnow()

        data = self.network_data
        self.regions = {r.code: r for r in map(Region.from_dict, data.get("regions", []))}
        self.commodities = {c.code: c for c in map(Commodity.from_dict, data.get("commodities", []))}
        self.facilities = {f.facility_id: f for f in map(Facility.from_dict, data.get("facilities", []))}
        self.oems = {o.oem_id: o for o in map(OEM.from_dict, data.get("oems", []))}
        self.connections = [SupplyChainConnection.from_dict(c) for c in data.get("connections", [])]
        self.events = [Event.from_dict(e) for e in data.get("events", [])]
        self.risks = [Risk.from_dict(r) for r in data.get("risks", [])]

        self.G = build_supply_chain_graph(
            self.connections, self.oems.values(), self.facilities.values(), self.commodities.values()
        )

        print("[Orchestrator] Initialized with network:", data.get("network_name"))
        print(f"[Orchestrator] Facilities: {len(self.facilities)} | OEMs: {len(self.oems)} | "
              f"Connections: {len(self.connections)}")

    def _map(self, fn, items: list) -> list:
        """Apply fn to each item, in parallel when max_workers > 1. Keeps input order."""
        if self.max_workers <= 1 or len(items) <= 1:
            return [fn(item) for item in items]
        pool_cls = ProcessPoolExecutor if self.executor == "process" else ThreadPoolExecutor
        with pool_cls(max_workers=self.max_workers) as pool:
            return list(pool.map(fn, items))

    # ─── STEP 1-2: EVENT SCORING ─────────────────────────────────

    def score_events(self) -> list[dict]:
        """Severity and risk score for every (event, facility) pair."""
        print("\n" + "=" * 60)
        print("[Step 1] SEVERITY & RISK SCORE — Event Scoring")
        print("=" * 60)

        tasks = []
        for event in self.events:
            facility = self.facilities.get(event.facility_id)
            region_code = event.region or getattr(facility, "region", None)
            commodity_code = getattr(facility, "commodity", None)
            tasks.append((
                event,
                facility,
                self.regions.get(region_code),
                self.commodities.get(commodity_code),
                self.config,
                self.now,
            ))

        results = []
        for scored in self._map(_score_event_task, tasks):
            outcome = scored.pop("outcome")
            log_outcome(f"risk score {scored['event_id']}", outcome)
            scored["risk_score"] = outcome.value
            scored["degraded"] = outcome.degraded
            scored["breakdown"] = outcome.detail.to_dict() if outcome.detail else None
            results.append(scored)
            print(f"  [{scored['event_type']:<22s}] {scored['event_id']} → "
                  f"severity {scored['severity']} | score {scored['risk_score']:.3f}")

        return results

    # ─── STEP 3-4: EXPOSURE & FORECAST ───────────────────────────

    def active_risks(self) -> list[Risk]:
        return [r for r in self.risks if r.status in ACTIVE_STATUSES]

    def assess_risks(self, horizon: int = 6) -> list[dict]:
        """Propagate each active risk to its exposed OEMs and forecast each."""
        horizon = validate_horizon(horizon)
        print("\n" + "=" * 60)
        print("[Step 2] EXPOSURE & FORECAST — Risk Propagation")
        print("=" * 60)

        tasks = [(risk, self.G, horizon, self.config, self.now) for risk in self.active_risks()]
        results = []
        for assessed in self._map(_assess_risk_task, tasks):
            outcome = assessed.pop("outcome")
            log_outcome(f"exposure {assessed['risk_id']}", outcome)
            results.append(assessed)

            if assessed["affected_oems"]:
                top = assessed["affected_oems"][0]
                print(f"  {assessed['title'][:50]} → {len(assessed['affected_oems'])} OEMs exposed "
                      f"(max {top['exposure_score']:.2f}, {top['oem_id']})")
            else:
                print(f"  {assessed['title'][:50]} → No material OEM exposure")

        return results

    # ─── STEP 5: OEM PROFILE ─────────────────────────────────────

    def risks_for_oem(self, oem: OEM) -> list[Risk]:
        """Active risks on the OEM's commodities or upstream of it in the graph."""
        commodities = {s.commodity for s in oem.supplies}
        touching = []
        for risk in self.active_risks():
            reaches = any(
                oem.oem_id in reachable_oems(self.G, fid) for fid in risk.affected_facility_ids
            )
            if reaches or risk.commodity in commodities:
                touching.append(risk)
        return touching

    def profile_oem(self, oem_id: str) -> dict:
        """Commodity exposure, value at risk and OEM-level actions for one OEM."""
        oem_id = validate_oem_id(oem_id)
        oem = self.oems.get(oem_id)
        if oem is None:
            raise InvalidRequestError(f"Unknown OEM: {oem_id}")

        risks = self.risks_for_oem(oem)
        exposures = commodity_exposure(oem.oem_id, oem.supplies, self.config)
        value = supply_chain_value_at_risk(oem.supplies, risks)
        actions = oem_recommendations(exposures.value, risks, self.config)
        for label, outcome in (("commodity exposure", exposures), ("value at risk", value),
                               ("OEM recommendations", actions)):
            log_outcome(f"{label} {oem_id}", outcome)

        scores = [e.exposure_score for e in exposures.value.values()]
        return {
            "oem": {"oem_id": oem.oem_id, "name": oem.name, "headquarters": oem.headquarters},
            "exposure_summary": {
                "total_supply_chain_value_usd": value.value.total_supply_chain_value,
                "at_risk_value_usd": value.value.value_at_risk,
                "at_risk_percentage": value.value.percentage_at_risk,
                "risk_score": max(scores, default=0.0),
            },
            "commodity_exposures": {k: v.to_dict() for k, v in exposures.value.items()},
            "top_risks": [
                {"risk_id": r.risk_id, "title": r.title, "severity": r.severity}
                for r in sorted(risks, key=lambda r: r.severity or 0, reverse=True)
            ],
            "recommendations": [r.to_dict() for r in actions.value],
        }

    # ─── OUTPUT ──────────────────────────────────────────────────

    @staticmethod
    def exposure_frame(assessments: list[dict]) -> pd.DataFrame:
        """Flatten risk assessments into one row per (risk, OEM)."""
        rows = []
        for assessed in assessments:
            for oem in assessed["affected_oems"]:
                peak = oem["forecast"]["peak_risk_week"] or {}
                rows.append({
                    "risk_id": assessed["risk_id"],
                    "risk_title": assessed["title"],
                    "oem_id": oem["oem_id"],
                    "oem_name": oem["oem_name"],
                    "commodity": oem["commodity"],
                    "exposure_score": oem["exposure_score"],
                    "risk_level": oem["impact_assessment"]["risk_level"],
                    "affected_tier1_suppliers": oem["affected_tier1_suppliers"],
                    "alternative_sources": oem["alternative_sources"],
                    "disruption_probability_6w": oem["disruption_probability_6w"],
                    "estimated_disruption_days": oem["estimated_disruption_days"],
                    "peak_week": peak.get("week"),
                })
        columns = [
            "risk_id", "risk_title", "oem_id", "oem_name", "commodity", "exposure_score",
            "risk_level", "affected_tier1_suppliers", "alternative_sources",
            "disruption_probability_6w", "estimated_disruption_days", "peak_week",
        ]
        frame = pd.DataFrame(rows, columns=columns)
        return frame.sort_values("exposure_score", ascending=False, ignore_index=True)

    def run_full_pipeline(self, output_dir: str = "outputs", horizon: int = 6) -> dict:
        """
        Score events, propagate risks, profile every OEM and save outputs.

        Returns dict with all intermediate and final results.
        """
        horizon = validate_horizon(horizon)
        os.makedirs(output_dir, exist_ok=True)
        start = datetime.now()

        print("\n" + "╔" + "═" * 58 + "╗")
        print("║  SUPPLY RISK ENGINE — BATCH RUN" + " " * 26 + "║")
        print("╚" + "═" * 58 + "╝")

        events = self.score_events()
        assessments = self.assess_risks(horizon)

        print("\n" + "=" * 60)
        print("[Step 3] RECOMMENDATIONS — OEM Profiles")
        print("=" * 60)
        profiles = {oem_id: self.profile_oem(oem_id) for oem_id in self.oems}
        for oem_id, profile in profiles.items():
            print(f"  {oem_id}: {len(profile['commodity_exposures'])} commodities, "
                  f"{len(profile['recommendations'])} OEM-level actions")

        frame = self.exposure_frame(assessments)
        stamp = start.strftime("%Y%m%d_%H%M%S")
        output = {
            "timestamp": start.isoformat(),
            "reference_time": self.now.isoformat(),
            "duration_seconds": (datetime.now() - start).total_seconds(),
            "time_horizon_weeks": horizon,
            "events_scored": len(events),
            "risks_assessed": len(assessments),
            "events": events,
            "risk_assessments": assessments,
            "oem_profiles": profiles,
        }

        output_path = os.path.join(output_dir, f"pipeline_output_{stamp}.json")
        with open(output_path, "w") as f:
            json.dump(output, f, indent=2, default=str)
        csv_path = os.path.join(output_dir, f"oem_exposure_{stamp}.csv")
        frame.to_csv(csv_path, index=False)

        print(f"\n[Orchestrator] Pipeline complete in {output['duration_seconds']:.1f}s")
        print(f"[Orchestrator] Output saved to {output_path} and {csv_path}")
        output["output_path"] = output_path
        output["csv_path"] = csv_path
        return output


# ─── CLI ─────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run the supply risk scoring engine over a network")
    parser.add_argument("--network", default="data/sample_network.json")
    parser.add_argument("--output", default="outputs")
    parser.add_argument("--horizon", type=int, default=6, help="Forecast horizon in weeks")
    parser.add_argument("--workers", type=int, default=os.cpu_count() or 1)
    parser.add_argument("--executor", choices=["thread", "process"], default="process")
    parser.add_argument("--oem", help="Only print the profile for this OEM")
    args = parser.parse_args()

    configure_logging()
    orch = Orchestrator(network_path=args.network, max_workers=args.workers, executor=args.executor)

    if args.oem:
        print(json.dumps(orch.profile_oem(args.oem), indent=2))
    else:
        orch.run_full_pipeline(output_dir=args.output, horizon=args.horizon)
