"""
Risk Score Calculator
======================

Combines one event (or aggregated risk) with the facility, region and
commodity it touches into a single 0-1 score:

    score = (severity/5 × w_type)        base score
          × confidence                    classifier certainty
          × (1 − r)^weeks                 relevance decay, r = 5%/week
          × min(1, regional share)        regional production share
          × min(2, m_sub/3)               substitution difficulty
          × min(1, 100/max(tonnes, 10))   facility capacity factor

Stages multiply into a running value, so a zero anywhere (no confidence,
expired relevance) collapses the score to zero.

The capacity factor is a simplifying heuristic, not a market-clearing
model: a small specialised facility has no scale buffer, so each tonne
it loses is treated as more critical.

On a computation error the score falls back to 0.3 (a moderate
mid-score) so dashboards always have a number to render; the Outcome
carries the computation_error diagnostic.
"""

import logging
import math
from datetime import datetime
from typing import Optional

import numpy as np

from risk_models.config import DEFAULT_CONFIG, EngineConfig
from risk_models.records import (
    COMPUTATION_ERRORS,
    Commodity,
    Facility,
    Outcome,
    Region,
    ScoreBreakdown,
    computation_error,
    resolve,
    to_datetime,
    utcnow,
)
from risk_models.severity import event_severity

logger = logging.getLogger(__name__)

STAGE = "risk_score"


# ─── FACTORS ─────────────────────────────────────────────────────

def weeks_since(detected: datetime, now: datetime) -> float:
    """Whole days elapsed, expressed in weeks. Future dates count as 0."""
    days = math.floor((now - detected).total_seconds() / 86400)
    return max(days, 0) / 7


def time_decay(weeks: float, config: EngineConfig = DEFAULT_CONFIG) -> float:
    """
    Weekly exponential decay of relevance.
    This week: 100%, next week: 95%, two weeks: 90.25%, ...
    """
    return (1 - config.weekly_decay_rate) ** weeks


def regional_multiplier(production_percentage: float) -> float:
    """Region's share of global production of the commodity, capped at 1."""
    global_production = 100.0
    region_production = production_percentage * 100.0
    return float(np.clip(region_production / global_production, 0.0, 1.0))


def commodity_criticality(
    substitution_difficulty: Optional[str],
    config: EngineConfig = DEFAULT_CONFIG,
) -> float:
    """Harder-to-substitute commodities amplify risk: high 1.0, medium 0.67, low 0.33."""
    multiplier = config.substitution_multipliers.get(
        substitution_difficulty, config.default_substitution_multiplier
    )
    return min(config.criticality_cap, multiplier / config.criticality_scale)


def capacity_factor(annual_capacity_tonnes: float, config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Small facilities (by absolute tonnage) count as more critical."""
    return min(
        1.0,
        config.capacity_reference_tonnes
        / max(annual_capacity_tonnes, config.capacity_floor_tonnes),
    )


def signal_type(signal, config: EngineConfig = DEFAULT_CONFIG) -> str:
    """Event type of an Event, or the event type a Risk category maps to."""
    event_type = getattr(signal, "event_type", None)
    if event_type:
        return getattr(event_type, "value", event_type)
    category = getattr(signal, "category", None) or "unknown"
    return config.risk_category_event_types.get(category, category)


# ─── MAIN SCORING FUNCTION ──────────────────────────────────────

def risk_score(
    signal,
    facility: Optional[Facility] = None,
    region: Optional[Region] = None,
    commodity: Optional[Commodity] = None,
    config: EngineConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> Outcome:
    """
    Score one Event or Risk against one facility / region / commodity.

    Args:
        signal: Event or Risk record (needs severity, confidence,
                detected_date and a type or category)
        facility, region, commodity: Reference records; any may be None
        config: Calibration set
        now: Reference time for decay (defaults to current UTC time)

    Returns:
        Outcome with value in [0, 1] and detail = ScoreBreakdown
        (None when the fallback score was used)
    """
    diagnostics = []
    try:
        now = to_datetime(now) or utcnow()
        event_type = signal_type(signal, config)

        severity = getattr(signal, "severity", None)
        if severity is None:
            indicators = getattr(signal, "indicators", None)
            severity = resolve(
                None, event_severity(event_type, indicators, config),
                "severity", STAGE, diagnostics,
            )
        confidence = resolve(
            getattr(signal, "confidence", None), config.default_confidence,
            "confidence", STAGE, diagnostics,
        )
        detected = resolve(
            getattr(signal, "detected_date", None), now,
            "detected_date", STAGE, diagnostics,
        )
        capacity = resolve(
            getattr(facility, "annual_capacity_tonnes", None), config.default_capacity_tonnes,
            "annual_capacity_tonnes", STAGE, diagnostics,
        )
        share = resolve(
            getattr(region, "production_percentage", None), config.default_production_share,
            "production_percentage", STAGE, diagnostics,
        )
        difficulty = resolve(
            getattr(commodity, "substitution_difficulty", None), config.default_substitution,
            "substitution_difficulty", STAGE, diagnostics,
        )

        # 1-2. Base score from severity and event-type weight
        weight = config.event_weight(event_type)
        base = (float(severity) / 5) * weight

        # 3. Confidence
        confidence_adjusted = base * float(np.clip(confidence, 0.0, 1.0))

        # 4. Time decay
        weeks = weeks_since(to_datetime(detected), now)
        decay = time_decay(weeks, config)
        time_adjusted = confidence_adjusted * decay

        # 5-7. Regional share, substitution difficulty, facility size
        regional = regional_multiplier(float(share))
        criticality = commodity_criticality(difficulty, config)
        cap_factor = capacity_factor(float(capacity), config)

        raw = time_adjusted * regional * criticality * cap_factor
        if not math.isfinite(raw):
            raise ValueError(f"non-finite score {raw!r}")
        final = float(np.clip(raw, 0.0, 1.0))

    except COMPUTATION_ERRORS as e:
        fallback = config.error_risk_score
        diagnostics.append(computation_error(STAGE, e, fallback))
        logger.debug("Risk score fell back to %.2f: %s", fallback, e)
        return Outcome(value=fallback, diagnostics=diagnostics)

    breakdown = ScoreBreakdown(
        event_weight=weight,
        base_score=base,
        confidence_adjusted=confidence_adjusted,
        weeks_since_detected=weeks,
        time_decay=decay,
        time_adjusted=time_adjusted,
        regional_multiplier=regional,
        commodity_criticality=criticality,
        capacity_factor=cap_factor,
        final_score=final,
    )
    logger.debug(
        "Risk score calculated: type=%s base=%.3f confidence_adjusted=%.3f "
        "time_adjusted=%.3f final=%.3f weeks=%.2f",
        event_type, base, confidence_adjusted, time_adjusted, final, weeks,
    )
    return Outcome(value=final, diagnostics=diagnostics, detail=breakdown)
