"""
Disruption Forecast Engine
===========================

Projects a risk's disruption probability and expected disruption forward
week by week.

Disruption probability at a remaining horizon h:

    P(h) = (severity/5 × confidence) × phase × timeline

    phase    = 1.2 when the risk is escalating, else 1.0
    timeline = 1 − (weeks_until_start / h) × 0.3   start inside the horizon
             = 1.0                                 start already passed
             = 0.2                                 start beyond the horizon
             = 0.5                                 no start date

Forecast for week w in 0..H:

    expected_disruption(w) = P(H − w) × exposure × 0.95^w

The peak week is the first entry holding the maximum probability.
"""

import logging
import math
from datetime import datetime
from typing import Optional

import numpy as np

from risk_models.config import DEFAULT_CONFIG, EngineConfig
from risk_models.records import (
    COMPUTATION_ERRORS,
    ForecastPoint,
    ForecastResult,
    Outcome,
    computation_error,
    resolve,
    to_datetime,
    utcnow,
)
from risk_models.severity import risk_level

logger = logging.getLogger(__name__)


def weeks_until(start: datetime, now: datetime) -> float:
    days = math.floor((start - now).total_seconds() / 86400)
    return days / 7


def timeline_factor(
    start_date: Optional[datetime],
    horizon_weeks: float,
    now: datetime,
    config: EngineConfig = DEFAULT_CONFIG,
) -> float:
    if start_date is None:
        return config.no_start_timeline_factor

    weeks = weeks_until(to_datetime(start_date), now)
    if weeks < 0:
        return 1.0
    if weeks < horizon_weeks:
        return 1.0 - (weeks / horizon_weeks) * config.timeline_slope
    return config.beyond_horizon_timeline_factor


def _probability(
    severity: float,
    confidence: float,
    escalating: bool,
    start_date: Optional[datetime],
    horizon_weeks: float,
    now: datetime,
    config: EngineConfig,
) -> float:
    severity_factor = (severity / 5) * float(np.clip(confidence, 0.0, 1.0))
    phase_factor = config.escalation_factor if escalating else 1.0
    probability = severity_factor * phase_factor * timeline_factor(
        start_date, horizon_weeks, now, config
    )
    if not math.isfinite(probability):
        raise ValueError(f"non-finite probability {probability!r}")
    return float(np.clip(probability, 0.0, 1.0))


def _risk_inputs(risk, config: EngineConfig, stage: str, diagnostics: list) -> tuple:
    severity = resolve(getattr(risk, "severity", None), config.default_severity,
                       "severity", stage, diagnostics)
    confidence = resolve(getattr(risk, "confidence", None), config.default_confidence,
                         "confidence", stage, diagnostics)
    status = getattr(risk, "status", None)
    escalating = getattr(status, "value", status) == "escalating"
    return float(severity), float(confidence), escalating, getattr(risk, "start_date", None)


# ─── DISRUPTION PROBABILITY ─────────────────────────────────────

def disruption_probability(
    risk,
    horizon_weeks: float = 6,
    config: EngineConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> Outcome:
    """Probability (0-1) that `risk` becomes a supply interruption within the horizon."""
    stage = "disruption_probability"
    diagnostics = []
    try:
        now = to_datetime(now) or utcnow()
        inputs = _risk_inputs(risk, config, stage, diagnostics)
        value = _probability(*inputs, horizon_weeks, now, config)
    except COMPUTATION_ERRORS as e:
        diagnostics.append(computation_error(stage, e, config.error_probability))
        return Outcome(value=config.error_probability, diagnostics=diagnostics)
    return Outcome(value=value, diagnostics=diagnostics)


# ─── FORECAST ────────────────────────────────────────────────────

def forecast_disruption(
    risk,
    time_horizon_weeks: int = 6,
    supply_chain_exposure: Optional[float] = None,
    config: EngineConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> Outcome:
    """
    Week-by-week forecast for weeks 0..time_horizon_weeks inclusive.

    Args:
        risk: Risk record
        time_horizon_weeks: Horizon H >= 0 (validated by the caller)
        supply_chain_exposure: Baseline exposure (0-1); defaults to
            risk.exposure_score
        config: Calibration set
        now: Reference time (defaults to current UTC time)

    Returns:
        Outcome wrapping a ForecastResult. On failure the forecast is
        empty and peak_risk_week is None.
    """
    stage = "forecast"
    diagnostics = []
    try:
        now = to_datetime(now) or utcnow()
        horizon = int(time_horizon_weeks)
        if supply_chain_exposure is None:
            supply_chain_exposure = resolve(
                getattr(risk, "exposure_score", None), config.default_exposure_score,
                "exposure_score", stage, diagnostics,
            )
        exposure = float(supply_chain_exposure)
        inputs = _risk_inputs(risk, config, stage, diagnostics)

        weeks = np.arange(horizon + 1)
        decays = config.forecast_weekly_decay ** weeks

        forecast = []
        for week, decay in zip(weeks, decays):
            probability = _probability(*inputs, horizon - int(week), now, config)
            expected = probability * exposure * float(decay)
            forecast.append(ForecastPoint(
                week=int(week),
                probability=probability,
                expected_disruption=expected,
                risk_level=risk_level(expected, config),
            ))

    except COMPUTATION_ERRORS as e:
        diagnostics.append(computation_error(stage, e, None))
        logger.debug("Forecast failed for %s: %s", getattr(risk, "risk_id", "?"), e)
        return Outcome(
            value=ForecastResult(time_horizon_weeks=time_horizon_weeks, forecast=[], peak_risk_week=None),
            diagnostics=diagnostics,
        )

    peak = None
    for point in forecast:
        if peak is None or point.probability > peak.probability:
            peak = point

    return Outcome(
        value=ForecastResult(time_horizon_weeks=horizon, forecast=forecast, peak_risk_week=peak),
        diagnostics=diagnostics,
    )
