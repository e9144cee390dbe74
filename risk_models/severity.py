"""
Severity & Confidence Model
============================

Maps a classified event to a 1-5 severity using its type's baseline
range and the classifier's indicators:

    major scope   OR participants > 1000 OR historical impact "high"   → range max
    moderate scope OR participants > 500 OR historical impact "medium" → ceil(midpoint)
    otherwise                                                          → range min

Also holds the small lookups every later stage shares: the HIGH /
MEDIUM / LOW bucket, typical event durations, and the confidence floor.
"""

import math
from typing import Optional

import numpy as np

from risk_models.config import DEFAULT_CONFIG, EngineConfig
from risk_models.records import Event, EventIndicators


def event_severity(
    event_type: str,
    indicators: Optional[EventIndicators] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> int:
    """Severity on the 1-5 scale. Unknown types use the {1, 3} range."""
    low, high = config.severity_range(event_type)
    ind = indicators or EventIndicators()
    participants = ind.participants or 0

    if (
        ind.scope == "major"
        or participants > config.major_participants
        or ind.historical_impact == "high"
    ):
        severity = high
    elif (
        ind.scope == "moderate"
        or participants > config.moderate_participants
        or ind.historical_impact == "medium"
    ):
        severity = math.ceil((low + high) / 2)
    else:
        severity = low

    return int(np.clip(severity, 1, 5))


def clamp_confidence(confidence: Optional[float], config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Bound a classifier confidence to [0, 1]; missing → neutral default."""
    if confidence is None:
        return config.default_confidence
    return float(np.clip(confidence, 0.0, 1.0))


def meets_confidence_threshold(confidence: float, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    """Upstream filter: events below the threshold should not become risks."""
    return confidence >= config.min_confidence_threshold


def risk_level(score: float, config: EngineConfig = DEFAULT_CONFIG) -> str:
    if score > config.high_level_threshold:
        return "HIGH"
    elif score > config.medium_level_threshold:
        return "MEDIUM"
    return "LOW"


def estimate_duration_days(event, config: EngineConfig = DEFAULT_CONFIG) -> int:
    """
    Expected disruption length in days.

    An explicit expected_duration_days wins; otherwise the typical
    duration for the event type (strike 21, infrastructure outage 7, ...).
    Accepts an Event, a Risk-like record, or a plain dict.
    """
    if isinstance(event, dict):
        event_type = event.get("event_type")
        category = event.get("category")
        explicit = event.get("expected_duration_days")
    else:
        event_type = getattr(event, "event_type", None)
        category = getattr(event, "category", None)
        explicit = getattr(event, "expected_duration_days", None)

    if not event_type:
        event_type = config.risk_category_event_types.get(category, category)
    event_type = getattr(event_type, "value", event_type)
    if explicit:
        return explicit
    return config.typical_durations.get(event_type, config.default_duration_days)


def score_event_severity(event: Event, config: EngineConfig = DEFAULT_CONFIG) -> int:
    """Severity for an Event record: classifier value if present, else derived."""
    if event.severity is not None:
        return int(np.clip(event.severity, 1, 5))
    return event_severity(event.event_type, event.indicators, config)
