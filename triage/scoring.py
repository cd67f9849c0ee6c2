"""
Vital sign risk assessment and priority scoring.

Both are pure functions. The thresholds below are business rules for
queue ordering, not a validated clinical triage algorithm.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Tuple

from .errors import ValidationError
from .types import Demographics, RiskAssessment, RiskLevel, VitalSigns


class PlausibleRange(NamedTuple):
    low: float
    high: float
    low_inclusive: bool = False

    def contains(self, value: float) -> bool:
        above_low = value >= self.low if self.low_inclusive else value > self.low
        return above_low and value <= self.high


VITAL_RANGES: Dict[str, PlausibleRange] = {
    "heart_rate": PlausibleRange(0, 300),
    "respiratory_rate": PlausibleRange(0, 80),
    "body_temperature": PlausibleRange(25, 45, low_inclusive=True),
    "oxygen_saturation": PlausibleRange(0, 100),
    "systolic_bp": PlausibleRange(0, 300),
    "diastolic_bp": PlausibleRange(0, 200),
}

DEMOGRAPHIC_RANGES: Dict[str, PlausibleRange] = {
    "age": PlausibleRange(0, 130, low_inclusive=True),
    "weight_kg": PlausibleRange(0, 500),
    "height_m": PlausibleRange(0, 3),
}

GENDER_CODES = (0, 1, 2)


class ScoringFactor(NamedTuple):
    name: str
    source: str  # "vitals" or "demographics"
    severe_points: int
    severe: Callable[[float], bool]
    moderate_points: int
    moderate: Callable[[float], bool]


# Severe is checked first; the tiers of each factor are disjoint.
SCORING_TABLE: Tuple[ScoringFactor, ...] = (
    ScoringFactor(
        "heart_rate", "vitals",
        30, lambda v: v < 50 or v > 120,
        15, lambda v: 50 <= v < 60 or 100 <= v <= 120,
    ),
    ScoringFactor(
        "systolic_bp", "vitals",
        35, lambda v: v < 90 or v > 180,
        20, lambda v: 90 <= v < 100 or 140 <= v <= 180,
    ),
    ScoringFactor(
        "oxygen_saturation", "vitals",
        40, lambda v: v < 90,
        20, lambda v: 90 <= v < 95,
    ),
    ScoringFactor(
        "body_temperature", "vitals",
        25, lambda v: v < 35 or v > 39,
        10, lambda v: 35 <= v < 36 or 38 <= v <= 39,
    ),
    ScoringFactor(
        "respiratory_rate", "vitals",
        20, lambda v: v < 12 or v > 25,
        10, lambda v: 12 <= v < 14 or 20 <= v <= 25,
    ),
    ScoringFactor(
        "age", "demographics",
        15, lambda v: v > 75,
        10, lambda v: 65 <= v <= 75,
    ),
)

HIGH_RISK_THRESHOLD = 60
MEDIUM_RISK_THRESHOLD = 30

PRIORITY_BASE = {
    RiskLevel.HIGH: 80,
    RiskLevel.MEDIUM: 40,
    RiskLevel.LOW: 10,
}

MAX_PRIORITY_SCORE = 100.0
MIN_PRIORITY_SCORE = 0.0


def _coerce_number(value: Any, field: str) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing required field: {field}", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"Field {field} must be numeric", field=field, details={"value": value})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Field {field} must be numeric", field=field, details={"value": str(value)})
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"Field {field} must be a finite number", field=field, details={"value": str(value)})
    return number


def _check_range(field: str, value: float, plausible: PlausibleRange) -> None:
    if not plausible.contains(value):
        raise ValidationError(
            f"Field {field}={value} is outside the plausible range",
            field=field,
            details={"value": value, "min": plausible.low, "max": plausible.high},
        )


def check_plausible(vitals: VitalSigns, demographics: Demographics) -> None:
    """
    Reject physiologically implausible values.

    Raises:
        ValidationError: on the first implausible field
    """
    for field, plausible in VITAL_RANGES.items():
        _check_range(field, _coerce_number(getattr(vitals, field), field), plausible)
    for field, plausible in DEMOGRAPHIC_RANGES.items():
        _check_range(field, _coerce_number(getattr(demographics, field), field), plausible)

    if demographics.gender not in GENDER_CODES:
        raise ValidationError(
            f"Field gender={demographics.gender} must be one of {list(GENDER_CODES)}",
            field="gender",
        )
    if vitals.diastolic_bp >= vitals.systolic_bp:
        raise ValidationError(
            "Diastolic pressure must be below systolic pressure",
            field="diastolic_bp",
            details={"systolic_bp": vitals.systolic_bp, "diastolic_bp": vitals.diastolic_bp},
        )


def parse_intake(
    vitals: Optional[Mapping[str, Any]],
    demographics: Optional[Mapping[str, Any]],
) -> Tuple[VitalSigns, Demographics]:
    """
    Build validated VitalSigns and Demographics from raw mappings.

    Every field must be present and numeric, and every value must be
    physiologically plausible.

    Raises:
        ValidationError: if any field is missing, non-numeric or implausible
    """
    if not isinstance(vitals, Mapping):
        raise ValidationError("Vital signs are required", field="vitals")
    if not isinstance(demographics, Mapping):
        raise ValidationError("Demographics are required", field="demographics")

    vital_values = {field: _coerce_number(vitals.get(field), field) for field in VITAL_RANGES}
    demographic_values = {field: _coerce_number(demographics.get(field), field) for field in DEMOGRAPHIC_RANGES}

    gender = _coerce_number(demographics.get("gender"), "gender")
    if not gender.is_integer():
        raise ValidationError("Field gender must be an integer code", field="gender", details={"value": gender})

    parsed_vitals = VitalSigns(**vital_values)
    parsed_demographics = Demographics(gender=int(gender), **demographic_values)
    check_plausible(parsed_vitals, parsed_demographics)
    return parsed_vitals, parsed_demographics


def classify_risk(risk_score: int) -> RiskLevel:
    if risk_score >= HIGH_RISK_THRESHOLD:
        return RiskLevel.HIGH
    if risk_score >= MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def assess_risk(vitals: VitalSigns, demographics: Demographics) -> RiskAssessment:
    """
    Score vital signs and demographics with the additive points model.

    Validation runs first, so an implausible reading is never scored.
    """
    check_plausible(vitals, demographics)

    risk_score = 0
    factors = []
    for factor in SCORING_TABLE:
        source = vitals if factor.source == "vitals" else demographics
        value = float(getattr(source, factor.name))
        if factor.severe(value):
            risk_score += factor.severe_points
            factors.append(f"{factor.name}:severe")
        elif factor.moderate(value):
            risk_score += factor.moderate_points
            factors.append(f"{factor.name}:moderate")

    return RiskAssessment(
        risk_level=classify_risk(risk_score),
        risk_score=risk_score,
        contributing_factors=factors,
    )


def age_bonus(age: float) -> int:
    if age > 75:
        return 10
    if age > 65:
        return 5
    return 0


def clamp_priority(score: float) -> float:
    return min(MAX_PRIORITY_SCORE, max(MIN_PRIORITY_SCORE, float(score)))


def compute_priority_score(assessment: RiskAssessment, age: float) -> float:
    """Map a risk assessment and age onto the 0-100 priority scale."""
    base = PRIORITY_BASE[assessment.risk_level]
    return clamp_priority(base + assessment.risk_score + age_bonus(age))
