"""
Unit Tests for Risk Assessment and Priority Scoring

Covers the canonical points table, the risk-level thresholds, the 0-100
priority mapping and rejection of implausible input.
"""
import math

import pytest

from triage.errors import ValidationError
from triage.scoring import (
    age_bonus,
    assess_risk,
    clamp_priority,
    classify_risk,
    compute_priority_score,
    parse_intake,
)
from triage.types import Demographics, RiskLevel, VitalSigns


def _assess(vitals, demographics, **overrides):
    vital_overrides = {k: v for k, v in overrides.items() if k in vitals}
    demo_overrides = {k: v for k, v in overrides.items() if k in demographics}
    return assess_risk(
        VitalSigns(**{**vitals, **vital_overrides}),
        Demographics(**{**demographics, **demo_overrides}),
    )


class TestRiskAssessment:
    """Tests for the additive points model."""

    def test_stable_patient_is_low_risk(self, stable_vitals, adult_demographics):
        """Scenario A vitals score nothing."""
        result = _assess(stable_vitals, adult_demographics)
        assert result.risk_level == RiskLevel.LOW
        assert result.risk_score == 0
        assert result.contributing_factors == []

    def test_critical_patient_is_high_risk(self, critical_vitals, adult_demographics):
        """Scenario B vitals hit every severe band."""
        result = _assess(critical_vitals, adult_demographics, age=45)
        assert result.risk_level == RiskLevel.HIGH
        assert result.risk_score == 30 + 35 + 40 + 25 + 20
        assert "oxygen_saturation:severe" in result.contributing_factors

    @pytest.mark.parametrize("heart_rate, points", [
        (49, 30), (50, 15), (59, 15), (60, 0), (99, 0), (100, 15), (120, 15), (121, 30),
    ])
    def test_heart_rate_bands(self, stable_vitals, adult_demographics, heart_rate, points):
        """Severe and moderate heart rate boundaries."""
        assert _assess(stable_vitals, adult_demographics, heart_rate=heart_rate).risk_score == points

    @pytest.mark.parametrize("systolic, points", [
        (89, 35), (90, 20), (99, 20), (100, 0), (139, 0), (140, 20), (180, 20), (181, 35),
    ])
    def test_systolic_bands(self, stable_vitals, adult_demographics, systolic, points):
        result = _assess(stable_vitals, adult_demographics, systolic_bp=systolic, diastolic_bp=60)
        assert result.risk_score == points

    @pytest.mark.parametrize("spo2, points", [(89, 40), (90, 20), (94.9, 20), (95, 0)])
    def test_oxygen_saturation_bands(self, stable_vitals, adult_demographics, spo2, points):
        assert _assess(stable_vitals, adult_demographics, oxygen_saturation=spo2).risk_score == points

    @pytest.mark.parametrize("temperature, points", [
        (34.9, 25), (35, 10), (35.9, 10), (36, 0), (37.9, 0), (38, 10), (39, 10), (39.1, 25),
    ])
    def test_temperature_bands(self, stable_vitals, adult_demographics, temperature, points):
        assert _assess(stable_vitals, adult_demographics, body_temperature=temperature).risk_score == points

    @pytest.mark.parametrize("rate, points", [
        (11, 20), (12, 10), (13, 10), (14, 0), (19, 0), (20, 10), (25, 10), (26, 20),
    ])
    def test_respiratory_rate_bands(self, stable_vitals, adult_demographics, rate, points):
        assert _assess(stable_vitals, adult_demographics, respiratory_rate=rate).risk_score == points

    @pytest.mark.parametrize("age, points", [(64, 0), (65, 10), (75, 10), (76, 15)])
    def test_age_points(self, stable_vitals, adult_demographics, age, points):
        assert _assess(stable_vitals, adult_demographics, age=age).risk_score == points

    def test_thresholds(self):
        """60 and above is High, 30 and above is Medium."""
        assert classify_risk(0) == RiskLevel.LOW
        assert classify_risk(29) == RiskLevel.LOW
        assert classify_risk(30) == RiskLevel.MEDIUM
        assert classify_risk(59) == RiskLevel.MEDIUM
        assert classify_risk(60) == RiskLevel.HIGH

    def test_combined_moderate_factors_reach_medium(self, stable_vitals, adult_demographics):
        result = _assess(stable_vitals, adult_demographics, oxygen_saturation=92, systolic_bp=150)
        assert result.risk_score == 40
        assert result.risk_level == RiskLevel.MEDIUM

    def test_implausible_vitals_are_never_scored(self, stable_vitals, adult_demographics):
        """Validation runs before any points are accumulated."""
        with pytest.raises(ValidationError) as exc:
            _assess(stable_vitals, adult_demographics, heart_rate=0)
        assert exc.value.field == "heart_rate"


class TestPriorityScore:
    """Tests for mapping risk onto the 0-100 priority scale."""

    def test_low_risk_base(self, stable_vitals, adult_demographics):
        assessment = _assess(stable_vitals, adult_demographics)
        assert compute_priority_score(assessment, 30) == 10

    def test_medium_risk_adds_points(self, stable_vitals, adult_demographics):
        assessment = _assess(stable_vitals, adult_demographics, oxygen_saturation=92, systolic_bp=150)
        assert compute_priority_score(assessment, 30) == 40 + 40

    def test_high_risk_is_clamped(self, critical_vitals, adult_demographics):
        assessment = _assess(critical_vitals, adult_demographics)
        assert compute_priority_score(assessment, 30) == 100

    @pytest.mark.parametrize("age, bonus", [(30, 0), (65, 0), (66, 5), (75, 5), (76, 10)])
    def test_age_bonus(self, age, bonus):
        assert age_bonus(age) == bonus

    def test_elderly_low_risk_patient(self, stable_vitals, adult_demographics):
        """An 80 year old with normal vitals: 15 age points plus a 10 point bonus."""
        assessment = _assess(stable_vitals, adult_demographics, age=80)
        assert assessment.risk_level == RiskLevel.LOW
        assert compute_priority_score(assessment, 80) == 10 + 15 + 10

    @pytest.mark.parametrize("raw, clamped", [(-5, 0.0), (0, 0.0), (55.5, 55.5), (100, 100.0), (240, 100.0)])
    def test_clamp(self, raw, clamped):
        assert clamp_priority(raw) == clamped


class TestIntakeValidation:
    """Tests for parse_intake."""

    def test_accepts_numeric_strings(self, stable_vitals, adult_demographics):
        vitals, demographics = parse_intake(
            {k: str(v) for k, v in stable_vitals.items()},
            {**adult_demographics, "gender": "1"},
        )
        assert vitals.heart_rate == 75.0
        assert demographics.gender == 1

    def test_missing_field(self, stable_vitals, adult_demographics):
        del stable_vitals["oxygen_saturation"]
        with pytest.raises(ValidationError) as exc:
            parse_intake(stable_vitals, adult_demographics)
        assert exc.value.field == "oxygen_saturation"
        assert exc.value.code == "VALIDATION_ERROR"

    @pytest.mark.parametrize("value", ["abc", True, math.nan, math.inf, None, ""])
    def test_non_numeric_values(self, stable_vitals, adult_demographics, value):
        stable_vitals["heart_rate"] = value
        with pytest.raises(ValidationError):
            parse_intake(stable_vitals, adult_demographics)

    @pytest.mark.parametrize("field, value", [
        ("heart_rate", -5),
        ("heart_rate", 301),
        ("respiratory_rate", 0),
        ("body_temperature", 24.9),
        ("body_temperature", 45.1),
        ("oxygen_saturation", 101),
        ("systolic_bp", 0),
    ])
    def test_implausible_vitals(self, stable_vitals, adult_demographics, field, value):
        stable_vitals[field] = value
        with pytest.raises(ValidationError) as exc:
            parse_intake(stable_vitals, adult_demographics)
        assert exc.value.field == field

    @pytest.mark.parametrize("field, value", [
        ("age", -1), ("age", 131), ("weight_kg", 0), ("height_m", 3.5), ("gender", 3), ("gender", 1.5),
    ])
    def test_implausible_demographics(self, stable_vitals, adult_demographics, field, value):
        adult_demographics[field] = value
        with pytest.raises(ValidationError) as exc:
            parse_intake(stable_vitals, adult_demographics)
        assert exc.value.field == field

    def test_diastolic_must_be_below_systolic(self, stable_vitals, adult_demographics):
        stable_vitals["diastolic_bp"] = 120
        with pytest.raises(ValidationError) as exc:
            parse_intake(stable_vitals, adult_demographics)
        assert exc.value.field == "diastolic_bp"

    def test_missing_sections(self, stable_vitals):
        with pytest.raises(ValidationError) as exc:
            parse_intake(stable_vitals, None)
        assert exc.value.field == "demographics"

    def test_newborn_is_plausible(self, stable_vitals, adult_demographics):
        adult_demographics.update(age=0, weight_kg=3.5, height_m=0.5)
        _, demographics = parse_intake(stable_vitals, adult_demographics)
        assert demographics.age == 0
