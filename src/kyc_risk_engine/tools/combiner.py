# -*- coding: utf-8 -*-
"""
Blend the baseline score with the oracle's qualitative opinion.

The oracle never supplies the final number. Its factors, mitigations and
compliance flags move the baseline by a bounded adjustment, and the result
can never drop more than BASELINE_FLOOR_MARGIN points below the baseline.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from ..models import (
    BaselineRiskScore,
    CombinedRiskScore,
    DueDiligenceLevel,
    MonitoringFrequency,
    RiskAssessmentOpinion,
    Severity,
)
from .classifier import classify_risk_level, determine_due_diligence, determine_monitoring

HIGH_FACTOR_POINTS: int = 2
HIGH_FACTOR_CAP: int = 10
MITIGATION_CAP: int = 5
SAR_POINTS: int = 10
EDD_POINTS: int = 5
EDD_BASELINE_CEILING: int = 61
BASELINE_FLOOR_MARGIN: int = 10

FALLBACK_REASON = "AI assessment unavailable - using rule-based scoring only"


def calculate_adjustment(baseline: BaselineRiskScore, opinion: RiskAssessmentOpinion) -> Tuple[int, List[str]]:
    """Signed adjustment plus a human-readable reason per contributing term."""
    reasons: List[str] = []
    adjustment = 0

    high_count = sum(1 for f in opinion.risk_factors if f.severity is Severity.HIGH)
    if high_count:
        points = min(HIGH_FACTOR_CAP, HIGH_FACTOR_POINTS * high_count)
        adjustment += points
        reasons.append(f"+{points}: {high_count} high-severity risk factor(s)")

    mitigating = len(opinion.mitigating_factors)
    if mitigating:
        points = min(MITIGATION_CAP, mitigating)
        adjustment -= points
        reasons.append(f"-{points}: {mitigating} mitigating factor(s)")

    reqs = opinion.compliance_requirements
    if reqs.sar_consideration:
        adjustment += SAR_POINTS
        reasons.append(f"+{SAR_POINTS}: SAR consideration flagged")

    if reqs.edd_required and baseline.total_score < EDD_BASELINE_CEILING:
        adjustment += EDD_POINTS
        reasons.append(f"+{EDD_POINTS}: enhanced due diligence required below baseline {EDD_BASELINE_CEILING}")

    return adjustment, reasons


def clamp_adjusted(baseline_total: int, adjustment: int) -> int:
    floor = max(baseline_total - BASELINE_FLOOR_MARGIN, 0)
    return max(floor, min(100, baseline_total + adjustment))


def combine_scores(baseline: BaselineRiskScore, opinion: Optional[RiskAssessmentOpinion]) -> CombinedRiskScore:
    if opinion is None:
        return baseline_only(baseline)

    adjustment, reasons = calculate_adjustment(baseline, opinion)
    adjusted = clamp_adjusted(baseline.total_score, adjustment)
    return CombinedRiskScore(
        total_score=adjusted,
        risk_level=classify_risk_level(adjusted),
        due_diligence_level=determine_due_diligence(adjusted, opinion),
        monitoring_frequency=determine_monitoring(adjusted),
        adjustment=adjustment,
        adjustment_reasons=reasons,
        oracle_risk_level=opinion.risk_level,
        baseline_score=baseline.total_score,
        ai_assessment_available=True,
    )


def baseline_only(baseline: BaselineRiskScore) -> CombinedRiskScore:
    """Rule-only decision used whenever the oracle is missing or failed."""
    return CombinedRiskScore(
        total_score=baseline.total_score,
        risk_level=classify_risk_level(baseline.total_score),
        due_diligence_level=DueDiligenceLevel.STANDARD,
        monitoring_frequency=MonitoringFrequency.ANNUAL,
        adjustment=0,
        adjustment_reasons=[FALLBACK_REASON],
        oracle_risk_level=None,
        baseline_score=baseline.total_score,
        ai_assessment_available=False,
    )


__all__ = [
    "calculate_adjustment",
    "clamp_adjusted",
    "combine_scores",
    "baseline_only",
    "FALLBACK_REASON",
]
