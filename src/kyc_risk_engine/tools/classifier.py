# -*- coding: utf-8 -*-
"""Map a 0-100 score onto risk level, due-diligence and monitoring policy."""

from __future__ import annotations

from typing import Optional

from ..models import (
    DueDiligenceLevel,
    MonitoringFrequency,
    RiskAssessmentOpinion,
    RiskLevel,
)

# (lower bound inclusive, level), highest first
RISK_LEVEL_BANDS = (
    (91, RiskLevel.CRITICAL),
    (76, RiskLevel.HIGH),
    (61, RiskLevel.MEDIUM_HIGH),
    (41, RiskLevel.MEDIUM),
    (21, RiskLevel.MEDIUM_LOW),
)

ENHANCED_DD_THRESHOLD: int = 61
CONTINUOUS_MONITORING_THRESHOLD: int = 76
MONTHLY_MONITORING_THRESHOLD: int = 61


def classify_risk_level(score: int) -> RiskLevel:
    for lower, level in RISK_LEVEL_BANDS:
        if score >= lower:
            return level
    return RiskLevel.LOW


def determine_due_diligence(score: int, opinion: Optional[RiskAssessmentOpinion] = None) -> DueDiligenceLevel:
    # SIMPLIFIED is reserved for regulatory exemptions and never chosen here.
    if opinion is not None and opinion.compliance_requirements.edd_required:
        return DueDiligenceLevel.ENHANCED
    if score >= ENHANCED_DD_THRESHOLD:
        return DueDiligenceLevel.ENHANCED
    return DueDiligenceLevel.STANDARD


def determine_monitoring(score: int) -> MonitoringFrequency:
    if score >= CONTINUOUS_MONITORING_THRESHOLD:
        return MonitoringFrequency.CONTINUOUS
    if score >= MONTHLY_MONITORING_THRESHOLD:
        return MonitoringFrequency.MONTHLY
    return MonitoringFrequency.ANNUAL


__all__ = ["classify_risk_level", "determine_due_diligence", "determine_monitoring"]
