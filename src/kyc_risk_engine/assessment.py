# -*- coding: utf-8 -*-
"""
Risk assessment: baseline score, regulatory context, oracle opinion, blend.

Flow
----
1. baseline = rule-based score of the customer profile (pure)
2. context  = best-effort regulatory excerpts for the profile
3. opinion  = oracle call on a worker thread with a timeout
4. combined = baseline adjusted by the opinion, or baseline-only on any
   oracle failure (STANDARD due diligence, ANNUAL monitoring)
5. recommendations + the findings written back onto the customer's documents
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import List, Optional

from .collaborators import ContextRetriever, RiskOracle
from .errors import CollaboratorTimeoutError, OracleUnavailableError
from .models import (
    AssessmentResult,
    CustomerRiskProfile,
    OracleRequest,
    RiskAssessmentOpinion,
    RiskLevel,
    Severity,
)
from .tools.combiner import FALLBACK_REASON, combine_scores
from .tools.jurisdiction import fatf_status, nationality_risk, residence_risk, risk_reason
from .tools.scoring import calculate_baseline_score

LOGGER = logging.getLogger(__name__)

ORACLE_TIMEOUT_SECONDS = float(os.getenv("KYC_ORACLE_TIMEOUT_SECONDS", "30"))
CORPORATE_ENTITY = "CORPORATION"
NO_PATTERNS = "No significant unusual patterns."


# ------------------------------ Oracle request --------------------------------

def build_regulatory_query(profile: CustomerRiskProfile) -> str:
    parts = ["KYC AML risk assessment"]
    if profile.is_pep:
        parts.append("politically exposed person PEP")
    if profile.nationality:
        parts.append(profile.nationality)
    if profile.occupation:
        parts.append(profile.occupation)
    if profile.tx_metrics.has_crypto_activity:
        parts.append("cryptocurrency virtual assets")
    if profile.tx_metrics.has_cash_activity:
        parts.append("cash intensive")
    return " ".join(parts)


def describe_unusual_patterns(profile: CustomerRiskProfile) -> str:
    m = profile.tx_metrics
    patterns = []
    if m.has_structuring_pattern:
        patterns.append("Structuring detected.")
    if m.has_rapid_movement:
        patterns.append("Rapid movement of funds.")
    if m.has_crypto_activity:
        patterns.append("Crypto activity detected.")
    if m.has_cash_activity:
        patterns.append("High cash intensity.")
    return " ".join(patterns) if patterns else NO_PATTERNS


def build_oracle_request(profile: CustomerRiskProfile, regulatory_context: str = "") -> OracleRequest:
    patterns = describe_unusual_patterns(profile)
    if regulatory_context:
        patterns = f"REGULATORY CONTEXT:\n{regulatory_context}\n\nCUSTOMER PATTERNS:\n{patterns}"

    pep = profile.pep
    return OracleRequest(
        customer_ref=profile.customer_id,
        nationality=profile.nationality or "UNKNOWN",
        residence_country=profile.residence_country or "UNKNOWN",
        occupation=profile.occupation or "NOT_SPECIFIED",
        industry_sector=profile.industry_sector or "NOT_SPECIFIED",
        income_range=profile.income_range or "NOT_SPECIFIED",
        source_of_wealth=profile.source_of_wealth or "NOT_SPECIFIED",
        pep_status=profile.is_pep,
        pep_level=pep.pep_level if pep else None,
        adverse_media_count=len(profile.adverse_media),
        sanctions_match=profile.has_sanctions_match,
        previous_sar=False,
        nationality_risk=nationality_risk(profile.nationality),
        residence_risk=residence_risk(profile.residence_country),
        fatf_status=fatf_status(profile.residence_country),
        business_type=profile.entity_type,
        complex_ownership=profile.entity_type == CORPORATE_ENTITY,
        cash_intensive=profile.tx_metrics.has_cash_activity,
        account_age_months=profile.account_age_months or 0,
        avg_monthly_volume=f"{profile.tx_metrics.total_volume:.2f}",
        unusual_patterns=[patterns],
    )


# ------------------------------ Recommendations & findings --------------------

def generate_recommendations(result: AssessmentResult) -> List[str]:
    combined = result.combined
    recs: List[str] = []
    if combined.risk_level is RiskLevel.CRITICAL:
        recs.append("CRITICAL RISK: Immediate senior management approval required")
        recs.append("Consider SAR/STR filing - review within 24 hours")
    elif combined.risk_level is RiskLevel.HIGH:
        recs.append("HIGH RISK: Compliance officer review required within 48 hours")
        recs.append("Enhanced due diligence (EDD) mandatory")

    if result.opinion is not None:
        recs.extend(f"AI Insight: {action}" for action in result.opinion.recommended_actions)
    else:
        recs.append(FALLBACK_REASON)

    recs.append(f"Monitoring: {combined.monitoring_frequency.value} reviews required")
    return recs


def risk_findings(profile: CustomerRiskProfile, result: AssessmentResult) -> List[str]:
    """Findings appended to every document of the customer after an assessment."""
    findings: List[str] = []
    nat = risk_reason(profile.nationality)
    if nat:
        findings.append(f"Nationality Risk: {nat}")
    res = risk_reason(profile.residence_country)
    if res:
        findings.append(f"Residence Risk: {res}")

    b = result.baseline
    findings.append(f"Risk Score: {result.combined.total_score} ({result.combined.risk_level.value})")
    findings.append(
        f"Factors: Cust={b.customer_score}, Geo={b.geographic_score}, "
        f"Prod={b.product_score}, Tx={b.transaction_score}"
    )

    opinion = result.opinion
    if opinion is None:
        findings.append(FALLBACK_REASON)
        return findings
    for f in opinion.risk_factors:
        if f.severity in (Severity.HIGH, Severity.MEDIUM):
            findings.append(f"Risk Factor: {f.factor} ({f.severity.value})")
    if opinion.decision_rationale:
        findings.append(f"Assessment Rationale: {opinion.decision_rationale}")
    return findings


# ------------------------------ Service ---------------------------------------

class RiskAssessmentService:
    def __init__(
        self,
        oracle: RiskOracle,
        retriever: ContextRetriever,
        executor: Optional[Executor] = None,
        oracle_timeout: float = ORACLE_TIMEOUT_SECONDS,
    ) -> None:
        self.oracle = oracle
        self.retriever = retriever
        self.oracle_timeout = oracle_timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="kyc-oracle")

    def regulatory_context(self, profile: CustomerRiskProfile) -> str:
        query = build_regulatory_query(profile)
        try:
            return self.retriever.retrieve_context(query) or ""
        except Exception as exc:  # best-effort; retrieval never blocks an assessment
            LOGGER.warning("Regulatory context unavailable: %s", exc)
            return ""

    def consult_oracle(self, request: OracleRequest) -> RiskAssessmentOpinion:
        """Raises OracleUnavailableError or CollaboratorTimeoutError."""
        future = self._executor.submit(self.oracle.assess_risk, request)
        try:
            opinion = future.result(timeout=self.oracle_timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise CollaboratorTimeoutError(
                f"Risk oracle did not answer within {self.oracle_timeout:g}s"
            ) from exc
        except OracleUnavailableError:
            raise
        except Exception as exc:  # LLM clients raise arbitrary types
            raise OracleUnavailableError(f"Risk oracle failed: {exc}") from exc
        if not isinstance(opinion, RiskAssessmentOpinion):
            raise OracleUnavailableError("Risk oracle returned no structured opinion")
        return opinion

    def assess(self, profile: CustomerRiskProfile) -> AssessmentResult:
        baseline = calculate_baseline_score(profile)
        context = self.regulatory_context(profile)

        opinion: Optional[RiskAssessmentOpinion] = None
        try:
            opinion = self.consult_oracle(build_oracle_request(profile, context))
        except (OracleUnavailableError, CollaboratorTimeoutError) as exc:
            LOGGER.warning("Falling back to baseline scoring for %s: %s", profile.customer_id, exc)

        combined = combine_scores(baseline, opinion)
        result = AssessmentResult(
            combined=combined,
            baseline=baseline,
            opinion=opinion,
            regulatory_context=context,
        )
        result.recommendations = generate_recommendations(result)
        LOGGER.info(
            "Risk assessment for %s: score=%d level=%s (baseline %d, ai=%s)",
            profile.customer_id, combined.total_score, combined.risk_level.value,
            baseline.total_score, combined.ai_assessment_available,
        )
        return result

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


__all__ = [
    "RiskAssessmentService",
    "build_regulatory_query",
    "build_oracle_request",
    "describe_unusual_patterns",
    "generate_recommendations",
    "risk_findings",
]
