# -*- coding: utf-8 -*-
"""
Baseline (rule-based) risk scorer.

Four capped factors computed purely from a CustomerRiskProfile:

  customer     0-30  PEP level, sanctions, adverse media, occupation
  geographic   0-25  nationality and residence FATF exposure
  product      0-20  riskiest enrolled product
  transaction  0-25  volume vs expectation, patterns, payment methods

No I/O and no hidden state: identical profiles always score identically.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ..models import (
    BaselineRiskScore,
    CountryRisk,
    CustomerRiskProfile,
    EnrolledProduct,
    PepScreening,
    ProductRiskTier,
    TransactionMetrics,
)
from .jurisdiction import nationality_risk, residence_risk

# ------------------------------ Caps ------------------------------------------

CUSTOMER_CAP: int = 30
GEOGRAPHIC_CAP: int = 25
PRODUCT_CAP: int = 20
TRANSACTION_CAP: int = 25

# ------------------------------ Weights ---------------------------------------

PEP_LEVEL_SCORES = {
    "FOREIGN_SENIOR_OFFICIAL": 12,
    "DOMESTIC_SENIOR_OFFICIAL": 10,
}
PEP_DEFAULT_SCORE: int = 8
SANCTIONS_MATCH_SCORE: int = 10

HIGH_RISK_OCCUPATION_KEYWORDS = ("CRYPTO", "ARMS", "GAMBLING")
HIGH_RISK_OCCUPATION_SCORE: int = 10
OCCUPATION_PRESENT_SCORE: int = 2

NATIONALITY_SCORES = {CountryRisk.CRITICAL: 15, CountryRisk.HIGH: 10}
RESIDENCE_SCORES = {CountryRisk.HIGH: 10, CountryRisk.MEDIUM: 5}

PRODUCT_TIER_SCORES = {
    ProductRiskTier.LOW: 2,
    ProductRiskTier.MEDIUM: 8,
    ProductRiskTier.HIGH: 15,
    ProductRiskTier.CRITICAL: 15,
}

VOLUME_SPIKE_SCORE: int = 8
VOLUME_SPIKE_RATIO: float = 2.0
ABSOLUTE_VOLUME_THRESHOLD: float = 100_000.0
CRYPTO_ACTIVITY_SCORE: int = 6
CASH_ACTIVITY_SCORE: int = 4


# ------------------------------ Customer factor -------------------------------

def pep_score(pep: Optional[PepScreening]) -> int:
    if pep is None or not pep.is_pep:
        return 0
    level = (pep.pep_level or "").strip().upper()
    return PEP_LEVEL_SCORES.get(level, PEP_DEFAULT_SCORE)


def adverse_media_score(hit_count: int) -> int:
    if hit_count <= 0:
        return 0
    if hit_count >= 5:
        return 8
    if hit_count >= 3:
        return 6
    return 3


def occupation_score(occupation: Optional[str]) -> int:
    occ = (occupation or "").strip().upper()
    if not occ:
        return 0
    if any(k in occ for k in HIGH_RISK_OCCUPATION_KEYWORDS):
        return HIGH_RISK_OCCUPATION_SCORE
    return OCCUPATION_PRESENT_SCORE


def customer_risk(profile: CustomerRiskProfile) -> int:
    score = pep_score(profile.pep)
    if profile.has_sanctions_match:
        score += SANCTIONS_MATCH_SCORE
    score += adverse_media_score(len(profile.adverse_media))
    score += occupation_score(profile.occupation)
    return min(CUSTOMER_CAP, score)


# ------------------------------ Geographic factor -----------------------------

def geographic_risk(nationality: Optional[str], residence_country: Optional[str]) -> int:
    score = NATIONALITY_SCORES.get(nationality_risk(nationality), 0)
    score += RESIDENCE_SCORES.get(residence_risk(residence_country), 0)
    return min(GEOGRAPHIC_CAP, score)


# ------------------------------ Product factor --------------------------------

def _product_score(product: EnrolledProduct) -> int:
    if product.risk_score is not None:
        return max(0, int(product.risk_score))
    return PRODUCT_TIER_SCORES.get(product.base_risk_level, 0)


def product_risk(products: Iterable[EnrolledProduct]) -> int:
    scores = [_product_score(p) for p in products or ()]
    if not scores:
        return 0
    return min(PRODUCT_CAP, max(scores))


# ------------------------------ Transaction factor ----------------------------

def volume_risk(actual: float, expected: Optional[float]) -> int:
    if expected is None or expected <= 0:
        return VOLUME_SPIKE_SCORE if actual > ABSOLUTE_VOLUME_THRESHOLD else 0
    return VOLUME_SPIKE_SCORE if (actual / expected) >= VOLUME_SPIKE_RATIO else 0


def pattern_risk(metrics: TransactionMetrics) -> int:
    # Structuring / rapid movement are surfaced to the oracle, not scored here.
    return 0


def payment_method_risk(metrics: TransactionMetrics) -> int:
    score = CRYPTO_ACTIVITY_SCORE if metrics.has_crypto_activity else 0
    if metrics.has_cash_activity:
        score += CASH_ACTIVITY_SCORE
    return score


def transaction_risk(metrics: TransactionMetrics, expected_monthly_volume: Optional[float]) -> int:
    score = volume_risk(metrics.total_volume, expected_monthly_volume)
    score += pattern_risk(metrics)
    score += payment_method_risk(metrics)
    return min(TRANSACTION_CAP, score)


# ------------------------------ Entry point -----------------------------------

def calculate_baseline_score(profile: CustomerRiskProfile) -> BaselineRiskScore:
    customer = customer_risk(profile)
    geo = geographic_risk(profile.nationality, profile.residence_country)
    product = product_risk(profile.products)
    tx = transaction_risk(profile.tx_metrics, profile.expected_monthly_volume)
    return BaselineRiskScore(
        customer_score=customer,
        geographic_score=geo,
        product_score=product,
        transaction_score=tx,
        total_score=customer + geo + product + tx,
    )


__all__ = [
    "calculate_baseline_score",
    "customer_risk",
    "geographic_risk",
    "product_risk",
    "transaction_risk",
    "pep_score",
    "adverse_media_score",
    "occupation_score",
    "volume_risk",
]
