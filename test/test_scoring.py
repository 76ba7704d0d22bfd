import pytest

from kyc_risk_engine.models import (
    AdverseMediaHit,
    CustomerRiskProfile,
    EnrolledProduct,
    PepScreening,
    ProductRiskTier,
    SanctionsScreening,
    TransactionMetrics,
)
from kyc_risk_engine.tools import scoring
from kyc_risk_engine.tools.scoring import calculate_baseline_score


def _hits(n):
    return [AdverseMediaHit(headline=f"story {i}") for i in range(n)]


def test_empty_profile_scores_zero():
    score = calculate_baseline_score(CustomerRiskProfile(customer_id="ref"))
    assert (score.customer_score, score.geographic_score, score.product_score, score.transaction_score) == (0, 0, 0, 0)
    assert score.total_score == 0


def test_blacklisted_nationality_with_clean_residence():
    profile = CustomerRiskProfile(customer_id="ref", nationality="KP", residence_country="FR")
    score = calculate_baseline_score(profile)
    assert score.geographic_score == 15
    assert score.total_score == 15


def test_geographic_factor_is_capped():
    # 15 (KP nationality) + 10 (IR residence) = 25, exactly the cap
    assert scoring.geographic_risk("KP", "IR") == 25
    # greylisted residence is worth 5
    assert scoring.geographic_risk("FR", "NG") == 5
    assert scoring.geographic_risk("NG", "NG") == 15


def test_customer_factor_is_capped_at_30():
    profile = CustomerRiskProfile(
        customer_id="ref",
        pep=PepScreening(is_pep=True, pep_level="FOREIGN_SENIOR_OFFICIAL"),
        sanctions=SanctionsScreening(has_match=True, list_name="OFAC"),
        adverse_media=_hits(6),
        occupation="Crypto exchange owner",
    )
    # 12 + 10 + 8 + 10 = 40 before the cap
    assert scoring.customer_risk(profile) == 30


@pytest.mark.parametrize("level, expected", [
    ("FOREIGN_SENIOR_OFFICIAL", 12),
    ("domestic_senior_official", 10),
    ("FAMILY_MEMBER", 8),
    (None, 8),
])
def test_pep_levels(level, expected):
    assert scoring.pep_score(PepScreening(is_pep=True, pep_level=level)) == expected


def test_non_pep_scores_nothing():
    assert scoring.pep_score(None) == 0
    assert scoring.pep_score(PepScreening(is_pep=False, pep_level="FOREIGN_SENIOR_OFFICIAL")) == 0


@pytest.mark.parametrize("hits, expected", [(0, 0), (1, 3), (2, 3), (3, 6), (4, 6), (5, 8), (12, 8)])
def test_adverse_media_bands(hits, expected):
    assert scoring.adverse_media_score(hits) == expected


@pytest.mark.parametrize("occupation, expected", [
    (None, 0),
    ("   ", 0),
    ("Nurse", 2),
    ("arms dealer", 10),
    ("Online GAMBLING operator", 10),
])
def test_occupation(occupation, expected):
    assert scoring.occupation_score(occupation) == expected


def test_product_factor_takes_riskiest_product():
    products = [
        EnrolledProduct(name="Savings", base_risk_level=ProductRiskTier.LOW),
        EnrolledProduct(name="Private banking", base_risk_level=ProductRiskTier.CRITICAL),
        EnrolledProduct(name="Card", base_risk_level=ProductRiskTier.MEDIUM),
    ]
    assert scoring.product_risk(products) == 15
    assert scoring.product_risk([]) == 0


def test_product_explicit_score_overrides_tier_and_is_capped():
    assert scoring.product_risk([EnrolledProduct(name="FX", base_risk_level=ProductRiskTier.LOW, risk_score=18)]) == 18
    assert scoring.product_risk([EnrolledProduct(name="OTC", risk_score=40)]) == 20


@pytest.mark.parametrize("actual, expected_volume, points", [
    (200.0, 100.0, 8),
    (199.99, 100.0, 0),
    (150_000.0, None, 8),
    (100_000.0, None, 0),
    (150_000.0, 0.0, 8),
])
def test_volume_rule(actual, expected_volume, points):
    assert scoring.volume_risk(actual, expected_volume) == points


def test_transaction_factor_adds_payment_methods():
    metrics = TransactionMetrics(
        total_volume=50_000.0,
        transaction_count=10,
        crypto_transaction_count=2,
        cash_transaction_count=3,
        has_crypto_activity=True,
        has_cash_activity=True,
        has_structuring_pattern=True,
    )
    # 8 (2x expectation) + 6 crypto + 4 cash; patterns are not scored
    assert scoring.transaction_risk(metrics, 20_000.0) == 18


def test_total_is_sum_of_factors():
    profile = CustomerRiskProfile(
        customer_id="ref",
        nationality="IR",
        residence_country="IR",
        occupation="Accountant",
        pep=PepScreening(is_pep=True),
        products=[EnrolledProduct(name="Wire", base_risk_level=ProductRiskTier.HIGH)],
        expected_monthly_volume=1_000.0,
        tx_metrics=TransactionMetrics(total_volume=5_000.0, transaction_count=4,
                                      cash_transaction_count=4, has_cash_activity=True),
    )
    score = calculate_baseline_score(profile)
    assert score.customer_score == 10   # 8 PEP + 2 occupation
    assert score.geographic_score == 25
    assert score.product_score == 15
    assert score.transaction_score == 12  # 8 volume + 4 cash
    assert score.total_score == 62
    assert calculate_baseline_score(profile) == score


_PEPS = [None, PepScreening(is_pep=True, pep_level="FOREIGN_SENIOR_OFFICIAL"), PepScreening(is_pep=True)]
_COUNTRIES = [(None, None), ("KP", "IR"), ("NG", "NG"), ("FR", "KP")]
_PRODUCTS = [
    [],
    [EnrolledProduct(name="Savings")],
    [EnrolledProduct(name="Wire", base_risk_level=ProductRiskTier.CRITICAL), EnrolledProduct(name="Custom", risk_score=95)],
]
_METRICS = [
    TransactionMetrics(),
    TransactionMetrics(total_volume=10_000_000.0, has_crypto_activity=True, has_cash_activity=True,
                       has_structuring_pattern=True, has_rapid_movement=True),
]


@pytest.mark.parametrize("pep", _PEPS)
@pytest.mark.parametrize("nationality, residence", _COUNTRIES)
@pytest.mark.parametrize("products", _PRODUCTS)
@pytest.mark.parametrize("metrics", _METRICS)
@pytest.mark.parametrize("sanctioned, media, occupation", [
    (False, 0, None),
    (True, 12, "arms dealer and crypto gambling"),
])
def test_factors_stay_within_caps(pep, nationality, residence, products, metrics, sanctioned, media, occupation):
    profile = CustomerRiskProfile(
        customer_id="ref",
        nationality=nationality,
        residence_country=residence,
        occupation=occupation,
        expected_monthly_volume=1.0,
        pep=pep,
        sanctions=SanctionsScreening(has_match=sanctioned),
        adverse_media=_hits(media),
        products=products,
        tx_metrics=metrics,
    )
    score = calculate_baseline_score(profile)
    assert 0 <= score.customer_score <= 30
    assert 0 <= score.geographic_score <= 25
    assert 0 <= score.product_score <= 20
    assert 0 <= score.transaction_score <= 25
    assert score.total_score == (score.customer_score + score.geographic_score
                                 + score.product_score + score.transaction_score)
    assert score.total_score <= 100


def test_maximal_profile_hits_every_cap():
    profile = CustomerRiskProfile(
        customer_id="ref",
        nationality="KP",
        residence_country="IR",
        occupation="arms broker",
        expected_monthly_volume=1.0,
        pep=PepScreening(is_pep=True, pep_level="FOREIGN_SENIOR_OFFICIAL"),
        sanctions=SanctionsScreening(has_match=True),
        adverse_media=_hits(9),
        products=[EnrolledProduct(name="Custom", risk_score=95)],
        tx_metrics=TransactionMetrics(total_volume=1_000_000.0, has_crypto_activity=True, has_cash_activity=True),
    )
    score = calculate_baseline_score(profile)
    # transaction: 8 + 0 + 6 + 4 = 18, below its cap
    assert (score.customer_score, score.geographic_score, score.product_score, score.transaction_score) == (30, 25, 20, 18)
    assert score.total_score == 93
