from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from kyc_risk_engine.models import (
    AdverseMediaHit,
    EnrolledProduct,
    PepScreening,
    ProductRiskTier,
    SanctionsScreening,
)
from kyc_risk_engine.tools.customers import (
    SqliteCustomerDirectory,
    Transaction,
    calculate_transaction_metrics,
    detect_rapid_movement,
    detect_structuring,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _tx(tx_type, amount, direction="IN", hours_ago=48):
    return Transaction(tx_type, direction, amount, NOW - timedelta(hours=hours_ago))


# -------- pattern detection --------

def test_structuring_needs_three_cash_deposits_just_below_10k():
    assert detect_structuring([_tx("CASH_DEPOSIT", 9_500)] * 3)
    assert not detect_structuring([_tx("CASH_DEPOSIT", 9_500)] * 2)
    assert not detect_structuring([_tx("CASH_DEPOSIT", 10_000)] * 3)
    assert not detect_structuring([_tx("WIRE_TRANSFER", 9_500)] * 3)
    assert detect_structuring([_tx("CASH_DEPOSIT", 9_000), _tx("CASH_DEPOSIT", 9_999.99), _tx("cash_deposit", 9_100)])


@pytest.mark.parametrize("outbound, hours_later, expected", [
    (4_500, 2, True),
    (4_000, 24, True),
    (3_000, 2, False),    # below 80% of the inbound
    (4_500, 30, False),   # outside 24h
    (4_500, -1, False),   # left before the money arrived
])
def test_rapid_movement(outbound, hours_later, expected):
    txs = [
        _tx("WIRE_TRANSFER", 5_000, "IN", hours_ago=48),
        _tx("WIRE_TRANSFER", outbound, "OUT", hours_ago=48 - hours_later),
    ]
    assert detect_rapid_movement(txs) is expected


def test_small_inbound_does_not_count_as_rapid_movement():
    txs = [_tx("WIRE_TRANSFER", 900, "IN", 10), _tx("WIRE_TRANSFER", 900, "OUT", 9)]
    assert detect_rapid_movement(txs) is False


def test_metrics():
    metrics = calculate_transaction_metrics([
        _tx("CASH_DEPOSIT", 1_000),
        _tx("CRYPTO_PURCHASE", 500, "OUT"),
        _tx("WIRE_TRANSFER", 2_500),
    ])
    assert metrics.total_volume == 4_000
    assert metrics.transaction_count == 3
    assert metrics.cash_transaction_count == 1
    assert metrics.crypto_transaction_count == 1
    assert metrics.has_cash_activity and metrics.has_crypto_activity
    assert metrics.cash_percentage == pytest.approx(1 / 3)
    assert calculate_transaction_metrics([]).transaction_count == 0


# -------- directory --------

def test_unknown_customer_gets_empty_profile(tmp_path: Path):
    directory = SqliteCustomerDirectory(tmp_path / "kyc.db")
    profile = directory.load_profile("CUST-404", "pseudo-ref")
    assert profile.customer_id == "pseudo-ref"
    assert profile.nationality is None
    assert profile.products == []


def test_profile_is_built_from_records(tmp_path: Path):
    directory = SqliteCustomerDirectory(tmp_path / "kyc.db")
    directory.register_customer(
        "CUST-1",
        full_name="Jane Doe",
        nationality="NG",
        residence_country="GB",
        occupation="Art dealer",
        entity_type="CORPORATION",
        account_opened_at=datetime(2024, 1, 15, tzinfo=timezone.utc),
        expected_monthly_volume=10_000.0,
        pep=PepScreening(is_pep=True, pep_level="DOMESTIC_SENIOR_OFFICIAL"),
        sanctions=SanctionsScreening(has_match=False),
    )
    directory.add_product("CUST-1", EnrolledProduct(name="Private banking", base_risk_level=ProductRiskTier.HIGH))
    directory.add_adverse_media("CUST-1", AdverseMediaHit(headline="Dealer questioned", severity="LOW"))
    for days_ago in (1, 2, 3):
        directory.record_transaction("CUST-1", "cash_deposit", 9_500, occurred_at=NOW - timedelta(days=days_ago))
    directory.record_transaction("CUST-1", "CRYPTO_PURCHASE", 50_000, occurred_at=NOW - timedelta(days=200))

    profile = directory.load_profile("CUST-1", "pseudo-ref", now=NOW)

    assert profile.customer_id == "pseudo-ref"
    assert profile.nationality == "NG"
    assert profile.is_pep and profile.pep.pep_level == "DOMESTIC_SENIOR_OFFICIAL"
    assert not profile.has_sanctions_match
    assert profile.account_age_months == 14
    assert [p.base_risk_level for p in profile.products] == [ProductRiskTier.HIGH]
    assert len(profile.adverse_media) == 1
    # the crypto purchase is outside the 90-day window
    assert profile.tx_metrics.transaction_count == 3
    assert profile.tx_metrics.total_volume == pytest.approx(28_500)
    assert profile.tx_metrics.has_structuring_pattern
    assert not profile.tx_metrics.has_crypto_activity


def test_negative_amounts_are_rejected(tmp_path: Path):
    directory = SqliteCustomerDirectory(tmp_path / "kyc.db")
    with pytest.raises(ValueError):
        directory.record_transaction("CUST-1", "WIRE_TRANSFER", -5)
