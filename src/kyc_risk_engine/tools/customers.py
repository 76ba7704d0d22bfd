# src/kyc_risk_engine/tools/customers.py
"""
Customer directory backed by SQLite.

Builds the CustomerRiskProfile the scorer consumes: customer attributes,
screening results, enrolled products, and TransactionMetrics over the
trailing quarter.

Pattern detection
- structuring: >= 3 cash transactions in [9,000, 10,000) inside the window
- rapid movement: an outbound of >= 80% of an inbound (>= 1,000) within 24h
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional

from ..models import (
    AdverseMediaHit,
    CustomerRiskProfile,
    EnrolledProduct,
    PepScreening,
    ProductRiskTier,
    SanctionsScreening,
    TransactionMetrics,
)
from .persist import db_path_from_env, open_sqlite

LOGGER = logging.getLogger(__name__)

METRICS_WINDOW_DAYS = 90
STRUCTURING_MIN_COUNT = 3
STRUCTURING_LOW = 9_000.0
STRUCTURING_HIGH = 10_000.0
RAPID_MIN_INBOUND = 1_000.0
RAPID_OUTBOUND_RATIO = 0.8
RAPID_WINDOW = timedelta(hours=24)

SQLITE_DDL = (
    """
    CREATE TABLE IF NOT EXISTS customers (
        customer_id              TEXT PRIMARY KEY,
        full_name                TEXT,
        nationality              TEXT,
        residence_country        TEXT,
        occupation               TEXT,
        industry_sector          TEXT,
        income_range             TEXT,
        source_of_wealth         TEXT,
        entity_type              TEXT,
        net_worth                REAL,
        account_opened_at        TEXT,
        expected_monthly_volume  REAL,
        pep                      TEXT,   -- JSON PepScreening
        sanctions                TEXT    -- JSON SanctionsScreening
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customer_products (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        customer_id      TEXT NOT NULL,
        name             TEXT NOT NULL,
        product_type     TEXT,
        base_risk_level  TEXT NOT NULL,
        risk_score       INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customer_adverse_media (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        customer_id  TEXT NOT NULL,
        headline     TEXT NOT NULL,
        category     TEXT,
        severity     TEXT,
        reported_at  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customer_transactions (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        customer_id  TEXT NOT NULL,
        tx_type      TEXT NOT NULL,      -- e.g. CASH_DEPOSIT, CRYPTO_PURCHASE, WIRE_TRANSFER
        direction    TEXT NOT NULL,      -- IN | OUT
        amount       REAL NOT NULL,
        occurred_at  TEXT NOT NULL
    )
    """,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


# ------------------------------ Transaction metrics ---------------------------

@dataclass(frozen=True)
class Transaction:
    tx_type: str
    direction: str
    amount: float
    occurred_at: datetime

    @property
    def is_cash(self) -> bool:
        return "CASH" in self.tx_type.upper()

    @property
    def is_crypto(self) -> bool:
        return "CRYPTO" in self.tx_type.upper()

    @property
    def inbound(self) -> bool:
        return self.direction.upper() == "IN"


def detect_structuring(transactions: Iterable[Transaction]) -> bool:
    near_threshold = [
        t for t in transactions if t.is_cash and STRUCTURING_LOW <= t.amount < STRUCTURING_HIGH
    ]
    return len(near_threshold) >= STRUCTURING_MIN_COUNT


def detect_rapid_movement(transactions: Iterable[Transaction]) -> bool:
    ordered = sorted(transactions, key=lambda t: t.occurred_at)
    inbound = [t for t in ordered if t.inbound and t.amount >= RAPID_MIN_INBOUND]
    outbound = [t for t in ordered if not t.inbound]
    for tin in inbound:
        for tout in outbound:
            delta = tout.occurred_at - tin.occurred_at
            if timedelta(0) <= delta <= RAPID_WINDOW and tout.amount >= RAPID_OUTBOUND_RATIO * tin.amount:
                return True
    return False


def calculate_transaction_metrics(transactions: List[Transaction]) -> TransactionMetrics:
    if not transactions:
        return TransactionMetrics.empty()
    crypto = sum(1 for t in transactions if t.is_crypto)
    cash = sum(1 for t in transactions if t.is_cash)
    return TransactionMetrics(
        total_volume=sum(t.amount for t in transactions),
        transaction_count=len(transactions),
        crypto_transaction_count=crypto,
        cash_transaction_count=cash,
        has_crypto_activity=crypto > 0,
        has_cash_activity=cash > 0,
        has_structuring_pattern=detect_structuring(transactions),
        has_rapid_movement=detect_rapid_movement(transactions),
    )


# ------------------------------ Directory -------------------------------------

class SqliteCustomerDirectory:
    def __init__(self, db_path: Optional[str | os.PathLike[str]] = None) -> None:
        self.db_path = Path(db_path) if db_path else db_path_from_env()
        conn = open_sqlite(self.db_path)
        try:
            with conn:
                for ddl in SQLITE_DDL:
                    conn.execute(ddl)
        finally:
            conn.close()

    def _execute(self, sql: str, params: tuple) -> None:
        conn = open_sqlite(self.db_path)
        try:
            with conn:
                conn.execute(sql, params)
        finally:
            conn.close()

    def _query(self, sql: str, params: tuple) -> List[Any]:
        conn = open_sqlite(self.db_path)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    # ---------- writes ----------

    def register_customer(
        self,
        customer_id: str,
        *,
        full_name: Optional[str] = None,
        nationality: Optional[str] = None,
        residence_country: Optional[str] = None,
        occupation: Optional[str] = None,
        industry_sector: Optional[str] = None,
        income_range: Optional[str] = None,
        source_of_wealth: Optional[str] = None,
        entity_type: Optional[str] = None,
        net_worth: Optional[float] = None,
        account_opened_at: Optional[datetime] = None,
        expected_monthly_volume: Optional[float] = None,
        pep: Optional[PepScreening] = None,
        sanctions: Optional[SanctionsScreening] = None,
    ) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO customers
              (customer_id, full_name, nationality, residence_country, occupation, industry_sector,
               income_range, source_of_wealth, entity_type, net_worth, account_opened_at,
               expected_monthly_volume, pep, sanctions)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                customer_id, full_name, nationality, residence_country, occupation, industry_sector,
                income_range, source_of_wealth, entity_type, net_worth,
                account_opened_at.isoformat() if account_opened_at else None,
                expected_monthly_volume,
                pep.model_dump_json() if pep else None,
                sanctions.model_dump_json() if sanctions else None,
            ),
        )

    def add_product(self, customer_id: str, product: EnrolledProduct) -> None:
        self._execute(
            "INSERT INTO customer_products (customer_id, name, product_type, base_risk_level, risk_score) "
            "VALUES (?, ?, ?, ?, ?)",
            (customer_id, product.name, product.product_type, product.base_risk_level.value, product.risk_score),
        )

    def add_adverse_media(self, customer_id: str, hit: AdverseMediaHit) -> None:
        self._execute(
            "INSERT INTO customer_adverse_media (customer_id, headline, category, severity, reported_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (customer_id, hit.headline, hit.category, hit.severity, hit.date.isoformat() if hit.date else None),
        )

    def record_transaction(self, customer_id: str, tx_type: str, amount: float,
                           direction: str = "IN", occurred_at: Optional[datetime] = None) -> None:
        if amount < 0:
            raise ValueError("amount must be non-negative; use direction for outflows")
        occurred_at = occurred_at or _utc_now()
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        self._execute(
            "INSERT INTO customer_transactions (customer_id, tx_type, direction, amount, occurred_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (customer_id, tx_type.upper(), direction.upper(), float(amount), occurred_at.isoformat()),
        )

    # ---------- reads ----------

    def recent_transactions(self, customer_id: str, now: Optional[datetime] = None) -> List[Transaction]:
        now = now or _utc_now()
        since = now - timedelta(days=METRICS_WINDOW_DAYS)
        rows = self._query(
            "SELECT tx_type, direction, amount, occurred_at FROM customer_transactions WHERE customer_id = ?",
            (customer_id,),
        )
        txs = [
            Transaction(r["tx_type"], r["direction"], float(r["amount"]), _parse_ts(r["occurred_at"]))
            for r in rows
        ]
        return [t for t in txs if since <= t.occurred_at <= now]

    def load_profile(self, customer_id: str, pseudonymized_id: str,
                     now: Optional[datetime] = None) -> CustomerRiskProfile:
        now = now or _utc_now()
        rows = self._query("SELECT * FROM customers WHERE customer_id = ?", (customer_id,))
        if not rows:
            LOGGER.warning("No customer record for %s; scoring with an empty profile", pseudonymized_id)
            return CustomerRiskProfile(customer_id=pseudonymized_id)
        c = rows[0]

        products = [
            EnrolledProduct(
                name=r["name"],
                product_type=r["product_type"],
                base_risk_level=ProductRiskTier(r["base_risk_level"]),
                risk_score=r["risk_score"],
            )
            for r in self._query("SELECT * FROM customer_products WHERE customer_id = ?", (customer_id,))
        ]
        media = [
            AdverseMediaHit(
                headline=r["headline"],
                category=r["category"],
                severity=r["severity"],
                date=_parse_ts(r["reported_at"]),
            )
            for r in self._query("SELECT * FROM customer_adverse_media WHERE customer_id = ?", (customer_id,))
        ]

        account_age = None
        opened = _parse_ts(c["account_opened_at"])
        if opened:
            account_age = max(0, (now.year - opened.year) * 12 + (now.month - opened.month))

        return CustomerRiskProfile(
            customer_id=pseudonymized_id,
            nationality=c["nationality"],
            residence_country=c["residence_country"],
            occupation=c["occupation"],
            industry_sector=c["industry_sector"],
            income_range=c["income_range"],
            source_of_wealth=c["source_of_wealth"],
            entity_type=c["entity_type"],
            net_worth=c["net_worth"],
            account_age_months=account_age,
            expected_monthly_volume=c["expected_monthly_volume"],
            pep=PepScreening(**json.loads(c["pep"])) if c["pep"] else None,
            sanctions=SanctionsScreening(**json.loads(c["sanctions"])) if c["sanctions"] else None,
            adverse_media=media,
            products=products,
            tx_metrics=calculate_transaction_metrics(self.recent_transactions(customer_id, now)),
        )


__all__ = [
    "Transaction",
    "SqliteCustomerDirectory",
    "calculate_transaction_metrics",
    "detect_structuring",
    "detect_rapid_movement",
]
