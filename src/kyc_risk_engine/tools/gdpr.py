# src/kyc_risk_engine/tools/gdpr.py
"""
GDPR plumbing: consent registry, pseudonymization, access audit, retention.

Design
- Consent is looked up in SQLite; any lookup failure counts as "no consent".
- Audit records go to an append-only JSONL file and, when a database path is
  given, to a `data_access_audit` table as well. Customers appear in audit
  records only by their pseudonymized reference.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from ..models import AuditAction, LegalBasis
from .persist import db_path_from_env, open_sqlite

LOGGER = logging.getLogger(__name__)

KYC_PURPOSE = "KYC_VERIFICATION"
DEFAULT_AUDIT_DIR = "runlogs"
DEFAULT_AUDIT_FILE = "audit.jsonl"
RETENTION_DAYS = int(os.getenv("KYC_RETENTION_DAYS", "90"))


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# ------------------------------ Pseudonymization ------------------------------

def hash_identifier(identifier: str, salt: Optional[str] = None) -> str:
    """SHA-256 of salt + identifier, base64 encoded. Stable for a given salt."""
    if salt is None:
        salt = os.getenv("KYC_PSEUDONYM_SALT", "")
    digest = hashlib.sha256(f"{salt}{identifier}".encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def looks_pseudonymized(ref: Optional[str]) -> bool:
    """True for a 44-char base64 SHA-256 digest."""
    if not ref or len(ref) != 44:
        return False
    try:
        return len(base64.b64decode(ref, validate=True)) == 32
    except ValueError:
        return False


def retention_until(days: Optional[int] = None, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(days=RETENTION_DAYS if days is None else days)


# ------------------------------ Consent registry ------------------------------

SQLITE_DDL_CONSENTS = """
CREATE TABLE IF NOT EXISTS consents (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id  TEXT NOT NULL,
    purpose      TEXT NOT NULL,
    legal_basis  TEXT,
    granted_at   TEXT NOT NULL,
    revoked_at   TEXT
)
"""


class SqliteConsentRegistry:
    def __init__(self, db_path: Optional[str | os.PathLike[str]] = None) -> None:
        self.db_path = Path(db_path) if db_path else db_path_from_env()
        conn = open_sqlite(self.db_path)
        try:
            with conn:
                conn.execute(SQLITE_DDL_CONSENTS)
        finally:
            conn.close()

    def grant(self, customer_id: str, purpose: str = KYC_PURPOSE,
              legal_basis: LegalBasis = LegalBasis.CONSENT) -> None:
        conn = open_sqlite(self.db_path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO consents (customer_id, purpose, legal_basis, granted_at) VALUES (?, ?, ?, ?)",
                    (customer_id, purpose, legal_basis.value, _utc_now_iso()),
                )
        finally:
            conn.close()

    def revoke(self, customer_id: str, purpose: str = KYC_PURPOSE) -> int:
        """Revoke every active grant for the purpose; returns how many were revoked."""
        conn = open_sqlite(self.db_path)
        try:
            with conn:
                cur = conn.execute(
                    "UPDATE consents SET revoked_at = ? "
                    "WHERE customer_id = ? AND purpose = ? AND revoked_at IS NULL",
                    (_utc_now_iso(), customer_id, purpose),
                )
                return cur.rowcount
        finally:
            conn.close()

    def has_valid_consent(self, customer_id: str, purpose: str) -> bool:
        try:
            conn = open_sqlite(self.db_path)
            try:
                row = conn.execute(
                    "SELECT 1 FROM consents WHERE customer_id = ? AND purpose = ? AND revoked_at IS NULL LIMIT 1",
                    (customer_id, purpose),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            LOGGER.warning("Consent lookup failed, treating as absent: %s", exc)
            return False
        return row is not None


# ------------------------------ Access audit ------------------------------

SQLITE_DDL_AUDIT = """
CREATE TABLE IF NOT EXISTS data_access_audit (
    id               TEXT PRIMARY KEY,
    created_at       TEXT NOT NULL,
    customer_ref     TEXT,
    action           TEXT NOT NULL,
    legal_basis      TEXT,
    performed_by     TEXT NOT NULL,
    data_categories  TEXT NOT NULL,     -- JSON list
    success          INTEGER NOT NULL,
    details          TEXT               -- JSON object
)
"""


def _append_jsonl_to_file(file_path: Path, payload: dict) -> Path:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
    return file_path


class JsonlAuditSink:
    """
    Append-only audit trail.

    Path resolution: KYC_AUDIT_FILE (explicit file) > out_dir argument >
    KYC_AUDIT_DIR > ./runlogs, file name audit.jsonl.
    """

    def __init__(
        self,
        out_dir: Optional[str | os.PathLike[str]] = None,
        db_path: Optional[str | os.PathLike[str]] = None,
    ) -> None:
        env_file = os.getenv("KYC_AUDIT_FILE")
        if env_file:
            self.path = Path(env_file)
        else:
            self.path = Path(out_dir or os.getenv("KYC_AUDIT_DIR", DEFAULT_AUDIT_DIR)) / DEFAULT_AUDIT_FILE
        self.db_path = Path(db_path) if db_path else None
        if self.db_path is not None:
            conn = open_sqlite(self.db_path)
            try:
                with conn:
                    conn.execute(SQLITE_DDL_AUDIT)
            finally:
                conn.close()

    def log_access(
        self,
        customer_id: Optional[str],
        action: AuditAction,
        legal_basis: Optional[LegalBasis],
        performed_by: str,
        data_categories: Sequence[str],
        success: bool,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        record = {
            "id": str(uuid.uuid4()),
            "created_at": _utc_now_iso(),
            "customer_ref": hash_identifier(customer_id) if customer_id else None,
            "action": AuditAction(action).value,
            "legal_basis": LegalBasis(legal_basis).value if legal_basis else None,
            "performed_by": performed_by,
            "data_categories": list(data_categories),
            "success": bool(success),
            "details": details or {},
        }
        _append_jsonl_to_file(self.path, record)
        if self.db_path is not None:
            self._insert(record)

    def _insert(self, record: Dict[str, Any]) -> None:
        conn = open_sqlite(self.db_path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO data_access_audit (id, created_at, customer_ref, action, legal_basis, "
                    "performed_by, data_categories, success, details) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record["id"],
                        record["created_at"],
                        record["customer_ref"],
                        record["action"],
                        record["legal_basis"],
                        record["performed_by"],
                        json.dumps(record["data_categories"]),
                        1 if record["success"] else 0,
                        json.dumps(record["details"], ensure_ascii=False, default=str),
                    ),
                )
        finally:
            conn.close()


__all__ = [
    "KYC_PURPOSE",
    "hash_identifier",
    "looks_pseudonymized",
    "retention_until",
    "SqliteConsentRegistry",
    "JsonlAuditSink",
]
