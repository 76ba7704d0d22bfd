# src/kyc_risk_engine/tools/persist.py
"""
Document persistence: raw bytes on the filesystem, records in SQLite.

- LocalDocumentStorage writes each upload atomically (tempfile + replace).
- SqliteDocumentRepository keeps one row per KycDocument; every update of a
  document is a single transaction so a crash never leaves a half-written
  status / risk level / findings triple.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import tempfile
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from ..errors import InvariantViolationError
from ..models import KycDocument, RiskLevel

LOGGER = logging.getLogger(__name__)

DEFAULT_DB_PATH = "kyc_local.db"
DEFAULT_STORAGE_DIR = "data/documents"
SQLITE_TIMEOUT_SECONDS = float(os.getenv("KYC_SQLITE_TIMEOUT_SECONDS", "10"))


# ---------- helpers ----------

def _utc_now_iso() -> str:
    """ISO 8601 timestamp with timezone, second precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def db_path_from_env() -> Path:
    return Path(os.getenv("KYC_DB_PATH", DEFAULT_DB_PATH))


def open_sqlite(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=SQLITE_TIMEOUT_SECONDS, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout=5000;")
    return conn


def _atomic_write_bytes(dest: Path, data: bytes) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", dir=str(dest.parent), delete=False) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    tmp_path.replace(dest)


# ---------- storage ----------

class LocalDocumentStorage:
    """Stores uploads under <root>/<customer>/<yyyy-mm-dd>/<uuid>_<filename>."""

    def __init__(self, root: Optional[str | os.PathLike[str]] = None) -> None:
        self.root = Path(root or os.getenv("KYC_STORAGE_DIR", DEFAULT_STORAGE_DIR))

    @staticmethod
    def _safe(part: str, fallback: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9._-]+", "_", (part or "").strip()).strip("._")
        return safe or fallback

    def store(self, customer_id: str, filename: str, data: bytes) -> str:
        if not data:
            raise ValueError("Refusing to store an empty document")
        today = datetime.now(timezone.utc).date().isoformat()
        rel = Path(
            self._safe(customer_id, "unknown"),
            today,
            f"{uuid.uuid4()}_{self._safe(filename, 'document')}",
        )
        _atomic_write_bytes(self.root / rel, data)
        LOGGER.debug("Stored document at %s (%d bytes)", rel, len(data))
        return rel.as_posix()

    def delete(self, storage_path: str) -> None:
        try:
            (self.root / storage_path).unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.error("Failed to delete document %s: %s", storage_path, exc)


# ---------- repository ----------

SQLITE_DDL_DOCUMENTS = """
CREATE TABLE IF NOT EXISTS kyc_documents (
    id                    TEXT PRIMARY KEY,
    customer_id           TEXT NOT NULL,
    document_type         TEXT NOT NULL,
    verification_status   TEXT NOT NULL,
    confidence_score      REAL NOT NULL DEFAULT -1.0,
    risk_level            TEXT,
    findings              TEXT NOT NULL DEFAULT '[]',   -- JSON list of strings
    extracted_data        TEXT NOT NULL DEFAULT '{}',   -- JSON object
    storage_path          TEXT,
    legal_basis           TEXT,
    created_at            TEXT NOT NULL,
    updated_at            TEXT,
    processed_at          TEXT,
    processed_by          TEXT,
    data_retention_until  TEXT
)
"""

SQLITE_DDL_DOCUMENTS_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_kyc_documents_customer ON kyc_documents(customer_id)"
)

_COLUMNS = (
    "id", "customer_id", "document_type", "verification_status", "confidence_score",
    "risk_level", "findings", "extracted_data", "storage_path", "legal_basis",
    "created_at", "updated_at", "processed_at", "processed_by", "data_retention_until",
)


def _to_row(doc: KycDocument) -> Dict[str, Any]:
    return {
        "id": doc.id,
        "customer_id": doc.customer_id,
        "document_type": doc.document_type.value,
        "verification_status": doc.verification_status.value,
        "confidence_score": float(doc.confidence_score),
        "risk_level": doc.risk_level.value if doc.risk_level else None,
        "findings": json.dumps(list(doc.findings), ensure_ascii=False),
        "extracted_data": json.dumps(doc.extracted_data, ensure_ascii=False, default=str),
        "storage_path": doc.storage_path,
        "legal_basis": doc.legal_basis.value if doc.legal_basis else None,
        "created_at": _iso(doc.created_at),
        "updated_at": _iso(doc.updated_at),
        "processed_at": _iso(doc.processed_at),
        "processed_by": doc.processed_by,
        "data_retention_until": _iso(doc.data_retention_until),
    }


def _from_row(row: sqlite3.Row) -> KycDocument:
    """Rebuild a document; malformed stored data is an invariant violation."""
    data = {k: row[k] for k in _COLUMNS}
    try:
        data["findings"] = json.loads(data["findings"] or "[]")
        data["extracted_data"] = json.loads(data["extracted_data"] or "{}")
        return KycDocument.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise InvariantViolationError(
            "Stored document record is malformed",
            {"document_id": row["id"], "error": str(exc).splitlines()[0]},
        ) from exc


class SqliteDocumentRepository:
    def __init__(self, db_path: Optional[str | os.PathLike[str]] = None) -> None:
        self.db_path = Path(db_path) if db_path else db_path_from_env()
        with self._connect() as conn:
            conn.execute(SQLITE_DDL_DOCUMENTS)
            conn.execute(SQLITE_DDL_DOCUMENTS_INDEX)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = open_sqlite(self.db_path)
        try:
            with conn:  # commit on success, rollback on error
                yield conn
        finally:
            conn.close()

    def save(self, document: KycDocument) -> KycDocument:
        row = _to_row(document)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{c}=excluded.{c}" for c in _COLUMNS if c != "id")
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO kyc_documents ({', '.join(_COLUMNS)}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                tuple(row[c] for c in _COLUMNS),
            )
        return document

    def get(self, document_id: str) -> Optional[KycDocument]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM kyc_documents WHERE id = ?", (document_id,)).fetchone()
        return _from_row(row) if row else None

    def find_by_customer(self, customer_id: str) -> List[KycDocument]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM kyc_documents WHERE customer_id = ? ORDER BY created_at, rowid",
                (customer_id,),
            ).fetchall()
        return [_from_row(r) for r in rows]

    def count_by_customer(self, customer_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM kyc_documents WHERE customer_id = ?", (customer_id,)
            ).fetchone()
        return int(row[0]) if row else 0

    def update_risk(self, document_id: str, risk_level: RiskLevel, findings: Sequence[str]) -> KycDocument:
        """Set risk level and append findings for one document in one transaction."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT * FROM kyc_documents WHERE id = ?", (document_id,)).fetchone()
            if row is None:
                raise InvariantViolationError("Document vanished during risk write-back", {"document_id": document_id})
            doc = _from_row(row)
            doc.risk_level = risk_level
            doc.findings.extend(f for f in findings if f)
            doc.updated_at = datetime.now(timezone.utc)
            conn.execute(
                "UPDATE kyc_documents SET risk_level = ?, findings = ?, updated_at = ? WHERE id = ?",
                (
                    risk_level.value,
                    json.dumps(doc.findings, ensure_ascii=False),
                    _iso(doc.updated_at),
                    document_id,
                ),
            )
        return doc


__all__ = [
    "LocalDocumentStorage",
    "SqliteDocumentRepository",
    "open_sqlite",
    "db_path_from_env",
]
