# -*- coding: utf-8 -*-
"""
Document rules (YAML-driven) applied to the document analyst's output.

Design
------
- Rules live in config/document_rules.yaml, one block per document type.
- Each block becomes a JSON schema (required + properties); every schema
  error is reported as a warning, never as an exception.
- A parseable expiry_date in the past forces not_expired=False, whatever the
  analyst said. The analyst can make a document look worse, never better.
"""

from __future__ import annotations

import logging
import unicodedata
from datetime import date, datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import Draft7Validator

from ..models import DocumentAnalysis, DocumentType

# ------------------------------ Logger ---------------------------------------

LOGGER = logging.getLogger(__name__)

# ------------------------------ Constants ------------------------------------

_RULES_PATH: Path = Path(__file__).resolve().parents[1] / "config" / "document_rules.yaml"
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y", "%d %b %Y", "%d %B %Y")


# ------------------------------ Rules loading --------------------------------

@lru_cache(maxsize=1)
def document_rules() -> Dict[str, Any]:
    try:
        with _RULES_PATH.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        LOGGER.warning("Failed to load document rules %s: %s", _RULES_PATH, exc)
        return {}
    return data if isinstance(data, dict) else {}


def _schema_for(doc_type: DocumentType) -> Optional[Dict[str, Any]]:
    block = (document_rules().get("document_types") or {}).get(doc_type.value)
    if not block:
        return None
    return {
        "type": "object",
        "required": list(block.get("required") or []),
        "properties": dict(block.get("properties") or {}),
    }


# ------------------------------ Helpers --------------------------------------

def _norm_str(s: Any) -> Any:
    """NFKC + strip, for OCR-sourced strings."""
    if not isinstance(s, str):
        return s
    return unicodedata.normalize("NFKC", s).replace("\u200b", "").replace("\ufeff", "").strip()


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _normalized(fields: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: _norm_str(v) for k, v in (fields or {}).items()}
    # Empty strings count as missing for "required".
    return {k: v for k, v in out.items() if v not in ("", None)}


# ------------------------------ Public API -----------------------------------

def validate_extracted_fields(doc_type: DocumentType, fields: Dict[str, Any]) -> List[str]:
    """Warnings for missing or malformed fields; empty when the type has no rules."""
    schema = _schema_for(doc_type)
    if schema is None:
        return []

    warnings: List[str] = []
    payload = _normalized(fields)
    for err in sorted(Draft7Validator(schema).iter_errors(payload), key=lambda e: list(e.path)):
        if err.validator == "required":
            missing = [r for r in schema["required"] if r not in payload]
            warnings.extend(f"Missing required field: {m}" for m in missing)
        else:
            field = ".".join(str(p) for p in err.path) or "document"
            warnings.append(f"Invalid field {field}: {err.message}")

    for name in document_rules().get("date_fields") or []:
        if name in payload and parse_date(payload[name]) is None:
            warnings.append(f"Unreadable date in field {name}: {payload[name]}")

    # jsonschema reports one "required" error listing all; dedupe keeps order.
    return list(dict.fromkeys(warnings))


def is_expired(fields: Dict[str, Any], today: Optional[date] = None) -> bool:
    expiry = parse_date((fields or {}).get("expiry_date"))
    if expiry is None:
        return False
    today = today or datetime.now(timezone.utc).date()
    return expiry < today


def apply_document_rules(doc_type: DocumentType, analysis: DocumentAnalysis,
                         today: Optional[date] = None) -> DocumentAnalysis:
    """Return a copy of the analysis with rule warnings merged in."""
    warnings = list(analysis.warnings)
    for w in validate_extracted_fields(doc_type, analysis.extracted_fields):
        if w not in warnings:
            warnings.append(w)

    not_expired = analysis.not_expired
    if is_expired(analysis.extracted_fields, today):
        not_expired = False
        note = f"Document expired on {analysis.extracted_fields.get('expiry_date')}"
        if note not in warnings:
            warnings.append(note)

    return analysis.model_copy(update={"warnings": warnings, "not_expired": not_expired})


__all__ = [
    "document_rules",
    "parse_date",
    "validate_extracted_fields",
    "is_expired",
    "apply_document_rules",
]
