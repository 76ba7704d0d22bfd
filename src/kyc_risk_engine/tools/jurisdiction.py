# -*- coding: utf-8 -*-
"""
Jurisdiction risk table (FATF black/grey lists).

The lists live in config/jurisdictions.yaml and are read exactly once per
process into frozensets. Every lookup is pure: blacklist is checked before
greylist, unknown or empty codes are LOW / NONE.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml

from ..models import CountryRisk, FatfStatus

LOGGER = logging.getLogger(__name__)

_TABLE_PATH: Path = Path(__file__).resolve().parents[1] / "config" / "jurisdictions.yaml"


@dataclass(frozen=True)
class JurisdictionTable:
    blacklist: FrozenSet[str]
    greylist: FrozenSet[str]
    blacklist_reason: str
    greylist_reason: str


def _codes(raw: Any) -> FrozenSet[str]:
    if not isinstance(raw, list):
        return frozenset()
    return frozenset(str(c).strip().upper() for c in raw if str(c).strip())


@lru_cache(maxsize=1)
def jurisdiction_table() -> JurisdictionTable:
    """Load the FATF lists once; a missing file is a packaging error."""
    with _TABLE_PATH.open("r", encoding="utf-8") as f:
        data: Dict[str, Any] = yaml.safe_load(f) or {}
    reasons = data.get("reasons") or {}
    table = JurisdictionTable(
        blacklist=_codes(data.get("fatf_blacklist")),
        greylist=_codes(data.get("fatf_greylist")),
        blacklist_reason=reasons.get("blacklist", "Country is on the FATF Blacklist"),
        greylist_reason=reasons.get("greylist", "Country is on the FATF Greylist"),
    )
    LOGGER.debug(
        "Loaded jurisdiction table: %d blacklisted, %d greylisted",
        len(table.blacklist), len(table.greylist),
    )
    return table


def _norm(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def fatf_status(code: Optional[str]) -> FatfStatus:
    c = _norm(code)
    if not c:
        return FatfStatus.NONE
    table = jurisdiction_table()
    if c in table.blacklist:
        return FatfStatus.BLACKLISTED
    if c in table.greylist:
        return FatfStatus.GREYLISTED
    return FatfStatus.NONE


def nationality_risk(code: Optional[str]) -> CountryRisk:
    status = fatf_status(code)
    if status is FatfStatus.BLACKLISTED:
        return CountryRisk.CRITICAL
    if status is FatfStatus.GREYLISTED:
        return CountryRisk.HIGH
    return CountryRisk.LOW


def residence_risk(code: Optional[str]) -> CountryRisk:
    # One tier below nationality for the same listing
    status = fatf_status(code)
    if status is FatfStatus.BLACKLISTED:
        return CountryRisk.HIGH
    if status is FatfStatus.GREYLISTED:
        return CountryRisk.MEDIUM
    return CountryRisk.LOW


def risk_reason(code: Optional[str]) -> Optional[str]:
    status = fatf_status(code)
    table = jurisdiction_table()
    if status is FatfStatus.BLACKLISTED:
        return table.blacklist_reason
    if status is FatfStatus.GREYLISTED:
        return table.greylist_reason
    return None


__all__ = [
    "JurisdictionTable",
    "jurisdiction_table",
    "fatf_status",
    "nationality_risk",
    "residence_risk",
    "risk_reason",
]
