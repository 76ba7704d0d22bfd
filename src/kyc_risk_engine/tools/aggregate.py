# -*- coding: utf-8 -*-
"""
Customer-level KYC status, derived from the current document set on every read.

Precedence (first match wins):
  INCOMPLETE -> UNDER_REVIEW -> REJECTED -> PENDING
  -> APPROVED_WITH_RESTRICTIONS -> APPROVED
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from ..models import (
    DocumentType,
    KycAggregateStatus,
    KycDocument,
    KycStatus,
    NOT_SCORED,
    RiskLevel,
    VerificationStatus,
)

IDENTITY_DOCUMENTS = frozenset({DocumentType.ID_CARD, DocumentType.PASSPORT})
ADDRESS_DOCUMENTS = frozenset({DocumentType.PROOF_OF_ADDRESS, DocumentType.UTILITY_BILL})

_PENDING_STATES = frozenset({VerificationStatus.PENDING, VerificationStatus.IN_PROGRESS})


def _has_type(documents: Sequence[KycDocument], types: Iterable[DocumentType]) -> bool:
    wanted = frozenset(types)
    return any(d.document_type in wanted for d in documents)


def _has_verified(documents: Sequence[KycDocument], types: Iterable[DocumentType]) -> bool:
    wanted = frozenset(types)
    return any(
        d.document_type in wanted and d.verification_status is VerificationStatus.VERIFIED
        for d in documents
    )


def _any_status(documents: Sequence[KycDocument], status: VerificationStatus) -> bool:
    return any(d.verification_status is status for d in documents)


def highest_risk_level(documents: Sequence[KycDocument]) -> Optional[RiskLevel]:
    levels = [d.risk_level for d in documents if d.risk_level is not None]
    if not levels:
        return None
    return max(levels, key=lambda lvl: lvl.rank)


def determine_aggregate_status(documents: Sequence[KycDocument]) -> KycAggregateStatus:
    docs = list(documents or ())
    if not _has_type(docs, IDENTITY_DOCUMENTS) or not _has_type(docs, ADDRESS_DOCUMENTS):
        return KycAggregateStatus.INCOMPLETE
    if _any_status(docs, VerificationStatus.NEEDS_REVIEW):
        return KycAggregateStatus.UNDER_REVIEW
    if _any_status(docs, VerificationStatus.REJECTED):
        return KycAggregateStatus.REJECTED
    if not (_has_verified(docs, IDENTITY_DOCUMENTS) and _has_verified(docs, ADDRESS_DOCUMENTS)):
        return KycAggregateStatus.PENDING
    if highest_risk_level(docs) is RiskLevel.CRITICAL:
        return KycAggregateStatus.APPROVED_WITH_RESTRICTIONS
    return KycAggregateStatus.APPROVED


def summarize(documents: Sequence[KycDocument]) -> KycStatus:
    """Reviewer-facing status summary over all of a customer's documents."""
    docs = list(documents or ())
    if not docs:
        return KycStatus(
            document_status="NO_DOCUMENTS",
            risk_level="PENDING",
            confidence_score=0.0,
            overall_status=KycAggregateStatus.INCOMPLETE,
            findings=[],
        )

    verified = sum(1 for d in docs if d.verification_status is VerificationStatus.VERIFIED)
    pending = sum(1 for d in docs if d.verification_status in _PENDING_STATES)
    rejected = sum(1 for d in docs if d.verification_status is VerificationStatus.REJECTED)

    scored = [d.confidence_score for d in docs if d.confidence_score != NOT_SCORED]
    avg_confidence = sum(scored) / len(scored) if scored else 0.0

    highest = highest_risk_level(docs)
    findings: List[str] = [f for d in docs for f in d.findings]

    return KycStatus(
        document_status=f"{verified} verified, {pending} pending, {rejected} rejected",
        risk_level=(highest or RiskLevel.LOW).value,
        confidence_score=avg_confidence,
        overall_status=determine_aggregate_status(docs),
        findings=findings,
    )


__all__ = [
    "IDENTITY_DOCUMENTS",
    "ADDRESS_DOCUMENTS",
    "highest_risk_level",
    "determine_aggregate_status",
    "summarize",
]
