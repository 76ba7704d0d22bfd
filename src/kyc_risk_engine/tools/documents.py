# -*- coding: utf-8 -*-
"""
Per-document verification lifecycle.

    PENDING -> IN_PROGRESS -> VERIFIED | REJECTED | NEEDS_REVIEW
    VERIFIED -> EXPIRED   (time driven, applied by retention jobs)
    VERIFIED -> NEEDS_REVIEW   (risk assessment never completed)

The outcome of IN_PROGRESS is re-derived from the analysis result every time
(no stored transition log). Findings only ever grow.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List

from ..errors import InvariantViolationError
from ..models import DocumentAnalysis, KycDocument, VerificationStatus

LOGGER = logging.getLogger(__name__)

MIN_CONFIDENCE: float = 0.7

ALLOWED_TRANSITIONS: Dict[VerificationStatus, FrozenSet[VerificationStatus]] = {
    VerificationStatus.PENDING: frozenset({VerificationStatus.IN_PROGRESS}),
    VerificationStatus.IN_PROGRESS: frozenset({
        VerificationStatus.VERIFIED,
        VerificationStatus.REJECTED,
        VerificationStatus.NEEDS_REVIEW,
    }),
    VerificationStatus.VERIFIED: frozenset({VerificationStatus.EXPIRED}),
    # Terminal for the engine; only a human reviewer moves these.
    VerificationStatus.REJECTED: frozenset(),
    VerificationStatus.NEEDS_REVIEW: frozenset(),
    VerificationStatus.EXPIRED: frozenset(),
}


def determine_verification_status(analysis: DocumentAnalysis) -> VerificationStatus:
    """Precedence: low confidence, then invalid/expired, then suspicious patterns."""
    if analysis.overall_confidence < MIN_CONFIDENCE:
        return VerificationStatus.NEEDS_REVIEW
    if not analysis.valid_document or not analysis.not_expired:
        return VerificationStatus.REJECTED
    if analysis.suspicious_patterns:
        return VerificationStatus.NEEDS_REVIEW
    return VerificationStatus.VERIFIED


def transition(document: KycDocument, target: VerificationStatus) -> KycDocument:
    current = document.verification_status
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvariantViolationError(
            f"Illegal document transition {current.value} -> {target.value}",
            {"document_id": document.id},
        )
    document.verification_status = target
    document.updated_at = datetime.now(timezone.utc)
    LOGGER.debug("Document %s: %s -> %s", document.id, current.value, target.value)
    return document


def start_processing(document: KycDocument) -> KycDocument:
    return transition(document, VerificationStatus.IN_PROGRESS)


def append_findings(document: KycDocument, findings: Iterable[str]) -> List[str]:
    """Append non-empty findings in order; returns what was added."""
    added = [str(f).strip() for f in findings if f and str(f).strip()]
    document.findings.extend(added)
    return added


def analysis_findings(analysis: DocumentAnalysis) -> List[str]:
    return list(analysis.warnings) + list(analysis.suspicious_patterns)


def apply_analysis(document: KycDocument, analysis: DocumentAnalysis, processed_by: str = "AI_AGENT") -> KycDocument:
    """Move an IN_PROGRESS document to its outcome and record the analysis."""
    if document.verification_status is not VerificationStatus.IN_PROGRESS:
        raise InvariantViolationError(
            "Analysis can only be applied to an IN_PROGRESS document",
            {"document_id": document.id, "status": document.verification_status.value},
        )
    document.confidence_score = analysis.overall_confidence
    document.extracted_data = dict(analysis.extracted_fields)
    append_findings(document, analysis_findings(analysis))
    transition(document, determine_verification_status(analysis))
    document.processed_at = datetime.now(timezone.utc)
    document.processed_by = processed_by
    return document


def hold_unassessed(document: KycDocument) -> KycDocument:
    """
    VERIFIED -> NEEDS_REVIEW for a document whose risk assessment never
    completed. A verified document without a risk level must not count
    towards approval.
    """
    if document.verification_status is not VerificationStatus.VERIFIED or document.risk_level is not None:
        raise InvariantViolationError(
            "Only a verified, unassessed document can be held for review",
            {"document_id": document.id, "status": document.verification_status.value},
        )
    document.verification_status = VerificationStatus.NEEDS_REVIEW
    document.updated_at = datetime.now(timezone.utc)
    LOGGER.debug("Document %s held for review: risk assessment incomplete", document.id)
    return document


__all__ = [
    "MIN_CONFIDENCE",
    "ALLOWED_TRANSITIONS",
    "determine_verification_status",
    "transition",
    "start_processing",
    "append_findings",
    "analysis_findings",
    "apply_analysis",
    "hold_unassessed",
]
