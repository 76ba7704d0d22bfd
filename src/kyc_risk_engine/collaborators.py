"""
Narrow interfaces the engine depends on.

Default implementations live in tools/ (SQLite / filesystem / OCR),
router/ (policy router) and crew.py (crewAI agents). Tests substitute
their own objects; anything with the right methods will do.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from .errors import OracleUnavailableError
from .models import (
    AuditAction,
    CustomerRiskProfile,
    DocumentAnalysis,
    KycDocument,
    LegalBasis,
    OracleRequest,
    RiskAssessmentOpinion,
    RiskLevel,
    RoutingDecision,
)

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ConsentRegistry(Protocol):
    def has_valid_consent(self, customer_id: str, purpose: str) -> bool: ...


@runtime_checkable
class TaskRouter(Protocol):
    def route(
        self,
        request_type: str,
        pseudonymized_id: str,
        task_description: str,
        legal_basis: str,
        confidence_threshold: float,
        prior_submission_count: int,
        current_status: str,
        risk_indicators: Sequence[str],
    ) -> RoutingDecision: ...


@runtime_checkable
class DocumentAnalyzer(Protocol):
    def analyze_document(
        self,
        doc_type: str,
        country: str,
        extracted_text: str,
        pseudonymized_ref: str,
        legal_basis: str,
    ) -> DocumentAnalysis: ...


@runtime_checkable
class RiskOracle(Protocol):
    def assess_risk(self, request: OracleRequest) -> RiskAssessmentOpinion: ...


@runtime_checkable
class ContextRetriever(Protocol):
    def retrieve_context(self, query: str) -> str: ...


@runtime_checkable
class AuditSink(Protocol):
    def log_access(
        self,
        customer_id: Optional[str],
        action: AuditAction,
        legal_basis: Optional[LegalBasis],
        performed_by: str,
        data_categories: Sequence[str],
        success: bool,
        details: Optional[Dict[str, Any]] = None,
    ) -> None: ...


@runtime_checkable
class DocumentStorage(Protocol):
    def store(self, customer_id: str, filename: str, data: bytes) -> str: ...


@runtime_checkable
class TextExtractor(Protocol):
    def extract_text(self, data: bytes) -> str: ...


@runtime_checkable
class CustomerDirectory(Protocol):
    def load_profile(self, customer_id: str, pseudonymized_id: str) -> CustomerRiskProfile: ...


@runtime_checkable
class DocumentRepository(Protocol):
    def save(self, document: KycDocument) -> KycDocument: ...

    def get(self, document_id: str) -> Optional[KycDocument]: ...

    def find_by_customer(self, customer_id: str) -> List[KycDocument]: ...

    def update_risk(self, document_id: str, risk_level: RiskLevel, findings: Sequence[str]) -> KycDocument: ...


class BaselineOnlyOracle:
    """Oracle stand-in that is never available; forces rule-only scoring."""

    def assess_risk(self, request: OracleRequest) -> RiskAssessmentOpinion:
        LOGGER.debug("BaselineOnlyOracle asked about %s", request.customer_ref)
        raise OracleUnavailableError("No risk oracle configured")


class StaticRiskOracle:
    """Returns one fixed opinion. Handy for replaying a recorded assessment."""

    def __init__(self, opinion: RiskAssessmentOpinion) -> None:
        self.opinion = opinion
        self.requests: List[OracleRequest] = []

    def assess_risk(self, request: OracleRequest) -> RiskAssessmentOpinion:
        self.requests.append(request)
        return self.opinion


class NullContextRetriever:
    def retrieve_context(self, query: str) -> str:
        return ""


__all__ = [
    "ConsentRegistry",
    "TaskRouter",
    "DocumentAnalyzer",
    "RiskOracle",
    "ContextRetriever",
    "AuditSink",
    "DocumentStorage",
    "TextExtractor",
    "CustomerDirectory",
    "DocumentRepository",
    "BaselineOnlyOracle",
    "StaticRiskOracle",
    "NullContextRetriever",
]
