# -*- coding: utf-8 -*-
"""
KYC submission orchestrator.

process_submission runs, in order:
  (a) consent check (fail closed)
  (b) routing + privacy checks
  (c) storage, text extraction, document analysis, verification outcome
  (d) only for a VERIFIED document: risk assessment, then risk level and
      findings written back onto every document of the customer
  (e) aggregate status recomputed from the stored documents

Steps (c)-(d) hold a per-customer lock. Policy rejections come back as
REJECTED results; failures never escape as exceptions. Every step that
touches customer data is audited, and an audit failure never fails a request.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

from .assessment import RiskAssessmentService, risk_findings
from .collaborators import (
    AuditSink,
    ConsentRegistry,
    CustomerDirectory,
    DocumentAnalyzer,
    DocumentRepository,
    DocumentStorage,
    TaskRouter,
    TextExtractor,
)
from .errors import (
    CollaboratorTimeoutError,
    DocumentProcessingError,
    InvariantViolationError,
    KycEngineError,
    SubmissionCancelledError,
)
from .models import (
    AuditAction,
    CustomerRiskProfile,
    DocumentAnalysis,
    DocumentType,
    KycAggregateStatus,
    KycDocument,
    KycStatus,
    LegalBasis,
    RiskLevel,
    SubmissionResult,
    SubmissionStatus,
    VerificationStatus,
)
from .tools.aggregate import (
    ADDRESS_DOCUMENTS,
    determine_aggregate_status,
    summarize,
)
from .tools.docrules import apply_document_rules
from .tools.documents import append_findings, apply_analysis, hold_unassessed, start_processing, transition
from .tools.gdpr import KYC_PURPOSE, hash_identifier, retention_until

LOGGER = logging.getLogger(__name__)

ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("KYC_ANALYSIS_TIMEOUT_SECONDS", "60"))
EXTRACTION_TIMEOUT_SECONDS = float(os.getenv("KYC_EXTRACTION_TIMEOUT_SECONDS", "60"))
ROUTING_TIMEOUT_SECONDS = float(os.getenv("KYC_ROUTING_TIMEOUT_SECONDS", "30"))
ROUTING_CONFIDENCE = float(os.getenv("KYC_ROUTING_CONFIDENCE", "0.7"))
PERFORMED_BY = "KYC_ORCHESTRATOR"
REQUEST_TYPE = "DOCUMENT_ANALYSIS"


# ------------------------------ Concurrency helpers ---------------------------

class CancellationToken:
    """Caller-owned flag; checked before anything irreversible is written."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise SubmissionCancelledError(f"Submission cancelled before {stage}", {"stage": stage})


class KeyedLock:
    """One mutex per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, List[Any]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._entries.pop(key, None)


# ------------------------------ Helpers ---------------------------------------

def _data_categories(document_type: DocumentType) -> List[str]:
    if document_type in ADDRESS_DOCUMENTS or document_type is DocumentType.BANK_STATEMENT:
        return ["PERSONAL_DATA", "ADDRESS_DATA"]
    return ["PERSONAL_DATA", "IDENTITY_DOCUMENT"]


def _enrich_profile(profile: CustomerRiskProfile, extracted: Dict[str, Any]) -> CustomerRiskProfile:
    """Fill missing nationality / residence from the verified document."""
    updates: Dict[str, Any] = {}
    nationality = extracted.get("nationality")
    if not profile.nationality and isinstance(nationality, str) and nationality.strip():
        updates["nationality"] = nationality.strip().upper()

    residence = extracted.get("residence_country")
    address = extracted.get("address")
    if not residence and isinstance(address, dict):
        residence = address.get("country")
    if not profile.residence_country and isinstance(residence, str) and residence.strip():
        updates["residence_country"] = residence.strip().upper()

    return profile.model_copy(update=updates) if updates else profile


def _risk_indicators(documents: Sequence[KycDocument]) -> List[str]:
    indicators = []
    for d in documents:
        if d.risk_level is not None and d.risk_level.rank >= RiskLevel.HIGH.rank:
            indicators.append(f"{d.document_type.value} assessed {d.risk_level.value}")
    return indicators


# ------------------------------ Orchestrator ----------------------------------

class KycOrchestrator:
    def __init__(
        self,
        *,
        consents: ConsentRegistry,
        router: TaskRouter,
        storage: DocumentStorage,
        extractor: TextExtractor,
        analyzer: DocumentAnalyzer,
        repository: DocumentRepository,
        customers: CustomerDirectory,
        assessor: RiskAssessmentService,
        audit: AuditSink,
        analysis_timeout: float = ANALYSIS_TIMEOUT_SECONDS,
        extraction_timeout: float = EXTRACTION_TIMEOUT_SECONDS,
        routing_timeout: float = ROUTING_TIMEOUT_SECONDS,
        routing_confidence: float = ROUTING_CONFIDENCE,
        executor: Optional[Executor] = None,
    ) -> None:
        self.consents = consents
        self.router = router
        self.storage = storage
        self.extractor = extractor
        self.analyzer = analyzer
        self.repository = repository
        self.customers = customers
        self.assessor = assessor
        self.audit = audit
        self.analysis_timeout = analysis_timeout
        self.extraction_timeout = extraction_timeout
        self.routing_timeout = routing_timeout
        self.routing_confidence = routing_confidence
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="kyc-worker")
        self._locks = KeyedLock()

    # ---------- audit ----------

    def _audit(
        self,
        customer_id: Optional[str],
        action: AuditAction,
        legal_basis: Optional[LegalBasis],
        categories: Sequence[str],
        success: bool,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            self.audit.log_access(customer_id, action, legal_basis, PERFORMED_BY, list(categories), success, details)
        except Exception as exc:  # an audit outage must not fail the request
            LOGGER.error("Audit write failed (%s %s): %s", action.value, success, exc)

    # ---------- steps ----------

    def _has_consent(self, customer_id: str) -> bool:
        try:
            return bool(self.consents.has_valid_consent(customer_id, KYC_PURPOSE))
        except Exception as exc:  # fail closed
            LOGGER.warning("Consent registry unavailable, treating as no consent: %s", exc)
            return False

    def _bounded(self, stage: str, timeout: float, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a collaborator call on the worker pool; give up after `timeout` seconds."""
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise CollaboratorTimeoutError(
                f"{stage} did not finish within {timeout:g}s", {"stage": stage}
            ) from exc

    def _analyze(self, document_type: DocumentType, country: str, text: str,
                 pseudo_ref: str, legal_basis: LegalBasis) -> DocumentAnalysis:
        analysis = self._bounded(
            "Document analysis", self.analysis_timeout,
            self.analyzer.analyze_document, document_type.value, country, text, pseudo_ref, legal_basis.value,
        )
        if not isinstance(analysis, DocumentAnalysis):
            raise DocumentProcessingError("Document analyzer returned no structured analysis")
        return apply_document_rules(document_type, analysis)

    def _park_for_review(self, document: Optional[KycDocument], note: str, risk_pending: bool = False) -> None:
        """
        Move a half-processed document to NEEDS_REVIEW so a human picks it up.
        With `risk_pending`, a VERIFIED document whose risk step did not
        finish is held back as well.
        """
        if document is None:
            return
        status = document.verification_status
        if status is not VerificationStatus.IN_PROGRESS and not (risk_pending and status is VerificationStatus.VERIFIED):
            return
        try:
            append_findings(document, [note])
            if status is VerificationStatus.IN_PROGRESS:
                transition(document, VerificationStatus.NEEDS_REVIEW)
            else:
                document.risk_level = None
                hold_unassessed(document)
            self.repository.save(document)
        except (KycEngineError, sqlite3.Error, OSError) as exc:
            LOGGER.error("Could not park document %s for review: %s", document.id, exc)

    def _assess_and_write_back(self, customer_id: str, pseudo_ref: str, document: KycDocument,
                               legal_basis: LegalBasis, cancel: CancellationToken) -> RiskLevel:
        cancel.raise_if_cancelled("risk assessment")
        profile = self.customers.load_profile(customer_id, pseudo_ref)
        profile = _enrich_profile(profile, document.extracted_data)
        self._audit(customer_id, AuditAction.VIEW, legal_basis, ["FINANCIAL_DATA", "SCREENING_DATA"], True,
                    {"purpose": "RISK_ASSESSMENT"})

        result = self.assessor.assess(profile)
        level = result.combined.risk_level
        findings = risk_findings(profile, result)

        cancel.raise_if_cancelled("risk write-back")
        updated = 0
        for doc in self.repository.find_by_customer(customer_id):
            self.repository.update_risk(doc.id, level, findings)
            updated += 1
        self._audit(customer_id, AuditAction.UPDATE, legal_basis, ["RISK_ASSESSMENT"], True, {
            "risk_level": level.value,
            "total_score": result.combined.total_score,
            "ai_assessment_available": result.combined.ai_assessment_available,
            "documents_updated": updated,
        })
        return level

    # ---------- public API ----------

    def process_submission(
        self,
        customer_id: str,
        document_type: Union[DocumentType, str],
        legal_basis: Union[LegalBasis, str],
        raw_document: bytes,
        filename: Optional[str] = None,
        country: str = "UNKNOWN",
        cancel: Optional[CancellationToken] = None,
    ) -> SubmissionResult:
        cancel = cancel or CancellationToken()
        try:
            document_type = DocumentType(document_type)
            legal_basis = LegalBasis(legal_basis)
        except ValueError as exc:
            LOGGER.error("Rejected malformed submission: %s", exc)
            self._audit(customer_id, AuditAction.PROCESS, None, ["PERSONAL_DATA"], False, {"error": str(exc)})
            return SubmissionResult(status=SubmissionStatus.ERROR, message=f"Invalid submission: {exc}")

        pseudo_ref = hash_identifier(customer_id)
        categories = _data_categories(document_type)
        LOGGER.info("KYC submission for %s: %s", pseudo_ref, document_type.value)

        # (a) consent
        if not self._has_consent(customer_id):
            self._audit(customer_id, AuditAction.ACCESS_DENIED, legal_basis, categories, False,
                        {"reason": "NO_CONSENT", "purpose": KYC_PURPOSE})
            return SubmissionResult(status=SubmissionStatus.REJECTED,
                                    message="No valid consent for KYC processing")

        document: Optional[KycDocument] = None
        try:
            # (b) routing + privacy
            prior = self.repository.find_by_customer(customer_id)
            decision = self._bounded(
                "Routing", self.routing_timeout,
                self.router.route,
                REQUEST_TYPE,
                pseudo_ref,
                f"Verify {document_type.value} document",
                legal_basis.value,
                self.routing_confidence,
                len(prior),
                determine_aggregate_status(prior).value,
                _risk_indicators(prior),
            )
            if not decision.privacy_checks_passed:
                reason = decision.escalation_reason or "Privacy checks failed"
                self._audit(customer_id, AuditAction.ACCESS_DENIED, legal_basis, categories, False,
                            {"reason": "PRIVACY_CHECK_FAILED", "detail": reason})
                return SubmissionResult(status=SubmissionStatus.REJECTED, message=reason)

            with self._locks.hold(customer_id):
                # (c) storage, extraction, analysis
                cancel.raise_if_cancelled("storage")
                storage_path = self.storage.store(customer_id, filename or f"{document_type.value.lower()}.bin",
                                                  raw_document)
                document = KycDocument(
                    customer_id=customer_id,
                    document_type=document_type,
                    storage_path=storage_path,
                    legal_basis=legal_basis,
                    data_retention_until=retention_until(),
                )
                self.repository.save(document)
                self._audit(customer_id, AuditAction.CREATE, legal_basis, categories, True,
                            {"document_id": document.id, "routed_to": decision.selected_agent.value})

                start_processing(document)
                self.repository.save(document)
                text = self._bounded("Text extraction", self.extraction_timeout,
                                     self.extractor.extract_text, raw_document)
                cancel.raise_if_cancelled("document analysis")
                analysis = self._analyze(document_type, country, text, pseudo_ref, legal_basis)
                apply_analysis(document, analysis)
                if decision.escalation_reason:
                    append_findings(document, [f"Escalated for human review: {decision.escalation_reason}"])
                self.repository.save(document)
                self._audit(customer_id, AuditAction.PROCESS, legal_basis, categories, True, {
                    "document_id": document.id,
                    "verification_status": document.verification_status.value,
                    "confidence": analysis.overall_confidence,
                })

                # (d) risk, verified documents only
                risk_level = None
                if document.verification_status is VerificationStatus.VERIFIED:
                    try:
                        risk_level = self._assess_and_write_back(customer_id, pseudo_ref, document, legal_basis, cancel)
                    except Exception as exc:
                        # parked while the customer lock is still held
                        code = getattr(exc, "code", type(exc).__name__)
                        self._park_for_review(document, f"Risk assessment incomplete: {code}", risk_pending=True)
                        raise

            # (e) aggregate
            documents = self.repository.find_by_customer(customer_id)
            stored = next((d for d in documents if d.id == document.id), document)
            aggregate = determine_aggregate_status(documents)
            LOGGER.info("KYC submission for %s done: %s, aggregate %s",
                        pseudo_ref, stored.verification_status.value, aggregate.value)
            return SubmissionResult(
                status=SubmissionStatus.SUCCESS,
                message=f"Document {stored.verification_status.value.lower()}",
                document_id=stored.id,
                verification_status=stored.verification_status,
                aggregate_status=aggregate,
                risk_level=risk_level,
                findings=list(stored.findings),
            )

        except SubmissionCancelledError as exc:
            LOGGER.info("KYC submission for %s cancelled: %s", pseudo_ref, exc.message)
            self._park_for_review(document, "Processing cancelled before completion")
            self._audit(customer_id, AuditAction.PROCESS, legal_basis, categories, False, exc.to_dict())
            return self._failure(SubmissionStatus.CANCELLED, exc.message, document)

        except InvariantViolationError as exc:
            LOGGER.error("Invariant violation for %s: %s", pseudo_ref, exc.message)
            self._audit(customer_id, AuditAction.PROCESS, legal_basis, categories, False, exc.to_dict())
            return self._failure(SubmissionStatus.ERROR, exc.message, document)

        except (DocumentProcessingError, CollaboratorTimeoutError) as exc:
            LOGGER.error("KYC submission for %s failed: %s", pseudo_ref, exc.message)
            self._park_for_review(document, f"Automated processing failed: {exc.code}")
            self._audit(customer_id, AuditAction.PROCESS, legal_basis, categories, False, exc.to_dict())
            return self._failure(SubmissionStatus.FAILED, exc.message, document)

        except Exception as exc:  # collaborator I/O: storage, sqlite, OCR engine, LLM client
            LOGGER.exception("KYC submission for %s failed unexpectedly", pseudo_ref)
            self._park_for_review(document, "Automated processing failed: unexpected error")
            self._audit(customer_id, AuditAction.PROCESS, legal_basis, categories, False,
                        {"error": type(exc).__name__, "message": str(exc)})
            return self._failure(SubmissionStatus.FAILED, f"Processing failed: {exc}", document)

    @staticmethod
    def _failure(status: SubmissionStatus, message: str, document: Optional[KycDocument]) -> SubmissionResult:
        return SubmissionResult(
            status=status,
            message=message,
            document_id=document.id if document else None,
            verification_status=document.verification_status if document else None,
        )

    def get_aggregate_status(self, customer_id: str) -> KycAggregateStatus:
        documents = self.repository.find_by_customer(customer_id)
        self._audit(customer_id, AuditAction.VIEW, None, ["KYC_STATUS"], True, {"documents": len(documents)})
        return determine_aggregate_status(documents)

    def get_kyc_status(self, customer_id: str) -> KycStatus:
        documents = self.repository.find_by_customer(customer_id)
        self._audit(customer_id, AuditAction.VIEW, None, ["KYC_STATUS", "RISK_ASSESSMENT"], True,
                    {"documents": len(documents)})
        return summarize(documents)

    def grant_consent(self, customer_id: str, purpose: str = KYC_PURPOSE,
                      legal_basis: LegalBasis = LegalBasis.CONSENT) -> None:
        self.consents.grant(customer_id, purpose, legal_basis)
        self._audit(customer_id, AuditAction.CONSENT_GIVEN, legal_basis, ["CONSENT"], True, {"purpose": purpose})

    def revoke_consent(self, customer_id: str, purpose: str = KYC_PURPOSE) -> int:
        revoked = self.consents.revoke(customer_id, purpose)
        self._audit(customer_id, AuditAction.CONSENT_REVOKED, None, ["CONSENT"], revoked > 0,
                    {"purpose": purpose, "revoked": revoked})
        return revoked

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.assessor.shutdown()


# ------------------------------ Default wiring --------------------------------

def build_orchestrator(
    db_path: Optional[str] = None,
    storage_dir: Optional[str] = None,
    audit_dir: Optional[str] = None,
    use_llm: Optional[bool] = None,
) -> KycOrchestrator:
    """
    Wire the SQLite/filesystem collaborators. The risk oracle is the crewAI
    assessor when an OpenAI key is configured, otherwise rule-only scoring.
    Routing always goes through the deterministic PolicyRouter.
    """
    from .crew import CrewDocumentAnalyzer, CrewRiskOracle
    from .collaborators import BaselineOnlyOracle
    from .router.supervisor import PolicyRouter
    from .tools.customers import SqliteCustomerDirectory
    from .tools.gdpr import JsonlAuditSink, SqliteConsentRegistry
    from .tools.knowledge import SqliteKnowledgeBase
    from .tools.ocr import OcrTextExtractor
    from .tools.persist import LocalDocumentStorage, SqliteDocumentRepository

    if use_llm is None:
        use_llm = bool(os.getenv("OPENAI_API_KEY"))
    oracle = CrewRiskOracle() if use_llm else BaselineOnlyOracle()
    if not use_llm:
        LOGGER.warning("OPENAI_API_KEY not set; risk assessment runs rule-based only")

    return KycOrchestrator(
        consents=SqliteConsentRegistry(db_path),
        router=PolicyRouter(),
        storage=LocalDocumentStorage(storage_dir),
        extractor=OcrTextExtractor(),
        analyzer=CrewDocumentAnalyzer(),
        repository=SqliteDocumentRepository(db_path),
        customers=SqliteCustomerDirectory(db_path),
        assessor=RiskAssessmentService(oracle, SqliteKnowledgeBase(db_path)),
        audit=JsonlAuditSink(audit_dir, db_path),
    )


__all__ = ["KycOrchestrator", "CancellationToken", "KeyedLock", "build_orchestrator"]
