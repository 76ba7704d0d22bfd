import json
from pathlib import Path

import pytest

from kyc_risk_engine.assessment import RiskAssessmentService
from kyc_risk_engine.collaborators import BaselineOnlyOracle, NullContextRetriever
from kyc_risk_engine.models import DocumentAnalysis
from kyc_risk_engine.orchestrator import KycOrchestrator
from kyc_risk_engine.router.supervisor import PolicyRouter
from kyc_risk_engine.tools.customers import SqliteCustomerDirectory
from kyc_risk_engine.tools.gdpr import JsonlAuditSink, SqliteConsentRegistry
from kyc_risk_engine.tools.persist import LocalDocumentStorage, SqliteDocumentRepository


PASSPORT_FIELDS = {
    "full_name": "Jane Doe",
    "date_of_birth": "1990-04-12",
    "document_number": "X1234567",
    "nationality": "FRA",
    "expiry_date": "2099-01-01",
}

UTILITY_BILL_FIELDS = {
    "full_name": "Jane Doe",
    "address": "12 Rue de Rivoli, 75001 Paris",
    "statement_date": "2025-01-31",
}


class FakeExtractor:
    def __init__(self, text="JANE DOE PASSPORT"):
        self.text = text
        self.calls = 0

    def extract_text(self, data):
        self.calls += 1
        return self.text


class FakeAnalyzer:
    """Returns a canned analysis (or raises); records every call."""

    def __init__(self, analysis=None, error=None):
        self.analysis = analysis
        self.error = error
        self.calls = []

    def analyze_document(self, doc_type, country, extracted_text, pseudonymized_ref, legal_basis):
        self.calls.append({
            "doc_type": doc_type,
            "country": country,
            "customer_ref": pseudonymized_ref,
            "legal_basis": legal_basis,
        })
        if self.error is not None:
            raise self.error
        return self.analysis


def make_analysis(fields=None, confidence=0.95, valid=True, not_expired=True, suspicious=None, warnings=None):
    return DocumentAnalysis(
        extracted_fields=dict(PASSPORT_FIELDS if fields is None else fields),
        overall_confidence=confidence,
        valid_document=valid,
        not_expired=not_expired,
        suspicious_patterns=list(suspicious or []),
        warnings=list(warnings or []),
    )


def read_jsonl(path: Path) -> list:
    lines = path.read_text(encoding="utf-8").strip().split("\n")
    return [json.loads(line) for line in lines if line.strip()]


@pytest.fixture
def kyc_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Point every env-configured path at tmp_path."""
    paths = {
        "db": tmp_path / "db" / "kyc_local.db",
        "storage": tmp_path / "documents",
        "audit": tmp_path / "runlogs" / "audit.jsonl",
    }
    monkeypatch.setenv("KYC_DB_PATH", str(paths["db"]))
    monkeypatch.setenv("KYC_STORAGE_DIR", str(paths["storage"]))
    monkeypatch.setenv("KYC_AUDIT_FILE", str(paths["audit"]))
    monkeypatch.delenv("KYC_PSEUDONYM_SALT", raising=False)
    return paths


@pytest.fixture
def analysis_factory():
    return make_analysis


@pytest.fixture
def build_engine(kyc_env):
    """
    Orchestrator over real SQLite / filesystem collaborators in tmp_path,
    with fake OCR and document analysis and a rule-only oracle by default.
    """
    engines = []

    def _build(analyzer=None, oracle=None, retriever=None, router=None, audit=None,
               extractor=None, oracle_timeout=5.0, **kwargs):
        db = kyc_env["db"]
        engine = KycOrchestrator(
            consents=SqliteConsentRegistry(db),
            router=router or PolicyRouter(),
            storage=LocalDocumentStorage(kyc_env["storage"]),
            extractor=extractor or FakeExtractor(),
            analyzer=analyzer or FakeAnalyzer(make_analysis()),
            repository=SqliteDocumentRepository(db),
            customers=SqliteCustomerDirectory(db),
            assessor=RiskAssessmentService(
                oracle or BaselineOnlyOracle(),
                retriever or NullContextRetriever(),
                oracle_timeout=oracle_timeout,
            ),
            audit=audit or JsonlAuditSink(db_path=db),
            **kwargs,
        )
        engines.append(engine)
        return engine

    yield _build
    for engine in engines:
        engine.shutdown()


@pytest.fixture
def fake_analyzer():
    return FakeAnalyzer


@pytest.fixture
def jsonl_reader():
    return read_jsonl


@pytest.fixture
def utility_bill_fields():
    return dict(UTILITY_BILL_FIELDS)
