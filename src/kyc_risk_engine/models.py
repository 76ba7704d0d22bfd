from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────── Enumerations ────────────────

class CountryRisk(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FatfStatus(str, Enum):
    NONE = "NONE"
    GREYLISTED = "GREYLISTED"
    BLACKLISTED = "BLACKLISTED"


class RiskLevel(str, Enum):
    """Six-tier engine risk taxonomy, declared lowest to highest."""

    LOW = "LOW"
    MEDIUM_LOW = "MEDIUM_LOW"
    MEDIUM = "MEDIUM"
    MEDIUM_HIGH = "MEDIUM_HIGH"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


class OracleRiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class DueDiligenceLevel(str, Enum):
    SIMPLIFIED = "SIMPLIFIED"
    STANDARD = "STANDARD"
    ENHANCED = "ENHANCED"


class MonitoringFrequency(str, Enum):
    ANNUAL = "ANNUAL"
    MONTHLY = "MONTHLY"
    CONTINUOUS = "CONTINUOUS"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class FactorCategory(str, Enum):
    GEOGRAPHIC = "GEOGRAPHIC"
    CUSTOMER = "CUSTOMER"
    TRANSACTION = "TRANSACTION"
    BUSINESS = "BUSINESS"


class ProductRiskTier(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class DocumentType(str, Enum):
    ID_CARD = "ID_CARD"
    PASSPORT = "PASSPORT"
    DRIVERS_LICENSE = "DRIVERS_LICENSE"
    PROOF_OF_ADDRESS = "PROOF_OF_ADDRESS"
    UTILITY_BILL = "UTILITY_BILL"
    BANK_STATEMENT = "BANK_STATEMENT"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    EXPIRED = "EXPIRED"


class LegalBasis(str, Enum):
    CONSENT = "CONSENT"
    LEGAL_OBLIGATION = "LEGAL_OBLIGATION"
    CONTRACT = "CONTRACT"
    LEGITIMATE_INTEREST = "LEGITIMATE_INTEREST"
    VITAL_INTEREST = "VITAL_INTEREST"
    PUBLIC_TASK = "PUBLIC_TASK"


class AuditAction(str, Enum):
    VIEW = "VIEW"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    PROCESS = "PROCESS"
    CONSENT_GIVEN = "CONSENT_GIVEN"
    CONSENT_REVOKED = "CONSENT_REVOKED"
    ACCESS_DENIED = "ACCESS_DENIED"


class AgentType(str, Enum):
    DOCUMENT = "DOCUMENT"
    RISK = "RISK"
    CHATBOT = "CHATBOT"
    HUMAN_ESCALATION = "HUMAN_ESCALATION"


class KycAggregateStatus(str, Enum):
    INCOMPLETE = "INCOMPLETE"
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    REJECTED = "REJECTED"
    APPROVED = "APPROVED"
    APPROVED_WITH_RESTRICTIONS = "APPROVED_WITH_RESTRICTIONS"


class SubmissionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


# ──────────────── Customer risk profile ────────────────

class TransactionMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_volume: float = 0.0
    transaction_count: int = 0
    crypto_transaction_count: int = 0
    cash_transaction_count: int = 0
    has_crypto_activity: bool = False
    has_cash_activity: bool = False
    has_structuring_pattern: bool = False
    has_rapid_movement: bool = False

    @classmethod
    def empty(cls) -> "TransactionMetrics":
        return cls()

    @property
    def cash_percentage(self) -> float:
        if self.transaction_count <= 0:
            return 0.0
        return self.cash_transaction_count / self.transaction_count


class PepScreening(BaseModel):
    is_pep: bool = False
    pep_level: Optional[str] = None
    position: Optional[str] = None
    organization: Optional[str] = None


class SanctionsScreening(BaseModel):
    has_match: bool = False
    list_name: Optional[str] = None
    match_score: float = 0.0


class AdverseMediaHit(BaseModel):
    headline: str
    category: Optional[str] = None
    severity: Optional[str] = None
    date: Optional[datetime] = None


class EnrolledProduct(BaseModel):
    name: str
    product_type: Optional[str] = None
    base_risk_level: ProductRiskTier = ProductRiskTier.LOW
    risk_score: Optional[int] = None  # explicit override of the tier score


class CustomerRiskProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: str  # pseudonymized
    nationality: Optional[str] = None
    residence_country: Optional[str] = None
    occupation: Optional[str] = None
    industry_sector: Optional[str] = None
    income_range: Optional[str] = None
    source_of_wealth: Optional[str] = None
    entity_type: Optional[str] = None
    net_worth: Optional[float] = None
    account_age_months: Optional[int] = None
    expected_monthly_volume: Optional[float] = None
    pep: Optional[PepScreening] = None
    sanctions: Optional[SanctionsScreening] = None
    adverse_media: List[AdverseMediaHit] = Field(default_factory=list)
    products: List[EnrolledProduct] = Field(default_factory=list)
    tx_metrics: TransactionMetrics = Field(default_factory=TransactionMetrics.empty)

    @property
    def is_pep(self) -> bool:
        return bool(self.pep and self.pep.is_pep)

    @property
    def has_sanctions_match(self) -> bool:
        return bool(self.sanctions and self.sanctions.has_match)


# ──────────────── Scores & oracle opinion ────────────────

class BaselineRiskScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_score: int = Field(ge=0, le=30)
    geographic_score: int = Field(ge=0, le=25)
    product_score: int = Field(ge=0, le=20)
    transaction_score: int = Field(ge=0, le=25)
    total_score: int = Field(ge=0, le=100)


class RiskFactor(BaseModel):
    category: FactorCategory
    factor: str
    severity: Severity
    weight: float = Field(default=0.0, ge=0.0, le=1.0)


class ComplianceRequirements(BaseModel):
    edd_required: bool = False
    source_of_wealth_verification: bool = False
    senior_approval_required: bool = False
    sar_consideration: bool = False


class RiskAssessmentOpinion(BaseModel):
    """Structured output of the risk oracle. Advisory only."""

    risk_level: OracleRiskLevel
    risk_score: int = Field(default=0, ge=0, le=100)
    risk_factors: List[RiskFactor] = Field(default_factory=list)
    mitigating_factors: List[str] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)
    compliance_requirements: ComplianceRequirements = Field(default_factory=ComplianceRequirements)
    human_review_required: bool = False
    human_review_reason: Optional[str] = None
    decision_rationale: Optional[str] = None


class OracleRequest(BaseModel):
    """Everything the oracle is shown about a customer."""

    customer_ref: str
    nationality: str = "UNKNOWN"
    residence_country: str = "UNKNOWN"
    occupation: str = "NOT_SPECIFIED"
    industry_sector: str = "NOT_SPECIFIED"
    income_range: str = "NOT_SPECIFIED"
    source_of_wealth: str = "NOT_SPECIFIED"
    pep_status: bool = False
    pep_level: Optional[str] = None
    adverse_media_count: int = 0
    sanctions_match: bool = False
    previous_sar: bool = False
    nationality_risk: CountryRisk = CountryRisk.LOW
    residence_risk: CountryRisk = CountryRisk.LOW
    fatf_status: FatfStatus = FatfStatus.NONE
    business_type: Optional[str] = None
    complex_ownership: bool = False
    cash_intensive: bool = False
    account_age_months: int = 0
    avg_monthly_volume: str = "0.00"
    unusual_patterns: List[str] = Field(default_factory=list)


class CombinedRiskScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    due_diligence_level: DueDiligenceLevel
    monitoring_frequency: MonitoringFrequency
    adjustment: int = 0
    adjustment_reasons: List[str] = Field(default_factory=list)
    oracle_risk_level: Optional[OracleRiskLevel] = None
    baseline_score: int = Field(ge=0, le=100)
    ai_assessment_available: bool = True


class AssessmentResult(BaseModel):
    combined: CombinedRiskScore
    baseline: BaselineRiskScore
    opinion: Optional[RiskAssessmentOpinion] = None
    recommendations: List[str] = Field(default_factory=list)
    regulatory_context: str = ""
    assessed_at: datetime = Field(default_factory=_utc_now)


# ──────────────── Documents ────────────────

NOT_SCORED: float = -1.0


class KycDocument(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    customer_id: str
    document_type: DocumentType
    verification_status: VerificationStatus = VerificationStatus.PENDING
    confidence_score: float = NOT_SCORED
    risk_level: Optional[RiskLevel] = None
    findings: List[str] = Field(default_factory=list)
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    storage_path: Optional[str] = None
    legal_basis: Optional[LegalBasis] = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    data_retention_until: Optional[datetime] = None


class DocumentAnalysis(BaseModel):
    extracted_fields: Dict[str, Any] = Field(default_factory=dict)
    field_confidence: Dict[str, float] = Field(default_factory=dict)
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    valid_document: bool = False
    not_expired: bool = False
    suspicious_patterns: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ──────────────── Routing & results ────────────────

class RoutingDecision(BaseModel):
    selected_agent: AgentType
    privacy_checks_passed: bool
    required_agents: List[AgentType] = Field(default_factory=list)
    escalation_reason: Optional[str] = None
    reasoning: str = ""


class KycStatus(BaseModel):
    document_status: str
    risk_level: str
    confidence_score: float
    overall_status: KycAggregateStatus
    findings: List[str] = Field(default_factory=list)


class SubmissionResult(BaseModel):
    status: SubmissionStatus
    message: str
    document_id: Optional[str] = None
    verification_status: Optional[VerificationStatus] = None
    aggregate_status: Optional[KycAggregateStatus] = None
    risk_level: Optional[RiskLevel] = None
    findings: List[str] = Field(default_factory=list)
