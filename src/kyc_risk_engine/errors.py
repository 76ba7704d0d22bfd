"""
Error types raised inside the engine.

Policy rejections (missing consent, failed privacy check) are NOT errors;
they come back as a REJECTED SubmissionResult. Everything below is either
recovered locally (oracle failures) or converted into a FAILED / ERROR
result by the orchestrator.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class KycEngineError(Exception):
    """Base error with a stable code for results and audit details."""

    code: str = "KYC_INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class OracleUnavailableError(KycEngineError):
    code = "KYC_ORACLE_UNAVAILABLE"


class CollaboratorTimeoutError(KycEngineError):
    code = "KYC_COLLABORATOR_TIMEOUT"


class DocumentProcessingError(KycEngineError):
    code = "KYC_DOCUMENT_PROCESSING_FAILED"


class InvariantViolationError(KycEngineError):
    code = "KYC_INVARIANT_VIOLATION"


class SubmissionCancelledError(KycEngineError):
    code = "KYC_SUBMISSION_CANCELLED"
