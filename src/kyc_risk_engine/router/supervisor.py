"""
Deterministic supervisor: routes a KYC request and runs the privacy checks.

Routing rules
- DOCUMENT_ANALYSIS -> DOCUMENT (then RISK)
- RISK_ASSESSMENT   -> RISK
- CUSTOMER_INQUIRY  -> CHATBOT
- anything else, a failed privacy check, a customer already UNDER_REVIEW,
  or open risk indicators -> HUMAN_ESCALATION

Privacy checks pass only for a recognised GDPR legal basis and a customer
reference that is already pseudonymized.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from ..models import AgentType, KycAggregateStatus, LegalBasis, RoutingDecision
from ..tools.gdpr import looks_pseudonymized

LOGGER = logging.getLogger(__name__)

REQUEST_ROUTES: Dict[str, List[AgentType]] = {
    "DOCUMENT_ANALYSIS": [AgentType.DOCUMENT, AgentType.RISK],
    "RISK_ASSESSMENT": [AgentType.RISK],
    "CUSTOMER_INQUIRY": [AgentType.CHATBOT],
}


def _privacy_problems(pseudonymized_id: str, legal_basis: str) -> List[str]:
    problems = []
    if legal_basis not in LegalBasis.__members__:
        problems.append(f"unrecognised legal basis '{legal_basis}'")
    if not looks_pseudonymized(pseudonymized_id):
        problems.append("customer reference is not pseudonymized")
    return problems


class PolicyRouter:
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
    ) -> RoutingDecision:
        required = list(REQUEST_ROUTES.get((request_type or "").upper(), []))

        problems = _privacy_problems(pseudonymized_id, legal_basis)
        if problems:
            reason = "GDPR_ESCALATION: " + "; ".join(problems)
            LOGGER.info("Routing %s to human escalation: %s", request_type, reason)
            return RoutingDecision(
                selected_agent=AgentType.HUMAN_ESCALATION,
                privacy_checks_passed=False,
                required_agents=[AgentType.HUMAN_ESCALATION],
                escalation_reason=reason,
                reasoning="Privacy checks failed; processing requires a human operator.",
            )

        if not required:
            return RoutingDecision(
                selected_agent=AgentType.HUMAN_ESCALATION,
                privacy_checks_passed=True,
                required_agents=[AgentType.HUMAN_ESCALATION],
                escalation_reason=f"COMPLEX_CASE: unknown request type '{request_type}'",
                reasoning="No automated agent handles this request type.",
            )

        escalation = None
        if current_status == KycAggregateStatus.UNDER_REVIEW.value:
            escalation = "Customer already has documents under manual review"
        elif risk_indicators:
            escalation = "Open risk indicators: " + ", ".join(risk_indicators)

        if escalation:
            return RoutingDecision(
                selected_agent=AgentType.HUMAN_ESCALATION,
                privacy_checks_passed=True,
                required_agents=required + [AgentType.HUMAN_ESCALATION],
                escalation_reason=escalation,
                reasoning=f"{request_type} runs automatically; result needs human sign-off.",
            )

        return RoutingDecision(
            selected_agent=required[0],
            privacy_checks_passed=True,
            required_agents=required,
            reasoning=(
                f"{request_type} routed to {required[0].value} "
                f"({prior_submission_count} prior submission(s), threshold {confidence_threshold:.2f})."
            ),
        )


__all__ = ["PolicyRouter", "REQUEST_ROUTES"]
