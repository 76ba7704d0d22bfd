import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

import kyc_risk_engine.router.router as router_mod
from kyc_risk_engine.crew import (
    CrewDocumentAnalyzer,
    CrewRiskOracle,
    CrewTaskRouter,
    parse_crew_output,
)
from kyc_risk_engine.errors import DocumentProcessingError, OracleUnavailableError
from kyc_risk_engine.models import (
    AgentType,
    DocumentAnalysis,
    OracleRequest,
    OracleRiskLevel,
    RiskAssessmentOpinion,
)

OPINION_JSON = {
    "risk_level": "HIGH",
    "risk_score": 72,
    "risk_factors": [{"category": "CUSTOMER", "factor": "Foreign PEP", "severity": "HIGH", "weight": 0.4}],
    "mitigating_factors": ["Salaried income"],
    "recommended_actions": ["Verify source of wealth"],
    "compliance_requirements": {"edd_required": True},
    "decision_rationale": "PEP exposure outweighs mitigations.",
}


def _crew_returning(result):
    """Crew factory whose kickoff returns `result`; the mock records inputs."""
    crew = MagicMock()
    crew.kickoff.return_value = result
    return crew, (lambda: crew)


# -------- output parsing --------

def test_structured_output_is_used_as_is():
    opinion = RiskAssessmentOpinion.model_validate(OPINION_JSON)
    result = SimpleNamespace(pydantic=opinion, raw="ignored")
    assert parse_crew_output(result, RiskAssessmentOpinion) is opinion


def test_raw_json_in_code_fence_is_validated():
    raw = "```json\n" + json.dumps(OPINION_JSON) + "\n```"
    parsed = parse_crew_output(SimpleNamespace(pydantic=None, raw=raw), RiskAssessmentOpinion)
    assert parsed.risk_level is OracleRiskLevel.HIGH
    assert parsed.compliance_requirements.edd_required is True


@pytest.mark.parametrize("raw", [
    "",
    "The customer looks risky to me.",
    json.dumps({"risk_level": "EXTREME"}),
    json.dumps(dict(OPINION_JSON, risk_score=250)),
])
def test_unusable_output_raises_value_error(raw):
    with pytest.raises(ValueError):
        parse_crew_output(SimpleNamespace(pydantic=None, raw=raw), RiskAssessmentOpinion)


# -------- adapters --------

def test_oracle_passes_template_safe_inputs():
    crew, factory = _crew_returning(SimpleNamespace(pydantic=None, raw=json.dumps(OPINION_JSON)))
    request = OracleRequest(customer_ref="ref", unusual_patterns=["Structuring detected."])

    opinion = CrewRiskOracle(factory).assess_risk(request)

    assert opinion.risk_score == 72
    inputs = crew.kickoff.call_args.kwargs["inputs"]
    assert None not in inputs.values()
    assert inputs["pep_level"] == "N/A"
    assert inputs["nationality_risk"] == "LOW"
    assert inputs["unusual_patterns"] == "Structuring detected."


def test_oracle_garbage_is_unavailable():
    _, factory = _crew_returning(SimpleNamespace(pydantic=None, raw="no idea"))
    with pytest.raises(OracleUnavailableError):
        CrewRiskOracle(factory).assess_risk(OracleRequest(customer_ref="ref"))


def test_router_fails_closed_on_garbage():
    _, factory = _crew_returning(SimpleNamespace(pydantic=None, raw="route it to whoever"))
    decision = CrewTaskRouter(factory).route("DOCUMENT_ANALYSIS", "ref", "Verify", "CONSENT", 0.7, 0, "INCOMPLETE", [])
    assert decision.privacy_checks_passed is False
    assert decision.selected_agent is AgentType.HUMAN_ESCALATION


def test_router_returns_agent_decision():
    raw = json.dumps({"selected_agent": "DOCUMENT", "privacy_checks_passed": True,
                      "required_agents": ["DOCUMENT", "RISK"], "reasoning": "standard flow"})
    crew, factory = _crew_returning(SimpleNamespace(pydantic=None, raw=raw))
    decision = CrewTaskRouter(factory).route("DOCUMENT_ANALYSIS", "ref", "Verify", "CONSENT", 0.7, 2,
                                             "PENDING", [])
    assert decision.selected_agent is AgentType.DOCUMENT
    assert crew.kickoff.call_args.kwargs["inputs"]["risk_indicators"] == "none"


def test_document_analyzer():
    analysis = DocumentAnalysis(extracted_fields={"full_name": "Jane Doe"}, overall_confidence=0.9,
                                valid_document=True, not_expired=True)
    crew, factory = _crew_returning(SimpleNamespace(pydantic=analysis, raw=""))
    out = CrewDocumentAnalyzer(factory).analyze_document("PASSPORT", "FR", "JANE DOE", "ref", "CONSENT")
    assert out is analysis
    assert crew.kickoff.call_args.kwargs["inputs"]["doc_type"] == "PASSPORT"


def test_document_analyzer_garbage_is_processing_error():
    _, factory = _crew_returning(SimpleNamespace(pydantic=None, raw="{not json"))
    with pytest.raises(DocumentProcessingError):
        CrewDocumentAnalyzer(factory).analyze_document("PASSPORT", "FR", "text", "ref", "CONSENT")


# -------- llm router --------

def test_llmrouter_without_ping_uses_requested_model(monkeypatch):
    llm = MagicMock()
    monkeypatch.setattr(router_mod, "LLM", llm)
    router_mod.llmrouter("gpt-4o-mini", ping=False)
    llm.assert_called_once_with(model="gpt-4o-mini", temperature=0.05)


def test_llmrouter_falls_back_when_ping_fails(monkeypatch):
    llm = MagicMock()
    monkeypatch.setattr(router_mod, "LLM", llm)
    with patch.object(router_mod, "_ping_openai", side_effect=RuntimeError("quota")):
        router_mod.llmrouter("gpt-4o-mini", ping=True)
    assert llm.call_args.kwargs["model"] == router_mod.FALLBACK_MODEL
