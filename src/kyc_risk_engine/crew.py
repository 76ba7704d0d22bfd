"""
crewAI side of the engine: the risk assessor, supervisor and document analyst.

Each capability is a one-agent crew with a pydantic output. The adapters at
the bottom expose them through the engine's collaborator interfaces and turn
any malformed or missing output into an engine error, so the orchestrator
can fall back instead of trusting free text.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional, Sequence, Type, TypeVar

from crewai import Agent, Crew, Process, Task
from crewai.project import CrewBase, agent, crew, task
from jsonschema import ValidationError as SchemaError
from jsonschema import validate as json_validate
from pydantic import BaseModel, ValidationError

from .errors import DocumentProcessingError, OracleUnavailableError
from .models import AgentType, DocumentAnalysis, OracleRequest, RiskAssessmentOpinion, RoutingDecision
from .router.router import llmrouter
from .tools.knowledge import regulatory_search

LOGGER = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


# ──────────────── Crews ────────────────

@CrewBase
class RiskAssessmentCrew:
    """AML risk opinion for one pseudonymized customer."""

    agents_config = 'config/agents.yaml'
    tasks_config = 'config/tasks.yaml'

    @agent
    def risk_assessor(self) -> Agent:
        return Agent(
            config=self.agents_config['risk_assessor'],
            tools=[regulatory_search],
            llm=llmrouter(),
            max_iter=2,
            allow_delegation=False,
            verbose=False,
        )

    @task
    def risk_assessment_task(self) -> Task:
        return Task(
            config=self.tasks_config['risk_assessment_task'],
            agent=self.risk_assessor(),
            output_pydantic=RiskAssessmentOpinion,
        )

    @crew
    def crew(self) -> Crew:
        return Crew(
            agents=self.agents,
            tasks=self.tasks,
            process=Process.sequential,
            verbose=False,
        )


@CrewBase
class SupervisorCrew:
    """Routing and GDPR pre-checks."""

    agents_config = 'config/agents.yaml'
    tasks_config = 'config/tasks.yaml'

    @agent
    def supervisor(self) -> Agent:
        return Agent(
            config=self.agents_config['supervisor'],
            tools=[],
            llm=llmrouter(),
            max_iter=1,
            allow_delegation=False,
            verbose=False,
        )

    @task
    def routing_task(self) -> Task:
        return Task(
            config=self.tasks_config['routing_task'],
            agent=self.supervisor(),
            output_pydantic=RoutingDecision,
        )

    @crew
    def crew(self) -> Crew:
        return Crew(agents=self.agents, tasks=self.tasks, process=Process.sequential, verbose=False)


@CrewBase
class DocumentAnalysisCrew:
    """Field extraction and validity checks over OCR text."""

    agents_config = 'config/agents.yaml'
    tasks_config = 'config/tasks.yaml'

    @agent
    def document_analyst(self) -> Agent:
        return Agent(
            config=self.agents_config['document_analyst'],
            tools=[],
            llm=llmrouter(),
            max_iter=1,
            allow_delegation=False,
            verbose=False,
        )

    @task
    def document_analysis_task(self) -> Task:
        return Task(
            config=self.tasks_config['document_analysis_task'],
            agent=self.document_analyst(),
            output_pydantic=DocumentAnalysis,
        )

    @crew
    def crew(self) -> Crew:
        return Crew(agents=self.agents, tasks=self.tasks, process=Process.sequential, verbose=False)


# ──────────────── Output parsing ────────────────

def _strip_fences(raw: str) -> str:
    text = (raw or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    return text.strip()


def parse_crew_output(result: Any, model: Type[M]) -> M:
    """
    Accept the crew's pydantic output, or fall back to its raw JSON text
    validated against the model's JSON schema. Raises ValueError.
    """
    structured = getattr(result, "pydantic", None)
    if isinstance(structured, model):
        return structured

    raw = getattr(result, "raw", None)
    if raw is None and isinstance(result, str):
        raw = result
    if not raw:
        raise ValueError(f"Crew returned no {model.__name__}")

    try:
        payload = json.loads(_strip_fences(raw))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Crew output is not JSON: {exc.msg}") from exc

    try:
        json_validate(instance=payload, schema=model.model_json_schema())
        return model.model_validate(payload)
    except (SchemaError, ValidationError) as exc:
        raise ValueError(f"Crew output does not match {model.__name__}: {str(exc).splitlines()[0]}") from exc


def _template_inputs(values: Dict[str, Any]) -> Dict[str, Any]:
    """crewAI interpolation rejects None; lists become readable text."""
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            out[key] = "N/A"
        elif isinstance(value, (list, tuple)):
            out[key] = "\n".join(str(v) for v in value) if value else "none"
        elif hasattr(value, "value"):  # str Enum
            out[key] = value.value
        else:
            out[key] = value
    return out


CrewFactory = Callable[[], Any]


# ──────────────── Collaborator adapters ────────────────

class CrewRiskOracle:
    def __init__(self, crew_factory: Optional[CrewFactory] = None) -> None:
        self._crew_factory = crew_factory or (lambda: RiskAssessmentCrew().crew())

    def assess_risk(self, request: OracleRequest) -> RiskAssessmentOpinion:
        inputs = _template_inputs(request.model_dump())
        try:
            result = self._crew_factory().kickoff(inputs=inputs)
            return parse_crew_output(result, RiskAssessmentOpinion)
        except ValueError as exc:
            raise OracleUnavailableError(str(exc)) from exc


class CrewTaskRouter:
    def __init__(self, crew_factory: Optional[CrewFactory] = None) -> None:
        self._crew_factory = crew_factory or (lambda: SupervisorCrew().crew())

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
        inputs = _template_inputs({
            "request_type": request_type,
            "customer_ref": pseudonymized_id,
            "task_description": task_description,
            "legal_basis": legal_basis,
            "confidence_threshold": confidence_threshold,
            "prior_submission_count": prior_submission_count,
            "current_status": current_status,
            "risk_indicators": list(risk_indicators),
        })
        try:
            result = self._crew_factory().kickoff(inputs=inputs)
            return parse_crew_output(result, RoutingDecision)
        except ValueError as exc:
            # Fail closed: an unreadable routing answer never passes privacy checks.
            LOGGER.warning("Supervisor output unusable: %s", exc)
            return RoutingDecision(
                selected_agent=AgentType.HUMAN_ESCALATION,
                privacy_checks_passed=False,
                required_agents=[AgentType.HUMAN_ESCALATION],
                escalation_reason=f"Routing output unusable: {exc}",
                reasoning="Supervisor did not return a valid routing decision.",
            )


class CrewDocumentAnalyzer:
    def __init__(self, crew_factory: Optional[CrewFactory] = None) -> None:
        self._crew_factory = crew_factory or (lambda: DocumentAnalysisCrew().crew())

    def analyze_document(
        self,
        doc_type: str,
        country: str,
        extracted_text: str,
        pseudonymized_ref: str,
        legal_basis: str,
    ) -> DocumentAnalysis:
        inputs = _template_inputs({
            "doc_type": doc_type,
            "country": country,
            "extracted_text": extracted_text,
            "customer_ref": pseudonymized_ref,
            "legal_basis": legal_basis,
        })
        try:
            result = self._crew_factory().kickoff(inputs=inputs)
            return parse_crew_output(result, DocumentAnalysis)
        except ValueError as exc:
            raise DocumentProcessingError(f"Document analysis failed: {exc}") from exc


__all__ = [
    "RiskAssessmentCrew",
    "SupervisorCrew",
    "DocumentAnalysisCrew",
    "CrewRiskOracle",
    "CrewTaskRouter",
    "CrewDocumentAnalyzer",
    "parse_crew_output",
]
