"""
Thinking Validator - fulfills the five review operations

Every operation runs the same pipeline:
1. Get or create the session
2. Gather file context (targeted sections, or heads of listed files)
3. Build the prompt
4. Pick the provider (explicit override must be configured)
5. Call the model, bounded by the operation timeout
6. Extract the JSON reply, falling back to a safe default shape
7. Attach metadata and record the attempt in the session

The session is only written once a complete reply (parsed or fallen
back) exists, so a timeout or backend failure leaves no trace there.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .. import prompts
from ..config.providers import get_spec
from ..config.resolution import ConfigResolver
from ..config.settings import ToolCallingConfig
from ..errors import BackendError, ConfigurationError, ErrorCategory, SecondOpinionError, as_categorized
from ..llm import LLMClient
from ..schema import (
    AssumptionCheckRequest,
    DependencyMapRequest,
    ImpactAnalysisRequest,
    OperationRequest,
    OptimizationRequest,
    ProjectContext,
    ThinkingValidationRequest,
)
from .context import assemble_targeted_context, resolve_target_path
from .performance import PerformanceMonitor
from .read_files import FileReadRequest
from .session import SessionStore, ValidationAttempt
from .tool_service import ToolCallingService

logger = logging.getLogger(__name__)

LIMITED_CONTEXT_NOTE = "Project file analysis failed, proceeding with limited context."
FALLBACK_HEAD_LINES = 100
STRUCTURE_LISTING = 20

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def parse_json_reply(text: str) -> Optional[dict]:
    """First '{' to last '}' of the reply, if that parses to an object."""
    match = _JSON_BLOCK.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _number(value: Any, default: float = 0) -> float:
    return float(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else default


# =============================================================================
# Operation table
# =============================================================================

@dataclass(frozen=True)
class Operation:
    tool: str
    system_prompt: str
    build_prompt: Callable[[Any, str], str]
    fallback: Callable[[str], dict]
    confidence: Callable[[dict], float]
    session_context: Callable[[Any], dict]


def _unparsed(text: str) -> str:
    return f"Could not parse the model reply as JSON. Raw reply starts: {text[:200]!r}"


OPERATIONS: dict[str, Operation] = {
    "thinking_validation": Operation(
        tool="thinking_validation",
        system_prompt=prompts.THINKING_VALIDATION_SYSTEM,
        build_prompt=prompts.thinking_validation_prompt,
        fallback=lambda text: {"validation": {
            "confidence": 0,
            "goAhead": False,
            "criticalIssues": [{"issue": _unparsed(text), "suggestion": "Retry or switch provider", "priority": "high"}],
            "recommendations": [],
            "testCases": [],
        }},
        confidence=lambda r: _number((r.get("validation") or {}).get("confidence")),
        session_context=lambda req: {
            "problem": req.context.problem,
            "tech_stack": req.context.tech_stack,
            "constraints": req.context.constraints,
            "files": req.proposed_change.files,
        },
    ),
    "impact_analysis": Operation(
        tool="impact_analysis",
        system_prompt=prompts.IMPACT_ANALYSIS_SYSTEM,
        build_prompt=prompts.impact_analysis_prompt,
        fallback=lambda text: {"impacts": {
            "overallRisk": "high",
            "affectedAreas": [{"area": "unknown", "impact": _unparsed(text), "mitigation": "Review the change manually"}],
            "cascadingRisks": [],
            "quickTests": [],
        }},
        confidence=lambda r: 90,
        session_context=lambda req: {
            "change_description": req.change.description,
            "files": req.change.files,
            "architecture": req.system_context.architecture,
            "key_dependencies": req.system_context.key_dependencies,
        },
    ),
    "assumption_checker": Operation(
        tool="assumption_checker",
        system_prompt=prompts.ASSUMPTION_CHECKER_SYSTEM,
        build_prompt=prompts.assumption_checker_prompt,
        fallback=lambda text: {"validation": {
            "validAssumptions": [],
            "riskyAssumptions": [{"assumption": "all", "risk": _unparsed(text), "mitigation": "Verify each assumption manually"}],
            "quickVerifications": [],
        }},
        confidence=lambda r: 85,
        session_context=lambda req: {
            "component": req.context.component,
            "environment": req.context.environment,
        },
    ),
    "dependency_mapper": Operation(
        tool="dependency_mapper",
        system_prompt=prompts.DEPENDENCY_MAPPER_SYSTEM,
        build_prompt=prompts.dependency_mapper_prompt,
        fallback=lambda text: {"dependencies": {
            "critical": [],
            "secondary": [],
            "testFocus": [_unparsed(text)],
        }},
        confidence=lambda r: 80,
        session_context=lambda req: {
            "change_description": req.change.description,
            "files": req.change.files,
        },
    ),
    "thinking_optimizer": Operation(
        tool="thinking_optimizer",
        system_prompt=prompts.THINKING_OPTIMIZER_SYSTEM,
        build_prompt=prompts.thinking_optimizer_prompt,
        fallback=lambda text: {"optimizedStrategy": {
            "approach": _unparsed(text),
            "toolsToUse": [],
            "timeAllocation": {"thinking": 30, "implementation": 50, "testing": 20},
            "successProbability": 0,
            "keyFocus": "",
        }},
        confidence=lambda r: _number((r.get("optimizedStrategy") or {}).get("successProbability")),
        session_context=lambda req: {
            "problem_type": req.problem_type,
            "complexity": req.complexity,
            "time_constraint": req.time_constraint,
            "current_approach": req.current_approach,
        },
    ),
}


@dataclass
class ProjectAnalysis:
    content: str = ""
    performed: bool = False
    files_analyzed: int = 0
    tools_used: list[str] = field(default_factory=list)


# =============================================================================
# Orchestrator
# =============================================================================

class ThinkingValidator:
    """
    Runs review operations against the configured providers.

    All collaborators are injected so tests can swap the backend for a
    fake and keep sessions in memory.
    """

    def __init__(
        self,
        resolver: ConfigResolver,
        llm: LLMClient,
        sessions: SessionStore,
        tool_service: Optional[ToolCallingService] = None,
        tool_config: Optional[ToolCallingConfig] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        self.resolver = resolver
        self.llm = llm
        self.sessions = sessions
        self.tool_config = tool_config or (tool_service.config if tool_service else ToolCallingConfig())
        self.tools = tool_service or ToolCallingService(self.tool_config)
        self.monitor = monitor or PerformanceMonitor()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def validate_thinking(self, request: ThinkingValidationRequest) -> dict:
        return await self._run(OPERATIONS["thinking_validation"], request)

    async def analyze_impact(self, request: ImpactAnalysisRequest) -> dict:
        return await self._run(OPERATIONS["impact_analysis"], request)

    async def check_assumptions(self, request: AssumptionCheckRequest) -> dict:
        return await self._run(OPERATIONS["assumption_checker"], request)

    async def map_dependencies(self, request: DependencyMapRequest) -> dict:
        return await self._run(OPERATIONS["dependency_mapper"], request)

    async def optimize_thinking(self, request: OptimizationRequest) -> dict:
        return await self._run(OPERATIONS["thinking_optimizer"], request)

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def choose_provider(self, override: Optional[str]) -> tuple[str, bool]:
        """Return (provider, override_requested). Raises ConfigurationError."""
        if override:
            name = override.strip().lower()
            if get_spec(name) is None or not self.resolver.is_provider_configured(name):
                spec = get_spec(name)
                raise ConfigurationError(
                    f"Requested provider '{override}' is not configured",
                    code="PROVIDER_NOT_CONFIGURED",
                    provider=name,
                    env_var=spec.api_key_var if spec else None,
                )
            return name, True

        best = self.resolver.get_best_available_provider()
        if best is None:
            raise ConfigurationError(
                "No LLM provider is configured",
                code="NO_PROVIDERS_CONFIGURED",
                env_var="DEFAULT_LLM_PROVIDER and a matching *_API_KEY",
            )
        return best, False

    async def _run(self, op: Operation, request: OperationRequest) -> dict:
        start = time.time()
        provider: Optional[str] = None
        try:
            session = await self.sessions.get_or_create(request.session_id, op.session_context(request))
            analysis = await self.analyze_project(request.project_context)
            user_prompt = op.build_prompt(request, analysis.content)

            provider, override_requested = self.choose_provider(request.provider)
            if request.model or request.temperature is not None or request.max_tokens is not None:
                config = self.resolver.get_provider_config_with_overrides(
                    provider, temperature=request.temperature, max_tokens=request.max_tokens, model=request.model
                )
            else:
                config = await self.resolver.get_provider_config(provider)

            timeout = self.tool_config.operation_timeout(op.tool)
            try:
                text = await asyncio.wait_for(self.llm.invoke(op.system_prompt, user_prompt, config), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise BackendError(
                    f"{op.tool} exceeded its {timeout:.0f}s limit", ErrorCategory.TIMEOUT, provider=provider, cause=e
                ) from e

            parsed = parse_json_reply(text)
            if parsed is None:
                logger.warning("%s: %s reply was not JSON, using fallback", op.tool, provider)
                parsed = op.fallback(text)

            result = {
                **parsed,
                "sessionId": session.id,
                "metadata": {
                    "providerUsed": provider,
                    "overrideRequested": override_requested,
                    "overrideSuccessful": override_requested,
                    "fileAnalysisPerformed": analysis.performed,
                    "filesAnalyzed": analysis.files_analyzed,
                    "toolsUsed": analysis.tools_used,
                },
            }
            await self.sessions.append_attempt(session.id, ValidationAttempt(
                tool=op.tool,
                request=request.model_dump(mode="json", by_alias=True, exclude_none=True),
                response=result,
                confidence=op.confidence(parsed),
            ))
        except SecondOpinionError as e:
            self.monitor.record(op.tool, provider, int((time.time() - start) * 1000), False, e.category.value)
            raise
        except Exception as e:
            error = as_categorized(e, provider)
            logger.exception("%s failed unexpectedly", op.tool)
            self.monitor.record(op.tool, provider, int((time.time() - start) * 1000), False, error.category.value)
            raise error from e

        self.monitor.record(op.tool, provider, int((time.time() - start) * 1000), True)
        return result

    async def analyze_project(self, project: ProjectContext) -> ProjectAnalysis:
        """
        Gather file context for the prompt.

        Targeted sections win when given. Otherwise the first lines of
        each listed file plus a short project listing. Any failure here
        degrades to a note instead of failing the operation.
        """
        try:
            if project.analysis_targets:
                assembled = await assemble_targeted_context(
                    project.analysis_targets,
                    project.project_root,
                    project.working_directory,
                    batch_reader=self.tools.read_many_files,
                )
                return ProjectAnalysis(
                    content=assembled.content,
                    performed=True,
                    files_analyzed=assembled.files_analyzed,
                    tools_used=["read_files"],
                )
            if project.files_to_analyze:
                return await self._analyze_listed_files(project)
        except (OSError, ValueError) as e:
            logger.warning("Project analysis failed for %s: %s", project.project_root, e)
            return ProjectAnalysis(content=LIMITED_CONTEXT_NOTE)
        return ProjectAnalysis()

    async def _analyze_listed_files(self, project: ProjectContext) -> ProjectAnalysis:
        requests = [
            FileReadRequest(
                path=str(resolve_target_path(f, project.project_root, project.working_directory)),
                mode="head",
                lines=FALLBACK_HEAD_LINES,
            )
            for f in project.files_to_analyze
        ]
        outcome = await self.tools.read_many_files(requests)
        sections = ["## File Analysis"]
        read = 0
        for name, result in zip(project.files_to_analyze, outcome.results):
            if result.success:
                read += 1
                sections.append(f"### {name} (first {FALLBACK_HEAD_LINES} lines)\n```\n{result.content}\n```")
            else:
                sections.append(f"### {name}\nFailed to read: {result.error}")

        tools_used = ["read_files"]
        listing = await self.tools.list_files(project.project_root, recursive=True, limit=STRUCTURE_LISTING)
        if listing.get("success"):
            tools_used.append("list_files")
            sections.append("## Project Structure\n" + "\n".join(f"- {f}" for f in listing["files"]))

        return ProjectAnalysis(
            content="\n\n".join(sections),
            performed=True,
            files_analyzed=read,
            tools_used=tools_used,
        )
