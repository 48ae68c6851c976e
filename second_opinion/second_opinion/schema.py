"""
Second Opinion Schema

Request models for the five review operations and the response
envelope every tool returns. Requests accept the camelCase keys MCP
clients send (projectContext, proposedChange, ...) as well as
snake_case.
"""

import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Shared request parts
# =============================================================================

class ProjectContext(CamelModel):
    project_root: str = Field(min_length=1)
    working_directory: Optional[str] = None
    # kept raw so one malformed target cannot reject the whole request
    analysis_targets: list[dict[str, Any]] = Field(default_factory=list)
    files_to_analyze: list[str] = Field(default_factory=list)


class OperationRequest(CamelModel):
    session_id: Optional[str] = None
    provider: Optional[str] = None
    # per-request overrides on top of the resolved provider configuration
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    project_context: ProjectContext
    project_background: str = Field(min_length=1)


class ProposedChange(CamelModel):
    description: str = Field(min_length=1)
    code: Optional[str] = None
    files: list[str] = Field(default_factory=list)


# =============================================================================
# Operation requests
# =============================================================================

class ThinkingContext(CamelModel):
    problem: str = Field(min_length=1)
    tech_stack: str = Field(min_length=1)
    constraints: list[str] = Field(default_factory=list)


class ThinkingValidationRequest(OperationRequest):
    thinking: str = Field(min_length=1)
    proposed_change: ProposedChange
    context: ThinkingContext
    urgency: Literal["low", "medium", "high"] = "medium"


class SystemContext(CamelModel):
    architecture: Optional[str] = None
    key_dependencies: list[str] = Field(default_factory=list)


class ImpactAnalysisRequest(OperationRequest):
    change: ProposedChange
    system_context: SystemContext = Field(default_factory=SystemContext)


class AssumptionContext(CamelModel):
    component: str = Field(min_length=1)
    environment: Literal["production", "development", "staging", "testing"] = "development"


class AssumptionCheckRequest(OperationRequest):
    assumptions: list[str] = Field(min_length=1)
    context: AssumptionContext


class ChangeScope(CamelModel):
    description: str = Field(min_length=1)
    files: list[str] = Field(default_factory=list)
    components: list[str] = Field(default_factory=list)


class DependencyMapRequest(OperationRequest):
    change: ChangeScope


class OptimizationRequest(OperationRequest):
    problem_type: Literal["bug_fix", "feature_impl", "refactor"]
    complexity: Literal["simple", "moderate", "complex"]
    time_constraint: Literal["tight", "moderate", "flexible"]
    current_approach: str = Field(min_length=1)


# =============================================================================
# Response envelope
# =============================================================================

class WorkLog(BaseModel):
    """What happened while fulfilling the request."""
    what_i_tried: list[str] = Field(default_factory=list)
    what_worked: list[str] = Field(default_factory=list)
    what_failed: list[str] = Field(default_factory=list)
    files_examined: int = 0
    time_taken_ms: int = 0


class ToolResponse(BaseModel):
    """
    The structured response every tool returns.

    `data` carries the machine-readable payload and is rendered as a
    JSON block, so calling agents can parse it while humans read the
    rest.
    """
    status: str = "success"  # success, partial, failed, needs_clarification
    work_log: WorkLog = Field(default_factory=WorkLog)
    confidence: str = "medium"  # high, medium, low
    reasoning: str = ""
    data: Optional[Any] = None
    questions: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def to_formatted_string(self) -> str:
        lines = [f"**{self.status}** | confidence: {self.confidence}"]
        if self.reasoning:
            lines.append(self.reasoning)
        lines.append("")

        for w in self.warnings:
            lines.append(f"⚠️ {w}")
        if self.warnings:
            lines.append("")

        if self.data is not None:
            if isinstance(self.data, str):
                lines.append(self.data)
            else:
                lines.append("```json")
                lines.append(json.dumps(self.data, indent=2, default=str))
                lines.append("```")
            lines.append("")

        for s in self.suggestions:
            lines.append(f"💡 {s}")
        if self.suggestions:
            lines.append("")

        if self.questions:
            lines.append("**Questions:**")
            for q in self.questions:
                lines.append(f"- {q}")
            lines.append("")

        if self.work_log.what_failed:
            lines.append(f"❌ Failed: {', '.join(self.work_log.what_failed)}")

        return "\n".join(lines).rstrip() + "\n"
