"""
Prompt templates for the five review operations.

Each system prompt ends with the exact JSON shape the reply must use;
the orchestrator extracts the first {...} block from the reply.
"""

import json

from .schema import (
    AssumptionCheckRequest,
    DependencyMapRequest,
    ImpactAnalysisRequest,
    OptimizationRequest,
    ThinkingValidationRequest,
)

_PREAMBLE = """You are a senior engineer giving a second opinion to a coding agent.
Be specific and concrete. Point at files and lines when the context shows them.
If the context is insufficient, say so instead of guessing.
Respond with JSON only, no prose outside the JSON object."""

THINKING_VALIDATION_SYSTEM = _PREAMBLE + """

Task: review the agent's reasoning and proposed change before it is implemented.
Look for logical gaps, missed edge cases, risky shortcuts and simpler alternatives.

Response format:
{
  "validation": {
    "confidence": <0-100>,
    "goAhead": <true|false>,
    "criticalIssues": [{"issue": "...", "suggestion": "...", "priority": "high|medium|low"}],
    "recommendations": ["..."],
    "testCases": ["..."]
  }
}"""

IMPACT_ANALYSIS_SYSTEM = _PREAMBLE + """

Task: predict what a proposed change affects, including indirect, cascading effects.

Response format:
{
  "impacts": {
    "overallRisk": "low|medium|high",
    "affectedAreas": [{"area": "...", "impact": "...", "mitigation": "..."}],
    "cascadingRisks": [{"risk": "...", "probability": "low|medium|high", "action": "..."}],
    "quickTests": ["..."]
  }
}"""

ASSUMPTION_CHECKER_SYSTEM = _PREAMBLE + """

Task: sort the stated assumptions into those that hold and those that are risky,
and give a fast way to verify each risky one.

Response format:
{
  "validation": {
    "validAssumptions": ["..."],
    "riskyAssumptions": [{"assumption": "...", "risk": "...", "mitigation": "..."}],
    "quickVerifications": ["..."]
  }
}"""

DEPENDENCY_MAPPER_SYSTEM = _PREAMBLE + """

Task: identify what the change depends on and what depends on it.
Critical dependencies break if mishandled; secondary ones degrade.

Response format:
{
  "dependencies": {
    "critical": [{"dependency": "...", "impact": "...", "action": "..."}],
    "secondary": [{"dependency": "...", "impact": "...", "action": "..."}],
    "testFocus": ["..."]
  }
}"""

THINKING_OPTIMIZER_SYSTEM = _PREAMBLE + """

Task: recommend the most effective strategy for the task given its type,
complexity and time budget. Time allocation values are percentages summing to 100.

Response format:
{
  "optimizedStrategy": {
    "approach": "...",
    "toolsToUse": ["..."],
    "timeAllocation": {"thinking": <pct>, "implementation": <pct>, "testing": <pct>},
    "successProbability": <0-100>,
    "keyFocus": "..."
  },
  "tacticalPlan": {
    "steps": ["..."],
    "checkpoints": ["..."]
  }
}"""


def _context_block(background: str, file_context: str) -> str:
    parts = [f"## Project Background\n{background}"]
    if file_context:
        parts.append(file_context)
    return "\n\n".join(parts)


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {i}" for i in items) if items else "- (none given)"


def thinking_validation_prompt(req: ThinkingValidationRequest, file_context: str) -> str:
    change = req.proposed_change
    code = f"\n```\n{change.code}\n```" if change.code else ""
    return f"""{_context_block(req.project_background, file_context)}

## Problem
{req.context.problem}

## Tech Stack
{req.context.tech_stack}

## Constraints
{_bullets(req.context.constraints)}

## Agent's Thinking
{req.thinking}

## Proposed Change
{change.description}{code}
Files: {', '.join(change.files) or '(not specified)'}

Urgency: {req.urgency}"""


def impact_analysis_prompt(req: ImpactAnalysisRequest, file_context: str) -> str:
    change = req.change
    code = f"\n```\n{change.code}\n```" if change.code else ""
    return f"""{_context_block(req.project_background, file_context)}

## Change
{change.description}{code}
Files: {', '.join(change.files) or '(not specified)'}

## System Context
Architecture: {req.system_context.architecture or '(not specified)'}
Key dependencies:
{_bullets(req.system_context.key_dependencies)}"""


def assumption_checker_prompt(req: AssumptionCheckRequest, file_context: str) -> str:
    return f"""{_context_block(req.project_background, file_context)}

## Component
{req.context.component} ({req.context.environment})

## Assumptions
{_bullets(req.assumptions)}"""


def dependency_mapper_prompt(req: DependencyMapRequest, file_context: str) -> str:
    return f"""{_context_block(req.project_background, file_context)}

## Change
{req.change.description}

Files:
{_bullets(req.change.files)}

Components:
{_bullets(req.change.components)}"""


def thinking_optimizer_prompt(req: OptimizationRequest, file_context: str) -> str:
    task = {
        "problemType": req.problem_type,
        "complexity": req.complexity,
        "timeConstraint": req.time_constraint,
    }
    return f"""{_context_block(req.project_background, file_context)}

## Task Profile
{json.dumps(task, indent=2)}

## Current Approach
{req.current_approach}"""
