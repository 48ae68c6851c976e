"""Tests for the review orchestrator with a fake LLM backend."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from second_opinion.config.settings import ToolCallingConfig
from second_opinion.errors import BackendError, ConfigurationError, ErrorCategory, SecondOpinionError
from second_opinion.schema import ImpactAnalysisRequest, OptimizationRequest, ThinkingValidationRequest
from second_opinion.tools.performance import PerformanceMonitor
from second_opinion.tools.session import SessionStore
from second_opinion.tools.validator import LIMITED_CONTEXT_NOTE, ThinkingValidator, parse_json_reply


IMPACT_REPLY = json.dumps({
    "impacts": {
        "overallRisk": "medium",
        "affectedAreas": [{"area": "auth", "impact": "login flow", "mitigation": "add test"}],
        "cascadingRisks": [],
        "quickTests": ["log in"],
    }
})


@pytest.fixture
def fake_llm():
    llm = AsyncMock()
    llm.invoke.return_value = f"Here you go:\n```json\n{IMPACT_REPLY}\n```"
    return llm


@pytest.fixture
def sessions():
    return SessionStore(storage_dir=None)


@pytest.fixture
def validator(resolver, fake_llm, sessions):
    return ThinkingValidator(resolver, fake_llm, sessions, monitor=PerformanceMonitor())


def _impact_request(project, **extra):
    return ImpactAnalysisRequest.model_validate({
        "projectContext": {"projectRoot": str(project), **extra.pop("project_context", {})},
        "projectBackground": "A small Python service",
        "change": {"description": "Inline b()", "files": ["src/b.py"]},
        **extra,
    })


# =============================================================================
# JSON extraction
# =============================================================================

@pytest.mark.parametrize(
    "text,expected",
    [
        ('{"a": 1}', {"a": 1}),
        ('prefix {"a": {"b": 2}} suffix', {"a": {"b": 2}}),
        ("no json at all", None),
        ("{broken", None),
        ("[1, 2]", None),
        ("", None),
    ],
)
def test_parse_json_reply(text, expected):
    assert parse_json_reply(text) == expected


# =============================================================================
# Pipeline
# =============================================================================

@pytest.mark.asyncio
async def test_impact_analysis_success(validator, fake_llm, sessions, project):
    result = await validator.analyze_impact(_impact_request(project))

    assert result["impacts"]["overallRisk"] == "medium"
    assert result["metadata"]["providerUsed"] == "openai"
    assert result["metadata"]["overrideRequested"] is False
    assert result["metadata"]["fileAnalysisPerformed"] is False

    config = fake_llm.invoke.call_args.args[2]
    assert config.name == "openai"

    session = await sessions.get_session(result["sessionId"])
    assert len(session.validation_history) == 1
    assert session.validation_history[0].confidence == 90
    assert session.context.change_description == "Inline b()"
    assert validator.monitor.summary()["by_operation"]["impact_analysis"]["count"] == 1


@pytest.mark.asyncio
async def test_existing_session_is_reused(validator, sessions, project):
    first = await validator.analyze_impact(_impact_request(project))
    second = await validator.analyze_impact(_impact_request(project, sessionId=first["sessionId"]))

    assert second["sessionId"] == first["sessionId"]
    session = await sessions.get_session(first["sessionId"])
    assert len(session.validation_history) == 2


@pytest.mark.asyncio
async def test_provider_override(validator, fake_llm, project):
    result = await validator.analyze_impact(_impact_request(project, provider="Anthropic"))

    assert result["metadata"]["providerUsed"] == "anthropic"
    assert result["metadata"]["overrideRequested"] is True
    assert result["metadata"]["overrideSuccessful"] is True
    assert fake_llm.invoke.call_args.args[2].name == "anthropic"


@pytest.mark.asyncio
async def test_unconfigured_override_fails_without_calling_the_model(validator, fake_llm, sessions, project):
    with pytest.raises(ConfigurationError) as exc_info:
        await validator.analyze_impact(_impact_request(project, provider="groq"))

    assert exc_info.value.code == "PROVIDER_NOT_CONFIGURED"
    fake_llm.invoke.assert_not_called()
    for sid in await sessions.list_session_ids():
        assert (await sessions.get_session(sid)).validation_history == []


@pytest.mark.asyncio
async def test_timeout_leaves_no_attempt(resolver, sessions, project):
    async def hang(*args):
        await asyncio.sleep(5)

    llm = AsyncMock()
    llm.invoke.side_effect = hang
    config = ToolCallingConfig(operation_timeouts_ms={"impact_analysis": 20})
    validator = ThinkingValidator(resolver, llm, sessions, tool_config=config)

    with pytest.raises(BackendError) as exc_info:
        await validator.analyze_impact(_impact_request(project))

    assert exc_info.value.category is ErrorCategory.TIMEOUT
    for sid in await sessions.list_session_ids():
        assert (await sessions.get_session(sid)).validation_history == []
    assert validator.monitor.summary()["by_operation"]["impact_analysis"]["failures"] == 1


@pytest.mark.asyncio
async def test_backend_failure_propagates(validator, fake_llm, project):
    fake_llm.invoke.side_effect = BackendError("down", ErrorCategory.PROVIDER, provider="openai")
    with pytest.raises(BackendError):
        await validator.analyze_impact(_impact_request(project))


@pytest.mark.asyncio
async def test_unparseable_reply_uses_fallback(resolver, sessions, project):
    llm = AsyncMock()
    llm.invoke.return_value = "I think it looks fine!"
    validator = ThinkingValidator(resolver, llm, sessions)

    request = ThinkingValidationRequest.model_validate({
        "projectContext": {"projectRoot": str(project)},
        "projectBackground": "A small Python service",
        "thinking": "Cache the token",
        "proposedChange": {"description": "Add a cache", "files": ["src/a.py"]},
        "context": {"problem": "slow login", "techStack": "python"},
    })
    result = await validator.validate_thinking(request)

    assert result["validation"]["goAhead"] is False
    assert "I think it looks fine!" in result["validation"]["criticalIssues"][0]["issue"]
    session = await sessions.get_session(result["sessionId"])
    assert session.validation_history[0].confidence == 0


@pytest.mark.asyncio
async def test_confidence_from_success_probability(resolver, sessions, project):
    llm = AsyncMock()
    llm.invoke.return_value = json.dumps({"optimizedStrategy": {"approach": "bisect", "successProbability": 72}})
    validator = ThinkingValidator(resolver, llm, sessions)

    request = OptimizationRequest.model_validate({
        "projectContext": {"projectRoot": str(project)},
        "projectBackground": "bg",
        "problemType": "bug_fix",
        "complexity": "moderate",
        "timeConstraint": "tight",
        "currentApproach": "print debugging",
    })
    result = await validator.optimize_thinking(request)

    session = await sessions.get_session(result["sessionId"])
    assert session.validation_history[0].confidence == 72


@pytest.mark.asyncio
async def test_no_provider_configured(make_resolver, fake_llm, sessions, project):
    validator = ThinkingValidator(make_resolver({"DEFAULT_LLM_PROVIDER": "openai"}), fake_llm, sessions)
    with pytest.raises(ConfigurationError) as exc_info:
        await validator.analyze_impact(_impact_request(project))
    assert exc_info.value.code == "NO_PROVIDERS_CONFIGURED"


@pytest.mark.asyncio
async def test_unexpected_failure_is_categorized_and_recorded(validator, fake_llm, sessions, project):
    fake_llm.invoke.side_effect = RuntimeError("client bug")

    with pytest.raises(SecondOpinionError) as exc_info:
        await validator.analyze_impact(_impact_request(project))

    assert exc_info.value.category is ErrorCategory.UNKNOWN
    assert exc_info.value.provider == "openai"
    assert isinstance(exc_info.value.cause, RuntimeError)
    stats = validator.monitor.summary()["by_operation"]["impact_analysis"]
    assert stats["failures"] == 1
    for sid in await sessions.list_session_ids():
        assert (await sessions.get_session(sid)).validation_history == []


@pytest.mark.asyncio
async def test_request_overrides_reach_the_backend(validator, fake_llm, project):
    await validator.analyze_impact(
        _impact_request(project, model="gpt-4o-mini", temperature=0.2, maxTokens=512)
    )

    config = fake_llm.invoke.call_args.args[2]
    assert config.name == "openai"
    assert config.model == "gpt-4o-mini"
    assert config.temperature == 0.2
    assert config.max_tokens == 512


@pytest.mark.asyncio
async def test_out_of_range_override_is_rejected(validator, fake_llm, project):
    with pytest.raises(ConfigurationError) as exc_info:
        await validator.analyze_impact(_impact_request(project, temperature=3.5))

    assert exc_info.value.code == "INVALID_OVERRIDE"
    fake_llm.invoke.assert_not_called()


# =============================================================================
# File context
# =============================================================================

@pytest.mark.asyncio
async def test_targeted_sections_reach_the_prompt(validator, fake_llm, project):
    request = _impact_request(project, project_context={"analysisTargets": [
        {"file": "src/c.py", "priority": "supplementary"},
        {"file": "src/b.py", "priority": "critical", "startLine": 2, "endLine": 2},
    ]})

    result = await validator.analyze_impact(request)

    prompt = fake_llm.invoke.call_args.args[1]
    assert "## Targeted Code Analysis" in prompt
    assert prompt.index("src/b.py [CRITICAL]") < prompt.index("src/c.py [SUPPLEMENTARY]")
    assert "    return 1" in prompt
    assert result["metadata"]["fileAnalysisPerformed"] is True
    assert result["metadata"]["filesAnalyzed"] == 2
    assert result["metadata"]["toolsUsed"] == ["read_files"]


@pytest.mark.asyncio
async def test_listed_files_fall_back_to_heads_and_structure(validator, fake_llm, project):
    request = _impact_request(project, project_context={"filesToAnalyze": ["src/a.py", "src/gone.py"]})

    result = await validator.analyze_impact(request)

    prompt = fake_llm.invoke.call_args.args[1]
    assert "### src/a.py (first 100 lines)" in prompt
    assert "### src/gone.py\nFailed to read:" in prompt
    assert "## Project Structure" in prompt
    assert result["metadata"]["filesAnalyzed"] == 1
    assert result["metadata"]["toolsUsed"] == ["read_files", "list_files"]


@pytest.mark.asyncio
async def test_analysis_failure_degrades_to_note(validator, monkeypatch, project):
    async def broken(*args, **kwargs):
        raise OSError("disk gone")

    monkeypatch.setattr(validator.tools, "read_many_files", broken)
    request = _impact_request(project, project_context={"filesToAnalyze": ["src/a.py"]})

    analysis = await validator.analyze_project(request.project_context)

    assert analysis.content == LIMITED_CONTEXT_NOTE
    assert analysis.performed is False
