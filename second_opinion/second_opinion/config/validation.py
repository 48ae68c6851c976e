"""
Configuration validation

Declarative rule sets checked against resolved provider configurations
and the global provider-selection settings. Validation never raises:
it always returns a ValidationResult so startup can print every problem
in one go.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..errors import ConfigurationError, ErrorCategory
from .providers import REASONING_EFFORTS, SUPPORTED_PROVIDERS, VERBOSITY_LEVELS, get_spec, is_reasoning_model
from .resolution import ConfigResolver, ProviderConfiguration, parse_provider_list

logger = logging.getLogger(__name__)


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str
    category: ErrorCategory = ErrorCategory.VALIDATION
    provider: Optional[str] = None


class ValidationWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str
    provider: Optional[str] = None


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool = True
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()

    @classmethod
    def build(cls, errors: list[ValidationIssue], warnings: list[ValidationWarning]) -> "ValidationResult":
        return cls(is_valid=not errors, errors=tuple(errors), warnings=tuple(warnings))

    @classmethod
    def merge(cls, *results: "ValidationResult") -> "ValidationResult":
        """Concatenate in argument order. Valid only if every part is."""
        return cls(
            is_valid=all(r.is_valid for r in results),
            errors=tuple(e for r in results for e in r.errors),
            warnings=tuple(w for r in results for w in r.warnings),
        )


# =============================================================================
# Rules
# =============================================================================

Number = (int, float)


@dataclass(frozen=True)
class Rule:
    field: str
    required: bool
    types: Union[type, tuple[type, ...]]
    type_name: str
    check: Callable[[Any], bool]
    message: str


def _non_empty(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


BASE_RULES: tuple[Rule, ...] = (
    Rule("api_key", True, str, "string", _non_empty, "API key must be a non-empty string"),
    Rule("model", True, str, "string", _non_empty, "Model must be a non-empty string"),
    Rule("temperature", True, Number, "number", lambda v: 0 <= v <= 2,
         "Temperature must be a number between 0 and 2"),
    Rule("max_tokens", True, int, "integer", lambda v: 0 < v <= 200_000,
         "Max tokens must be a positive integer up to 200000"),
    Rule("timeout_ms", True, int, "integer", lambda v: 0 < v <= 300_000,
         "Timeout must be a positive integer up to 300000 milliseconds"),
)

REASONING_RULES: tuple[Rule, ...] = (
    Rule("max_completion_tokens", False, int, "integer", lambda v: 0 < v <= 100_000,
         "Max completion tokens must be a positive integer up to 100000"),
    Rule("verbosity", False, str, "string", lambda v: v in VERBOSITY_LEVELS,
         f"Verbosity must be one of: {', '.join(VERBOSITY_LEVELS)}"),
    Rule("reasoning_effort", False, str, "string", lambda v: v in REASONING_EFFORTS,
         f"Reasoning effort must be one of: {', '.join(REASONING_EFFORTS)}"),
)


def rules_for(provider: str) -> tuple[Rule, ...]:
    spec = get_spec(provider)
    if spec is not None and spec.supports_reasoning:
        return BASE_RULES + REASONING_RULES
    return BASE_RULES


def _type_ok(value: Any, rule: Rule) -> bool:
    # bool is an int subclass but never a valid number here
    return isinstance(value, rule.types) and not isinstance(value, bool)


def apply_rules(
    provider: str,
    values: dict[str, Any],
    rules: tuple[Rule, ...],
) -> ValidationResult:
    errors: list[ValidationIssue] = []
    for rule in rules:
        value = values.get(rule.field)
        if value is None:
            if rule.required:
                errors.append(ValidationIssue(
                    field=rule.field,
                    message=f"{rule.field} is required",
                    category=ErrorCategory.CONFIGURATION,
                    provider=provider,
                ))
            continue
        if not _type_ok(value, rule):
            errors.append(ValidationIssue(
                field=rule.field,
                message=f"{rule.field} must be of type {rule.type_name}",
                provider=provider,
            ))
            continue
        if not rule.check(value):
            errors.append(ValidationIssue(field=rule.field, message=rule.message, provider=provider))
    return ValidationResult.build(errors, [])


# =============================================================================
# Validator
# =============================================================================

PRIORITY_VAR = "PROVIDER_SELECTION_PRIORITY"
DEFAULT_VAR = "DEFAULT_LLM_PROVIDER"


class ConfigurationValidator:
    """Runs rule sets against what a ConfigResolver resolves."""

    def __init__(self, resolver: ConfigResolver):
        self.resolver = resolver

    def validate_provider(
        self, name: str, config: Union[ProviderConfiguration, dict[str, Any]]
    ) -> ValidationResult:
        values = config.model_dump() if isinstance(config, ProviderConfiguration) else dict(config)
        return apply_rules(name, values, rules_for(name))

    def validate_global(self) -> ValidationResult:
        errors: list[ValidationIssue] = []
        supported = ", ".join(SUPPORTED_PROVIDERS)

        raw_priority = (self.resolver.read(PRIORITY_VAR) or "").strip()
        priority = parse_provider_list(raw_priority)
        priority_ok = False
        if not priority:
            errors.append(ValidationIssue(
                field=PRIORITY_VAR,
                message=f"{PRIORITY_VAR} is required (comma-separated list of: {supported})",
                category=ErrorCategory.CONFIGURATION,
            ))
        else:
            unknown = [p for p in priority if get_spec(p) is None]
            if unknown:
                errors.append(ValidationIssue(
                    field=PRIORITY_VAR,
                    message=f"{PRIORITY_VAR} contains unknown providers: {', '.join(unknown)}. Supported: {supported}",
                ))
            else:
                priority_ok = True

        default = (self.resolver.read(DEFAULT_VAR) or "").strip().lower()
        default_ok = False
        if not default:
            errors.append(ValidationIssue(
                field=DEFAULT_VAR,
                message=f"{DEFAULT_VAR} is required (one of: {supported})",
                category=ErrorCategory.CONFIGURATION,
            ))
        elif get_spec(default) is None:
            errors.append(ValidationIssue(
                field=DEFAULT_VAR,
                message=f"{DEFAULT_VAR} '{default}' is not a supported provider. Supported: {supported}",
            ))
        else:
            default_ok = True

        if priority_ok and default_ok and default not in priority:
            errors.append(ValidationIssue(
                field=DEFAULT_VAR,
                message=f"{DEFAULT_VAR} must be included in {PRIORITY_VAR}",
                category=ErrorCategory.CONFIGURATION,
            ))

        return ValidationResult.build(errors, [])

    def validate_all_providers(self) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []
        configured = 0

        for name in SUPPORTED_PROVIDERS:
            spec = get_spec(name)
            raw_key = self.resolver.get_api_key(name)
            if raw_key and not self.resolver.validate_api_key(raw_key):
                warnings.append(ValidationWarning(
                    field=spec.api_key_var,
                    message=f"{spec.api_key_var} looks like a placeholder and is ignored",
                    provider=name,
                ))
                continue
            if not raw_key:
                continue
            try:
                config = self.resolver.resolve_provider(name)
            except ConfigurationError as e:
                errors.append(ValidationIssue(
                    field=e.env_var or name,
                    message=f"Failed to validate provider {name}: {e.message}",
                    category=ErrorCategory.CONFIGURATION,
                    provider=name,
                ))
                continue
            configured += 1
            result = self.validate_provider(name, config)
            errors.extend(result.errors)
            warnings.extend(result.warnings)

        if configured == 0:
            errors.append(ValidationIssue(
                field="providers",
                message="No providers are configured. At least one provider with API key is required.",
                category=ErrorCategory.CONFIGURATION,
            ))

        return ValidationResult.build(errors, warnings)

    def validate_advisories(self) -> ValidationResult:
        """Warnings that never block startup."""
        warnings: list[ValidationWarning] = []

        if self.resolver.is_provider_configured("openai"):
            model = None
            try:
                model = self.resolver.get_model("openai")
            except ConfigurationError:
                pass
            has_reasoning = any((
                self.resolver.get_max_completion_tokens("openai"),
                self.resolver.get_verbosity("openai"),
                self.resolver.get_reasoning_effort("openai"),
            ))
            if is_reasoning_model(model) and not has_reasoning:
                warnings.append(ValidationWarning(
                    field="OPENAI_REASONING_EFFORT",
                    message=f"{model} supports reasoning parameters; consider setting "
                            "OPENAI_MAX_COMPLETION_TOKENS, OPENAI_VERBOSITY and OPENAI_REASONING_EFFORT",
                    provider="openai",
                ))
            elif model and not is_reasoning_model(model) and has_reasoning:
                warnings.append(ValidationWarning(
                    field="OPENAI_MODEL",
                    message=f"Reasoning parameters are set but {model} is not a gpt-5 model; they will be ignored",
                    provider="openai",
                ))

        if self.resolver.read("GOOGLE_AI_API_KEY") and not self.resolver.read("GOOGLE_API_KEY"):
            warnings.append(ValidationWarning(
                field="GOOGLE_AI_API_KEY",
                message="GOOGLE_AI_API_KEY is deprecated; rename it to GOOGLE_API_KEY",
                provider="google",
            ))

        return ValidationResult.build([], warnings)

    def validate_system(self, include_advisories: bool = True) -> ValidationResult:
        """Global checks first, then providers in registry order."""
        parts = [self.validate_global(), self.validate_all_providers()]
        if include_advisories:
            parts.append(self.validate_advisories())
        return ValidationResult.merge(*parts)


def format_validation_results(result: ValidationResult) -> str:
    """Markdown report listing every error and warning."""
    lines = []
    if result.is_valid:
        lines.append("✅ **Configuration Validation: PASSED**")
    else:
        lines.append("❌ **Configuration Validation: FAILED**")

    if result.errors:
        lines.append("")
        lines.append(f"**Errors ({len(result.errors)}):**")
        for i, e in enumerate(result.errors, 1):
            where = f"[{e.provider}] " if e.provider else ""
            lines.append(f"{i}. {where}{e.field}: {e.message} ({e.category.value})")

    if result.warnings:
        lines.append("")
        lines.append(f"**Warnings ({len(result.warnings)}):**")
        for i, w in enumerate(result.warnings, 1):
            where = f"[{w.provider}] " if w.provider else ""
            lines.append(f"{i}. {where}{w.field}: {w.message}")

    return "\n".join(lines)
