"""
Provider configuration resolution

Every provider setting is looked up through an ordered list of env vars
and the first value that parses and validates wins:

    model        {P}_MODEL -> {P}_MODEL_DEFAULT
    temperature  {P}_TEMPERATURE -> LLM_TEMPERATURE -> LLM_TEMPERATURE_DEFAULT
    max_tokens   {P}_MAX_TOKENS -> LLM_MAX_TOKENS -> LLM_MAX_TOKENS_DEFAULT
    timeout_ms   {P}_TIMEOUT -> LLM_TIMEOUT -> LLM_TIMEOUT_DEFAULT

Required settings fail fast with a ConfigurationError naming the vars.
There are no silent defaults baked into code.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ConfigurationError
from .cache import EnvironmentCache
from .env import LayeredEnvironment
from .providers import (
    PROVIDERS,
    REASONING_EFFORTS,
    SUPPORTED_PROVIDERS,
    VERBOSITY_LEVELS,
    PlaceholderPolicy,
    ProviderSpec,
    get_spec,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


# =============================================================================
# Result type and the first-valid-wins combinator
# =============================================================================

@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    source: Optional[str] = None


@dataclass(frozen=True)
class Err:
    error: ConfigurationError


Result = Union[Ok[T], Err]


def unwrap(result: Result) -> T:
    if isinstance(result, Err):
        raise result.error
    return result.value


def first_valid(
    candidates: Sequence[str],
    lookup: Callable[[str], Optional[str]],
    parse: Callable[[str], Optional[T]],
) -> Optional[Ok[T]]:
    """
    Walk candidate env vars in order and return the first that parses.

    Empty and whitespace-only values count as unset. A value that fails
    to parse is skipped and the next candidate is tried.
    """
    for var in candidates:
        raw = lookup(var)
        if raw is None or not raw.strip():
            continue
        value = parse(raw.strip())
        if value is not None:
            return Ok(value, source=var)
        logger.debug("Ignoring invalid value in %s", var)
    return None


# Parsers: return None when the raw value is not acceptable

def parse_text(raw: str) -> Optional[str]:
    return raw or None


def parse_float_between(low: float, high: float) -> Callable[[str], Optional[float]]:
    def _parse(raw: str) -> Optional[float]:
        try:
            value = float(raw)
        except ValueError:
            return None
        if not math.isfinite(value) or not (low <= value <= high):
            return None
        return value
    return _parse


def parse_positive_int(raw: str) -> Optional[int]:
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    value = math.floor(value)
    return int(value) if value > 0 else None


def parse_choice(options: Sequence[str]) -> Callable[[str], Optional[str]]:
    def _parse(raw: str) -> Optional[str]:
        value = raw.lower()
        return value if value in options else None
    return _parse


# =============================================================================
# Typed configuration
# =============================================================================

class ProviderConfiguration(BaseModel):
    """Resolved settings for one provider. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    name: str
    protocol: str = "openai"
    api_key: Optional[str] = Field(default=None, repr=False)
    has_api_key: bool = False
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    timeout_ms: Optional[int] = None
    base_url: Optional[str] = None

    # Advanced reasoning parameters, only for providers that support them
    max_completion_tokens: Optional[int] = None
    verbosity: Optional[str] = None
    reasoning_effort: Optional[str] = None

    def public_dict(self) -> dict:
        """Everything except the key itself."""
        return self.model_dump(exclude={"api_key"})


@dataclass(frozen=True)
class FieldChain:
    """Candidate env vars plus the parser that validates them."""
    candidates: Callable[[ProviderSpec], list[str]]
    parse: Callable[[str], Optional[object]]
    code: str
    description: str


FIELD_CHAINS: dict[str, FieldChain] = {
    "model": FieldChain(
        lambda s: [f"{s.prefix}_MODEL", f"{s.prefix}_MODEL_DEFAULT"],
        parse_text,
        "MODEL_NOT_SET",
        "model",
    ),
    "temperature": FieldChain(
        lambda s: [f"{s.prefix}_TEMPERATURE", "LLM_TEMPERATURE", "LLM_TEMPERATURE_DEFAULT"],
        parse_float_between(0.0, 2.0),
        "TEMPERATURE_NOT_SET",
        "temperature (a number between 0 and 2)",
    ),
    "max_tokens": FieldChain(
        lambda s: [f"{s.prefix}_MAX_TOKENS", "LLM_MAX_TOKENS", "LLM_MAX_TOKENS_DEFAULT"],
        parse_positive_int,
        "MAX_TOKENS_NOT_SET",
        "max tokens (a positive integer)",
    ),
    "timeout_ms": FieldChain(
        lambda s: [f"{s.prefix}_TIMEOUT", "LLM_TIMEOUT", "LLM_TIMEOUT_DEFAULT"],
        parse_positive_int,
        "TIMEOUT_NOT_SET",
        "timeout in milliseconds (a positive integer)",
    ),
}

EXTENDED_CHAINS: dict[str, FieldChain] = {
    "max_completion_tokens": FieldChain(
        lambda s: [f"{s.prefix}_MAX_COMPLETION_TOKENS", f"{s.prefix}_MAX_COMPLETION_TOKENS_DEFAULT"],
        parse_positive_int,
        "MAX_COMPLETION_TOKENS_NOT_SET",
        "max completion tokens",
    ),
    "verbosity": FieldChain(
        lambda s: [f"{s.prefix}_VERBOSITY", f"{s.prefix}_VERBOSITY_DEFAULT"],
        parse_choice(VERBOSITY_LEVELS),
        "VERBOSITY_NOT_SET",
        "verbosity",
    ),
    "reasoning_effort": FieldChain(
        lambda s: [f"{s.prefix}_REASONING_EFFORT", f"{s.prefix}_REASONING_EFFORT_DEFAULT"],
        parse_choice(REASONING_EFFORTS),
        "REASONING_EFFORT_NOT_SET",
        "reasoning effort",
    ),
}


def parse_provider_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [p.strip().lower() for p in raw.split(",") if p.strip()]


def is_truthy(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Resolver
# =============================================================================

class ConfigResolver:
    """
    Resolves provider configuration from a layered environment.

    Raw env lookups and built configurations share one injected cache, so
    a test (or a config reload) can reset everything through cache.reset().
    """

    def __init__(
        self,
        env: LayeredEnvironment,
        cache: Optional[EnvironmentCache] = None,
        placeholder_policy: Optional[PlaceholderPolicy] = None,
    ):
        self.env = env
        self.cache = cache if cache is not None else EnvironmentCache()
        self._policy = placeholder_policy

    # -------------------------------------------------------------------------
    # Raw access
    # -------------------------------------------------------------------------

    def read(self, key: str) -> Optional[str]:
        """Cached env lookup."""
        cache_key = f"env:{key}"
        value = self.cache.get(cache_key, default=_MISSING)
        if value is _MISSING:
            value = self.env.get(key)
            self.cache.set(cache_key, value)
        return value

    def invalidate(self):
        """Forget every cached env value and provider configuration."""
        self.cache.invalidate("env:*")
        self.cache.invalidate("provider:*")

    @property
    def test_mode(self) -> bool:
        return (
            is_truthy(self.read("TEST_MODE"))
            or (self.read("NODE_ENV") or "").lower() == "test"
            or (self.read("APP_ENV") or "").lower() == "test"
        )

    @property
    def placeholder_policy(self) -> PlaceholderPolicy:
        if self._policy is not None:
            return self._policy
        extra = [p.strip() for p in (self.read("API_KEY_PLACEHOLDER_PATTERNS") or "").split(",") if p.strip()]
        return PlaceholderPolicy(extra_patterns=extra, test_mode=self.test_mode)

    def _spec(self, name: str) -> ProviderSpec:
        spec = get_spec(name)
        if spec is None:
            raise ConfigurationError(
                f"Unknown provider '{name}'. Supported: {', '.join(SUPPORTED_PROVIDERS)}",
                code="UNKNOWN_PROVIDER",
                provider=name,
            )
        return spec

    # -------------------------------------------------------------------------
    # Field resolution
    # -------------------------------------------------------------------------

    def resolve_field(self, name: str, field: str) -> Result:
        """Resolve one required field to Ok or Err without raising."""
        spec = self._spec(name)
        chain = FIELD_CHAINS[field]
        candidates = chain.candidates(spec)
        found = first_valid(candidates, self.read, chain.parse)
        if found is not None:
            if found.source != candidates[0]:
                logger.debug("%s %s resolved from %s", name, field, found.source)
            return found
        env_var = " or ".join(candidates)
        return Err(
            ConfigurationError(
                f"{name} {chain.description} is not configured. Set {env_var}.",
                code=chain.code,
                provider=name,
                env_var=env_var,
            )
        )

    def resolve_extended(self, name: str, field: str) -> Optional[object]:
        """Optional reasoning parameters. Anything invalid reads as disabled."""
        spec = self._spec(name)
        if not spec.supports_reasoning:
            return None
        chain = EXTENDED_CHAINS[field]
        found = first_valid(chain.candidates(spec), self.read, chain.parse)
        return found.value if found is not None else None

    def get_api_key(self, name: str) -> Optional[str]:
        raw = self.read(self._spec(name).api_key_var)
        if raw is None:
            return None
        return raw.strip() or None

    def validate_api_key(self, key: Optional[str]) -> bool:
        return self.placeholder_policy.is_valid_key(key)

    def is_provider_configured(self, name: str) -> bool:
        if get_spec(name) is None:
            return False
        return self.validate_api_key(self.get_api_key(name))

    def get_model(self, name: str) -> str:
        return unwrap(self.resolve_field(name, "model"))

    def get_temperature(self, name: str) -> float:
        return unwrap(self.resolve_field(name, "temperature"))

    def get_max_tokens(self, name: str) -> int:
        return unwrap(self.resolve_field(name, "max_tokens"))

    def get_timeout(self, name: str) -> int:
        """Timeout in milliseconds."""
        return unwrap(self.resolve_field(name, "timeout_ms"))

    def get_base_url(self, name: str) -> Optional[str]:
        spec = self._spec(name)
        raw = self.read(f"{spec.prefix}_BASE_URL")
        return raw.strip() if raw and raw.strip() else None

    def get_max_completion_tokens(self, name: str = "openai") -> Optional[int]:
        return self.resolve_extended(name, "max_completion_tokens")

    def get_verbosity(self, name: str = "openai") -> Optional[str]:
        return self.resolve_extended(name, "verbosity")

    def get_reasoning_effort(self, name: str = "openai") -> Optional[str]:
        return self.resolve_extended(name, "reasoning_effort")

    # -------------------------------------------------------------------------
    # Provider configuration
    # -------------------------------------------------------------------------

    def build_provider(self, name: str) -> ProviderConfiguration:
        """
        Build a configuration from scratch, bypassing the cache.

        A provider without a usable key comes back unconfigured rather
        than raising. With a key, every required field must resolve.
        """
        spec = self._spec(name)
        key = self.get_api_key(spec.name)
        if not self.validate_api_key(key):
            return ProviderConfiguration(name=spec.name, protocol=spec.protocol, has_api_key=False)

        results = {field: self.resolve_field(spec.name, field) for field in FIELD_CHAINS}
        for result in results.values():
            if isinstance(result, Err):
                raise result.error

        return ProviderConfiguration(
            name=spec.name,
            protocol=spec.protocol,
            api_key=key,
            has_api_key=True,
            base_url=self.get_base_url(spec.name) or spec.base_url,
            max_completion_tokens=self.resolve_extended(spec.name, "max_completion_tokens"),
            verbosity=self.resolve_extended(spec.name, "verbosity"),
            reasoning_effort=self.resolve_extended(spec.name, "reasoning_effort"),
            **{field: result.value for field, result in results.items()},
        )

    def resolve_provider(self, name: str) -> ProviderConfiguration:
        """Cached build_provider. Raises ConfigurationError on a bad required field."""
        spec = self._spec(name)
        cache_key = f"provider:{spec.name}"
        config = self.cache.get(cache_key)
        if config is None:
            config = self.build_provider(spec.name)
            self.cache.set(cache_key, config)
        return config

    async def get_provider_config(self, name: str) -> ProviderConfiguration:
        """Async variant; concurrent callers share a single build."""
        spec = self._spec(name)
        return await self.cache.get_or_compute(
            f"provider:{spec.name}", lambda: self.build_provider(spec.name)
        )

    def get_provider_config_with_overrides(
        self,
        name: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> ProviderConfiguration:
        config = self.resolve_provider(name)
        updates = {}
        if temperature is not None:
            if not (0.0 <= temperature <= 2.0):
                raise ConfigurationError(
                    f"Temperature override {temperature} is outside 0-2", code="INVALID_OVERRIDE", provider=name
                )
            updates["temperature"] = temperature
        if max_tokens is not None:
            if max_tokens <= 0:
                raise ConfigurationError(
                    f"Max tokens override {max_tokens} must be positive", code="INVALID_OVERRIDE", provider=name
                )
            updates["max_tokens"] = int(max_tokens)
        if model:
            updates["model"] = model
        return config.model_copy(update=updates) if updates else config

    def load_all_providers(self, strict: Optional[bool] = None) -> dict[str, ProviderConfiguration]:
        """
        Configuration for every supported provider.

        Non-strict mode logs a failing configured provider and records it
        as unconfigured; CONFIG_STRICT=1 re-raises instead.
        """
        if strict is None:
            strict = is_truthy(self.read("CONFIG_STRICT"))
        configs = {}
        for name, spec in PROVIDERS.items():
            try:
                configs[name] = self.resolve_provider(name)
            except ConfigurationError as e:
                if strict:
                    raise
                logger.warning("Provider %s is unusable: %s", name, e.message)
                configs[name] = ProviderConfiguration(name=name, protocol=spec.protocol, has_api_key=False)
        return configs

    # -------------------------------------------------------------------------
    # Provider selection
    # -------------------------------------------------------------------------

    def configured_providers(self) -> list[str]:
        return [name for name in SUPPORTED_PROVIDERS if self.is_provider_configured(name)]

    def get_default_provider(self) -> str:
        raw = (self.read("DEFAULT_LLM_PROVIDER") or "").strip().lower()
        if not raw:
            raise ConfigurationError(
                "DEFAULT_LLM_PROVIDER must be set",
                code="DEFAULT_PROVIDER_NOT_SET",
                env_var="DEFAULT_LLM_PROVIDER",
            )
        if get_spec(raw) is None:
            raise ConfigurationError(
                f"DEFAULT_LLM_PROVIDER '{raw}' is not a supported provider",
                code="INVALID_DEFAULT_PROVIDER",
                env_var="DEFAULT_LLM_PROVIDER",
            )
        return raw

    def get_provider_priority(self) -> list[str]:
        """
        Provider order for fallback selection.

        PROVIDER_SELECTION_PRIORITY wins when set; unknown names in it are
        a hard error. Otherwise: the default provider, then every other
        configured provider in registry order.
        """
        explicit = parse_provider_list(self.read("PROVIDER_SELECTION_PRIORITY"))
        if explicit:
            unknown = [p for p in explicit if get_spec(p) is None]
            if unknown:
                raise ConfigurationError(
                    f"Unknown providers in PROVIDER_SELECTION_PRIORITY: {', '.join(unknown)}. "
                    f"Supported: {', '.join(SUPPORTED_PROVIDERS)}",
                    code="INVALID_PROVIDERS",
                    env_var="PROVIDER_SELECTION_PRIORITY",
                )
            return explicit

        order: list[str] = []
        try:
            order.append(self.get_default_provider())
        except ConfigurationError:
            pass
        order.extend(p for p in self.configured_providers() if p not in order)
        return order

    def get_best_available_provider(self) -> Optional[str]:
        try:
            default = self.get_default_provider()
        except ConfigurationError:
            default = None
        if default and self.is_provider_configured(default):
            return default
        for name in self.get_provider_priority():
            if self.is_provider_configured(name):
                return name
        return None
