"""
Provider registry and API key checks.

The set of providers is fixed at build time. Each descriptor tells the
resolver which env var holds the key and tells the backend which wire
protocol to speak.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    api_key_var: str
    protocol: str  # "openai", "anthropic", "google"
    base_url: str
    supports_reasoning: bool = False

    @property
    def prefix(self) -> str:
        return self.name.upper()


PROVIDERS: dict[str, ProviderSpec] = {
    spec.name: spec
    for spec in (
        ProviderSpec("openai", "OPENAI_API_KEY", "openai", "https://api.openai.com/v1", supports_reasoning=True),
        ProviderSpec("anthropic", "ANTHROPIC_API_KEY", "anthropic", "https://api.anthropic.com"),
        ProviderSpec("google", "GOOGLE_API_KEY", "google", "https://generativelanguage.googleapis.com"),
        ProviderSpec("groq", "GROQ_API_KEY", "openai", "https://api.groq.com/openai/v1"),
        ProviderSpec("xai", "XAI_API_KEY", "openai", "https://api.x.ai/v1"),
        ProviderSpec("openrouter", "OPENROUTER_API_KEY", "openai", "https://openrouter.ai/api/v1"),
        ProviderSpec("mistral", "MISTRAL_API_KEY", "openai", "https://api.mistral.ai/v1"),
        ProviderSpec("perplexity", "PERPLEXITY_API_KEY", "openai", "https://api.perplexity.ai"),
        ProviderSpec("qwen", "QWEN_API_KEY", "openai", "https://dashscope-intl.aliyuncs.com/compatible-mode/v1"),
        ProviderSpec("ollama", "OLLAMA_API_KEY", "openai", "http://localhost:11434/v1"),
    )
}

SUPPORTED_PROVIDERS: tuple[str, ...] = tuple(PROVIDERS)

VERBOSITY_LEVELS = ("low", "medium", "high")
REASONING_EFFORTS = ("minimal", "low", "medium", "high")


def get_spec(name: str) -> Optional[ProviderSpec]:
    return PROVIDERS.get(name.strip().lower()) if name else None


def is_supported(name: str) -> bool:
    return get_spec(name) is not None


def is_reasoning_model(model: Optional[str]) -> bool:
    return bool(model) and model.lower().startswith("gpt-5")


# =============================================================================
# Placeholder detection
# =============================================================================

DEFAULT_PLACEHOLDER_PATTERNS = (
    r"^sk-ant-your-",
    r"^your[-_].*[-_]key[-_]here$",
    r"^your[-_].*[-_]here$",
    r"your_",
    r"_here",
    r"placeholder",
    r"^dummy",
    r"^test.*key",
    r"^example",
    r"^api[_-]?key",
    r"^replace[_-]?me",
    r"^changeme$",
    r"^x{6,}$",
)

TEST_MODE_PLACEHOLDER_PATTERNS = (r"your_", r"_here", r"placeholder")


class PlaceholderPolicy:
    """
    Decides whether an API key value is a template leftover.

    The pattern list is open: pass extra regexes, or set
    API_KEY_PLACEHOLDER_PATTERNS. Test mode narrows the check to the
    obvious template markers so fixtures like "test-key-123" still count.
    """

    def __init__(
        self,
        extra_patterns: Iterable[str] = (),
        test_mode: bool = False,
        base_patterns: Iterable[str] = DEFAULT_PLACEHOLDER_PATTERNS,
    ):
        self.test_mode = test_mode
        source = TEST_MODE_PLACEHOLDER_PATTERNS if test_mode else tuple(base_patterns)
        self.patterns = [re.compile(p, re.IGNORECASE) for p in (*source, *extra_patterns)]

    def is_placeholder(self, key: str) -> bool:
        return any(p.search(key) for p in self.patterns)

    def is_valid_key(self, key: Optional[str]) -> bool:
        if key is None:
            return False
        key = key.strip()
        return bool(key) and not self.is_placeholder(key)
