"""Shared pytest fixtures for Second Opinion tests."""

import os
from unittest.mock import patch

import pytest

from second_opinion.config.cache import EnvironmentCache
from second_opinion.config.env import LayeredEnvironment, MappingSource
from second_opinion.config.resolution import ConfigResolver


# ============================================================================
# Environment Fixtures
# ============================================================================

BASE_ENV = {
    "OPENAI_API_KEY": "sk-abc123realkey",
    "OPENAI_MODEL": "gpt-4o",
    "ANTHROPIC_API_KEY": "sk-ant-api03-realkey",
    "ANTHROPIC_MODEL_DEFAULT": "claude-sonnet-4-5",
    "LLM_TEMPERATURE_DEFAULT": "0.7",
    "LLM_MAX_TOKENS_DEFAULT": "4000",
    "LLM_TIMEOUT_DEFAULT": "30000",
    "DEFAULT_LLM_PROVIDER": "openai",
    "PROVIDER_SELECTION_PRIORITY": "openai,anthropic",
}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_env():
    """Build a layered environment that never touches os.environ."""
    def _make(system=None, file=None, caller=None):
        return LayeredEnvironment(
            caller=MappingSource(caller),
            file=MappingSource(file),
            system=MappingSource(system),
        )
    return _make


@pytest.fixture
def make_resolver(make_env):
    def _make(system=None, file=None, caller=None, cache=None):
        return ConfigResolver(make_env(system, file, caller), cache or EnvironmentCache())
    return _make


@pytest.fixture
def resolver(make_resolver):
    """Resolver with openai and anthropic configured."""
    return make_resolver(dict(BASE_ENV))


@pytest.fixture
def mock_env_vars():
    """Process-level variables for tests that exercise os.environ."""
    env = {
        "SO_TEST_SHARED": "process",
        "SO_TEST_PROCESS_ONLY": "process-only",
    }
    with patch.dict(os.environ, env, clear=False):
        yield env


# ============================================================================
# File Fixtures
# ============================================================================

@pytest.fixture
def big_file(tmp_path):
    """10,000 numbered lines with a trailing newline."""
    path = tmp_path / "big.txt"
    path.write_text("".join(f"line {i} " + "x" * (i % 37) + "\n" for i in range(1, 10_001)))
    return path


@pytest.fixture
def project(tmp_path):
    """A tiny project tree."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "a.py").write_text("import b\n\ndef a():\n    return b.b()\n")
    (root / "src" / "b.py").write_text("def b():\n    return 1\n")
    (root / "src" / "c.py").write_text("C = 3\n")
    (root / "README.md").write_text("# Project\n")
    return root
