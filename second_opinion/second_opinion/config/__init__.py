"""Configuration - layered env lookup, provider resolution and validation."""

from .cache import EnvironmentCache
from .env import DotenvSource, LayeredEnvironment, MappingSource, ProcessEnvSource, build_environment
from .providers import PROVIDERS, SUPPORTED_PROVIDERS, PlaceholderPolicy
from .resolution import ConfigResolver, ProviderConfiguration
from .settings import ToolCallingConfig, load_app_config, load_tool_calling_config
from .validation import ConfigurationValidator, ValidationResult, format_validation_results

__all__ = [
    "EnvironmentCache",
    "DotenvSource",
    "LayeredEnvironment",
    "MappingSource",
    "ProcessEnvSource",
    "build_environment",
    "PROVIDERS",
    "SUPPORTED_PROVIDERS",
    "PlaceholderPolicy",
    "ConfigResolver",
    "ProviderConfiguration",
    "ToolCallingConfig",
    "load_app_config",
    "load_tool_calling_config",
    "ConfigurationValidator",
    "ValidationResult",
    "format_validation_results",
]
