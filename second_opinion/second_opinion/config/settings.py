"""
Application and tool-calling settings.

Everything here is read once at startup through the ConfigResolver so
it honors the same caller > .env > process precedence as providers.
"""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ConfigurationError
from ..log import parse_level
from .resolution import ConfigResolver, ProviderConfiguration, is_truthy, parse_positive_int

logger = logging.getLogger(__name__)


class SessionSettings(BaseModel):
    store_dir: str = "~/.second_opinion"
    max_history: int = 100


class LoggingSettings(BaseModel):
    enabled: bool = True
    level: int = logging.INFO
    path: Optional[str] = None


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    providers: list[ProviderConfiguration]
    default_provider: str
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _positive_int(resolver: ConfigResolver, key: str, default: int) -> int:
    raw = resolver.read(key)
    if raw is None or not raw.strip():
        return default
    value = parse_positive_int(raw.strip())
    if value is None:
        logger.warning("%s=%r is not a positive integer, using %d", key, raw, default)
        return default
    return value


def _flag(resolver: ConfigResolver, key: str, default: bool) -> bool:
    raw = resolver.read(key)
    if raw is None or not raw.strip():
        return default
    return is_truthy(raw)


def load_logging_settings(resolver: ConfigResolver) -> LoggingSettings:
    return LoggingSettings(
        enabled=_flag(resolver, "LOG_ENABLED", True),
        level=parse_level(resolver.read("LOG_LEVEL")),
        path=(resolver.read("LOG_PATH") or "").strip() or None,
    )


def load_app_config(resolver: ConfigResolver) -> AppConfig:
    """
    Build the startup configuration.

    Raises ConfigurationError when no provider is usable or the default
    provider is not one of the usable ones.
    """
    configs = resolver.load_all_providers()
    providers = [c for c in configs.values() if c.has_api_key]
    if not providers:
        raise ConfigurationError(
            "No LLM providers are configured. Set at least one provider API key.",
            code="NO_PROVIDERS_CONFIGURED",
            env_var="OPENAI_API_KEY, ANTHROPIC_API_KEY or another provider key",
        )

    default = resolver.get_default_provider()
    if default not in {c.name for c in providers}:
        raise ConfigurationError(
            f"Default provider '{default}' is not configured with a valid API key",
            code="DEFAULT_PROVIDER_NOT_CONFIGURED",
            provider=default,
            env_var=f"{default.upper()}_API_KEY",
        )

    return AppConfig(
        providers=providers,
        default_provider=default,
        sessions=SessionSettings(
            store_dir=(resolver.read("SESSION_STORE_DIR") or "").strip() or "~/.second_opinion",
            max_history=_positive_int(resolver, "SESSION_MAX_HISTORY", 100),
        ),
        logging=load_logging_settings(resolver),
    )


# =============================================================================
# Tool calling
# =============================================================================

DEFAULT_ALLOWED_EXTENSIONS = (
    ".py", ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs", ".json", ".md", ".txt",
    ".yml", ".yaml", ".toml", ".ini", ".cfg", ".env", ".html", ".css", ".scss",
    ".java", ".kt", ".go", ".rs", ".c", ".h", ".cpp", ".hpp", ".cs", ".rb",
    ".php", ".swift", ".sql", ".sh", ".xml", ".vue", ".svelte", ".graphql",
)

DEFAULT_ALLOWED_COMMANDS = (
    "echo", "pwd", "ls", "cat", "head", "tail", "wc", "grep", "find",
    "git status", "git log", "git diff", "git show", "git --version",
    "node --version", "npm --version", "python --version", "python3 --version",
)

OPERATION_TIMEOUT_VARS = {
    "thinking_validation": "TOOL_TIMEOUT_THINKING_VALIDATION_MS",
    "impact_analysis": "TOOL_TIMEOUT_IMPACT_ANALYSIS_MS",
    "assumption_checker": "TOOL_TIMEOUT_ASSUMPTION_CHECKER_MS",
    "dependency_mapper": "TOOL_TIMEOUT_DEPENDENCY_MAPPER_MS",
    "thinking_optimizer": "TOOL_TIMEOUT_THINKING_OPTIMIZER_MS",
}

DEFAULT_OPERATION_TIMEOUT_MS = 300_000


class ToolCallingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    read_file: bool = True
    grep: bool = True
    list_files: bool = True
    execute_command: bool = True
    write_to_file: bool = False
    replace_in_file: bool = False
    max_file_size_kb: int = 1024
    max_execution_time_sec: int = 300
    allowed_file_extensions: tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS
    allowed_commands: tuple[str, ...] = DEFAULT_ALLOWED_COMMANDS
    operation_timeouts_ms: dict[str, int] = Field(
        default_factory=lambda: {op: DEFAULT_OPERATION_TIMEOUT_MS for op in OPERATION_TIMEOUT_VARS}
    )

    def operation_timeout(self, operation: str) -> float:
        """Operation timeout in seconds."""
        return self.operation_timeouts_ms.get(operation, DEFAULT_OPERATION_TIMEOUT_MS) / 1000


def _csv(resolver: ConfigResolver, key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = resolver.read(key)
    if raw is None or not raw.strip():
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def load_tool_calling_config(resolver: ConfigResolver) -> ToolCallingConfig:
    extensions = tuple(
        e.lower() if e.startswith(".") else f".{e.lower()}"
        for e in _csv(resolver, "TOOL_CALLING_ALLOWED_FILE_EXTENSIONS", DEFAULT_ALLOWED_EXTENSIONS)
    )
    return ToolCallingConfig(
        read_file=_flag(resolver, "TOOL_CALLING_READ_FILE_ENABLED", True),
        grep=_flag(resolver, "TOOL_CALLING_GREP_ENABLED", True),
        list_files=_flag(resolver, "TOOL_CALLING_LIST_FILES_ENABLED", True),
        execute_command=_flag(resolver, "TOOL_CALLING_EXECUTE_COMMAND_ENABLED", True),
        write_to_file=_flag(resolver, "TOOL_CALLING_WRITE_TO_FILE_ENABLED", False),
        replace_in_file=_flag(resolver, "TOOL_CALLING_REPLACE_IN_FILE_ENABLED", False),
        max_file_size_kb=_positive_int(resolver, "TOOL_CALLING_MAX_FILE_SIZE_KB", 1024),
        max_execution_time_sec=_positive_int(resolver, "TOOL_CALLING_MAX_EXECUTION_TIME_SEC", 300),
        allowed_file_extensions=extensions,
        allowed_commands=_csv(resolver, "TOOL_CALLING_ALLOWED_COMMANDS", DEFAULT_ALLOWED_COMMANDS),
        operation_timeouts_ms={
            op: _positive_int(resolver, var, DEFAULT_OPERATION_TIMEOUT_MS)
            for op, var in OPERATION_TIMEOUT_VARS.items()
        },
    )


def validate_tool_calling_config(config: ToolCallingConfig) -> list[str]:
    """Warnings for settings an operator should look at twice."""
    warnings = []
    if config.write_to_file:
        warnings.append("write_to_file is enabled: the model can create and overwrite files")
    if config.replace_in_file:
        warnings.append("replace_in_file is enabled: the model can modify existing files")
    if config.execute_command:
        if not config.allowed_commands:
            warnings.append("execute_command is enabled with an empty command allowlist")
        if config.max_execution_time_sec > 600:
            warnings.append(
                f"execute_command time limit is {config.max_execution_time_sec}s; consider 600s or less"
            )
    if config.max_file_size_kb > 10 * 1024:
        warnings.append(f"max file size is {config.max_file_size_kb}KB; large reads bloat prompts")
    return warnings
