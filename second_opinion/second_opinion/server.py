"""
Second Opinion MCP Server

The main entry point that exposes the review tools to MCP clients.

This file is intentionally kept as a thin routing layer.
All handler logic is in handlers.py.

Startup is fail-fast: the configuration is validated before serving and
every error and warning is printed (to stderr, stdout belongs to the
transport) before exiting, so an operator can fix everything in one pass.
"""

import asyncio
import sys
from typing import Mapping, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config.cache import EnvironmentCache
from .config.env import build_environment
from .config.resolution import ConfigResolver, parse_positive_int
from .config.settings import load_app_config, load_logging_settings, load_tool_calling_config, validate_tool_calling_config
from .config.validation import ConfigurationValidator, format_validation_results
from .errors import ConfigurationError
from .handlers import Handlers
from .log import setup_logging
from .tool_definitions import TOOL_DEFINITIONS

# Built by startup() once the configuration has been validated
handlers: Optional[Handlers] = None

# Create MCP server
server = Server("second-opinion")


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available Second Opinion tools."""
    return TOOL_DEFINITIONS


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """
    Route tool calls to the appropriate handler.

    This is a thin routing layer - all logic is in handlers.py.
    """
    if handlers is None:
        return [TextContent(type="text", text="Server is not initialized")]
    arguments = arguments or {}

    match name:
        # =====================================================================
        # REVIEW TOOLS
        # =====================================================================

        case "thinking_validation":
            return await handlers.thinking_validation(arguments)

        case "impact_analysis":
            return await handlers.impact_analysis(arguments)

        case "assumption_checker":
            return await handlers.assumption_checker(arguments)

        case "dependency_mapper":
            return await handlers.dependency_mapper(arguments)

        case "thinking_optimizer":
            return await handlers.thinking_optimizer(arguments)

        # =====================================================================
        # STATUS AND SESSIONS
        # =====================================================================

        case "health_check":
            return await handlers.health_check()

        case "session_management":
            return await handlers.session_management(
                action=arguments.get("action", ""),
                session_id=arguments.get("sessionId"),
                context=arguments.get("context"),
            )

        # =====================================================================
        # FILE-SYSTEM HELPERS
        # =====================================================================

        case "read_files":
            return await handlers.read_files(files=arguments.get("files", []))

        case "list_files":
            return await handlers.list_files(
                path=arguments.get("path", ""),
                recursive=arguments.get("recursive", False),
            )

        case "grep":
            return await handlers.grep(
                pattern=arguments.get("pattern", ""),
                path=arguments.get("path", ""),
                recursive=arguments.get("recursive", True),
                case_sensitive=arguments.get("caseSensitive", False),
            )

        case "execute_command":
            return await handlers.execute_command(
                command=arguments.get("command", ""),
                cwd=arguments.get("cwd"),
            )

        case "write_to_file":
            return await handlers.write_to_file(
                path=arguments.get("path", ""),
                content=arguments.get("content"),
            )

        case "replace_in_file":
            return await handlers.replace_in_file(
                path=arguments.get("path", ""),
                search=arguments.get("search", ""),
                replace=arguments.get("replace"),
            )

        case _:
            return [TextContent(type="text", text=f"Unknown tool: {name}")]


def startup(caller_env: Optional[Mapping[str, Optional[str]]] = None, env_file: Optional[str] = None) -> Handlers:
    """
    Load and validate configuration, then build the handlers.

    Raises SystemExit(1) after reporting every problem when the
    configuration is unusable.
    """
    env = build_environment(caller_env, env_file)
    sweep_ms = parse_positive_int((env.get("CONFIG_CACHE_SWEEP_MS") or "").strip() or "0")
    resolver = ConfigResolver(env, EnvironmentCache(sweep_interval=sweep_ms / 1000 if sweep_ms else None))

    log_settings = load_logging_settings(resolver)
    logger = setup_logging(log_settings.level, log_settings.enabled, log_settings.path)

    validation = ConfigurationValidator(resolver).validate_system()
    print(format_validation_results(validation), file=sys.stderr)
    if not validation.is_valid:
        print("\nRefusing to start until the errors above are fixed.", file=sys.stderr)
        raise SystemExit(1)

    try:
        app_config = load_app_config(resolver)
    except ConfigurationError as e:
        print(f"❌ {e.message}\n   {e.troubleshooting}", file=sys.stderr)
        raise SystemExit(1)

    tool_config = load_tool_calling_config(resolver)
    for warning in validate_tool_calling_config(tool_config):
        logger.warning("Tool calling: %s", warning)

    logger.info(
        "Providers: %s (default: %s)",
        ", ".join(p.name for p in app_config.providers),
        app_config.default_provider,
    )
    return Handlers(resolver, tool_config=tool_config, app_config=app_config)


def main():
    """Main entry point."""
    global handlers
    handlers = startup()

    async def run():
        handlers.resolver.cache.start_sweeper()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await server.run(read_stream, write_stream, server.create_initialization_options())
        finally:
            # Clean up resources on shutdown
            await handlers.close()

    asyncio.run(run())


if __name__ == "__main__":
    main()
