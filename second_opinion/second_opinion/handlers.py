"""
Second Opinion Handlers - Request processing logic

Each handler:
1. Validates inputs (asking for clarification instead of failing)
2. Delegates work to the orchestrator or a tool class
3. Returns a ToolResponse rendered as text

Handlers never raise to the transport. Categorized failures come back
as status "failed" with the category and a troubleshooting hint.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Type

from mcp.types import TextContent
from pydantic import BaseModel, ValidationError

from .config.resolution import ConfigResolver
from .config.settings import AppConfig, ToolCallingConfig, load_tool_calling_config
from .config.validation import ConfigurationValidator, format_validation_results
from .errors import SecondOpinionError, as_categorized
from .llm import LLMClient
from .schema import (
    AssumptionCheckRequest,
    DependencyMapRequest,
    ImpactAnalysisRequest,
    OptimizationRequest,
    ThinkingValidationRequest,
    ToolResponse,
    WorkLog,
)
from .tools import PerformanceMonitor, SessionStore, ThinkingValidator, ToolCallingService
from .tools.read_files import FileReadRequest, FileReadResult

logger = logging.getLogger(__name__)


def _text(response: ToolResponse) -> list[TextContent]:
    return [TextContent(type="text", text=response.to_formatted_string())]


def _describe_validation_error(error: ValidationError) -> list[str]:
    problems = []
    for e in error.errors():
        where = ".".join(str(p) for p in e["loc"]) or "request"
        if e["type"] == "missing":
            problems.append(f"{where} is required")
        else:
            problems.append(f"{where}: {e['msg']}")
    return problems


class Handlers:
    """
    Central handler class for all Second Opinion tool calls.

    Built once at startup from the validated environment.
    """

    def __init__(
        self,
        resolver: ConfigResolver,
        tool_config: Optional[ToolCallingConfig] = None,
        app_config: Optional[AppConfig] = None,
        llm: Optional[LLMClient] = None,
        sessions: Optional[SessionStore] = None,
    ):
        self.resolver = resolver
        self.app_config = app_config
        self.tool_config = tool_config or load_tool_calling_config(resolver)
        self.llm = llm or LLMClient()
        if sessions is None:
            settings = app_config.sessions if app_config else None
            sessions = SessionStore(
                storage_dir=settings.store_dir if settings else "~/.second_opinion",
                max_history=settings.max_history if settings else 100,
            )
        self.sessions = sessions
        self.tool_service = ToolCallingService(self.tool_config)
        self.monitor = PerformanceMonitor()
        self.validator = ThinkingValidator(
            resolver=resolver,
            llm=self.llm,
            sessions=self.sessions,
            tool_service=self.tool_service,
            tool_config=self.tool_config,
            monitor=self.monitor,
        )

    async def close(self):
        """Close all resources to prevent leaks."""
        await self.llm.aclose()
        self.resolver.cache.reset()

    def _needs_clarification(self, reasoning: str, questions: list[str]) -> list[TextContent]:
        """Return a standard clarification response."""
        return _text(ToolResponse(
            status="needs_clarification",
            confidence="high",
            reasoning=reasoning,
            questions=questions,
        ))

    def _failed(self, error: SecondOpinionError, tried: str) -> list[TextContent]:
        return _text(ToolResponse(
            status="failed",
            confidence="high",
            reasoning=error.message,
            data=error.to_dict(),
            work_log=WorkLog(what_i_tried=[tried], what_failed=[error.category.value]),
            suggestions=[error.troubleshooting],
        ))

    # -------------------------------------------------------------------------
    # Review operations
    # -------------------------------------------------------------------------

    async def _operation(
        self,
        tool: str,
        model: Type[BaseModel],
        arguments: dict[str, Any],
        run: Callable[[Any], Awaitable[dict]],
    ) -> list[TextContent]:
        try:
            request = model.model_validate(arguments)
        except ValidationError as e:
            problems = _describe_validation_error(e)
            return self._needs_clarification(
                f"Invalid {tool} request: {len(problems)} problem(s)",
                problems,
            )

        try:
            result = await run(request)
        except SecondOpinionError as e:
            return self._failed(e, tool)
        except Exception as e:
            logger.exception("%s failed unexpectedly", tool)
            return self._failed(as_categorized(e), tool)

        meta = result.get("metadata", {})
        warnings = []
        if meta.get("fileAnalysisPerformed") and not meta.get("filesAnalyzed"):
            warnings.append("File analysis ran but no files could be read")
        return _text(ToolResponse(
            status="success",
            confidence="medium",
            reasoning=f"{tool} answered by {meta.get('providerUsed')} "
                      f"({meta.get('filesAnalyzed', 0)} file(s) analyzed)",
            data=result,
            warnings=warnings,
            work_log=WorkLog(
                what_i_tried=[tool],
                what_worked=meta.get("toolsUsed", []),
                files_examined=meta.get("filesAnalyzed", 0),
            ),
        ))

    async def thinking_validation(self, arguments: dict) -> list[TextContent]:
        return await self._operation(
            "thinking_validation", ThinkingValidationRequest, arguments, self.validator.validate_thinking
        )

    async def impact_analysis(self, arguments: dict) -> list[TextContent]:
        return await self._operation(
            "impact_analysis", ImpactAnalysisRequest, arguments, self.validator.analyze_impact
        )

    async def assumption_checker(self, arguments: dict) -> list[TextContent]:
        return await self._operation(
            "assumption_checker", AssumptionCheckRequest, arguments, self.validator.check_assumptions
        )

    async def dependency_mapper(self, arguments: dict) -> list[TextContent]:
        return await self._operation(
            "dependency_mapper", DependencyMapRequest, arguments, self.validator.map_dependencies
        )

    async def thinking_optimizer(self, arguments: dict) -> list[TextContent]:
        return await self._operation(
            "thinking_optimizer", OptimizationRequest, arguments, self.validator.optimize_thinking
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def health_check(self) -> list[TextContent]:
        """Check configuration and runtime health."""
        validation = ConfigurationValidator(self.resolver).validate_system()
        configured = self.resolver.configured_providers()
        try:
            best = self.resolver.get_best_available_provider()
        except SecondOpinionError as e:
            best = None
            logger.warning("Provider selection failed during health check: %s", e.message)

        healthy = validation.is_valid and best is not None
        return _text(ToolResponse(
            status="success" if healthy else "partial",
            confidence="high",
            reasoning=format_validation_results(validation),
            data={
                "configured_providers": configured,
                "active_provider": best,
                "sessions": self.sessions.get_health(),
                "llm": self.llm.get_stats(),
                "performance": self.monitor.summary(),
                "cache": self.resolver.cache.stats(),
            },
            suggestions=[] if healthy else ["Fix the configuration errors above and restart the server"],
        ))

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def session_management(
        self,
        action: str,
        session_id: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> list[TextContent]:
        match action:
            case "create":
                session = await self.sessions.create_session(context or {}, session_id=session_id)
                return _text(ToolResponse(
                    reasoning=f"Created session {session.id}",
                    data=session.model_dump(mode="json"),
                ))

            case "get" | "update" | "delete" if not session_id:
                return self._needs_clarification(f"No session id provided for '{action}'", ["Which session?"])

            case "get":
                session = await self.sessions.get_session(session_id)
                if session is None:
                    return _text(ToolResponse(status="failed", reasoning=f"Session {session_id} not found"))
                return _text(ToolResponse(
                    reasoning=f"Session {session_id}: {len(session.validation_history)} attempt(s)",
                    data=session.model_dump(mode="json"),
                ))

            case "update":
                session = await self.sessions.update_context(session_id, context or {})
                if session is None:
                    return _text(ToolResponse(status="failed", reasoning=f"Session {session_id} not found"))
                return _text(ToolResponse(
                    reasoning=f"Updated session {session_id}",
                    data=session.context.model_dump(mode="json"),
                ))

            case "list":
                ids = await self.sessions.list_session_ids()
                return _text(ToolResponse(reasoning=f"{len(ids)} session(s)", data={"sessions": ids}))

            case "delete":
                await self.sessions.delete_session(session_id)
                return _text(ToolResponse(
                    status="partial",
                    reasoning="Sessions are kept for history; nothing was deleted",
                ))

            case _:
                return self._needs_clarification(
                    f"Unknown action: {action!r}",
                    ["Use one of: create, get, update, list, delete"],
                )

    # -------------------------------------------------------------------------
    # File-system helpers
    # -------------------------------------------------------------------------

    async def read_files(self, files: list[dict]) -> list[TextContent]:
        if not files:
            return self._needs_clarification("No files provided", ["Which files should I read?"])

        slots: list[Optional[FileReadResult]] = []
        requests: list[FileReadRequest] = []
        for raw in files:
            try:
                requests.append(FileReadRequest.model_validate(raw))
                slots.append(None)
            except ValidationError as e:
                slots.append(FileReadResult(
                    path=str(raw.get("path", "")) if isinstance(raw, dict) else "",
                    success=False,
                    error="; ".join(_describe_validation_error(e)),
                ))

        outcome = await self.tool_service.read_many_files(requests) if requests else None
        if outcome is not None and not outcome.success:
            return _text(ToolResponse(status="failed", reasoning=outcome.error or "Read failed"))

        read = iter(outcome.results if outcome else [])
        results = [slot if slot is not None else next(read) for slot in slots]
        failed = [r for r in results if not r.success]
        return _text(ToolResponse(
            status="success" if not failed else "partial",
            confidence="high",
            reasoning=f"Read {len(results) - len(failed)} of {len(results)} file(s)",
            data={"success": True, "results": [r.model_dump(exclude_none=True) for r in results]},
            work_log=WorkLog(files_examined=len(results), what_failed=[r.path for r in failed]),
        ))

    async def list_files(self, path: str, recursive: bool = False) -> list[TextContent]:
        if not path:
            return self._needs_clarification("No path provided", ["Which directory should I list?"])
        result = await self.tool_service.list_files(path, recursive=recursive)
        return self._tool_result(result, f"Listed {path}")

    async def grep(self, pattern: str, path: str, recursive: bool = True, case_sensitive: bool = False) -> list[TextContent]:
        if not pattern or not path:
            return self._needs_clarification("Pattern and path are required", ["What should I search for, and where?"])
        result = await self.tool_service.grep(pattern, path, recursive=recursive, case_sensitive=case_sensitive)
        return self._tool_result(result, f"Searched {path} for /{pattern}/")

    async def execute_command(self, command: str, cwd: Optional[str] = None) -> list[TextContent]:
        if not command:
            return self._needs_clarification("No command provided", ["Which command should I run?"])
        result = await self.tool_service.execute_command(command, cwd=cwd)
        return self._tool_result(result, f"Ran: {command}")

    async def write_to_file(self, path: str, content: Optional[str]) -> list[TextContent]:
        if not path or content is None:
            return self._needs_clarification("Path and content are required", ["Which file, with what content?"])
        result = await self.tool_service.write_file(path, content)
        return self._tool_result(result, f"Wrote {path}")

    async def replace_in_file(self, path: str, search: str, replace: Optional[str]) -> list[TextContent]:
        if not path or not search or replace is None:
            return self._needs_clarification(
                "Path, search and replace are required", ["Which file, and what should be replaced with what?"]
            )
        result = await self.tool_service.replace_in_file(path, search, replace)
        return self._tool_result(result, f"Edited {path}")

    def _tool_result(self, result: dict, done: str) -> list[TextContent]:
        if not result.get("success"):
            return _text(ToolResponse(
                status="failed",
                confidence="high",
                reasoning=result.get("error") or f"{done} (failed)",
                data=result,
            ))
        return _text(ToolResponse(status="success", confidence="high", reasoning=done, data=result))
