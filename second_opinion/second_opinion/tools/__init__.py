"""Second Opinion Tools - file reading, context assembly, sessions and the review orchestrator."""

from .context import AnalysisTarget, assemble_targeted_context
from .performance import PerformanceMonitor
from .read_files import FileReadRequest, read_file, read_multiple_files
from .session import SessionStore
from .tool_service import ToolCallingService
from .validator import ThinkingValidator

__all__ = [
    "AnalysisTarget",
    "assemble_targeted_context",
    "PerformanceMonitor",
    "FileReadRequest",
    "read_file",
    "read_multiple_files",
    "SessionStore",
    "ToolCallingService",
    "ThinkingValidator",
]
