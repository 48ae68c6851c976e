"""
Second Opinion Tool Definitions

Input schemas for every MCP tool. The five review tools share the
project context block; analysis targets pick the exact file sections
worth reading.
"""

from mcp.types import Tool


ANALYSIS_TARGET = {
    "type": "object",
    "properties": {
        "file": {"type": "string", "description": "Path, absolute or relative to projectRoot"},
        "mode": {"type": "string", "enum": ["full", "head", "tail", "range"]},
        "lines": {"type": "integer", "minimum": 1, "description": "Line count for head/tail"},
        "startLine": {"type": "integer", "minimum": 1},
        "endLine": {"type": "integer", "minimum": 1},
        "priority": {"type": "string", "enum": ["critical", "important", "supplementary"]},
    },
    "required": ["file"],
}

PROJECT_CONTEXT = {
    "type": "object",
    "description": "Where the code lives and which sections to read",
    "properties": {
        "projectRoot": {"type": "string"},
        "workingDirectory": {"type": "string"},
        "analysisTargets": {"type": "array", "items": ANALYSIS_TARGET},
        "filesToAnalyze": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Fallback when no targets: first 100 lines of each",
        },
    },
    "required": ["projectRoot"],
}

COMMON_PROPERTIES = {
    "sessionId": {"type": "string", "description": "Continue an existing session"},
    "provider": {"type": "string", "description": "Force a specific configured provider"},
    "model": {"type": "string", "description": "Use this model id instead of the configured one"},
    "temperature": {"type": "number", "minimum": 0, "maximum": 2},
    "maxTokens": {"type": "integer", "minimum": 1},
    "projectContext": PROJECT_CONTEXT,
    "projectBackground": {"type": "string", "description": "What the project is and does"},
}

COMMON_REQUIRED = ["projectContext", "projectBackground"]

CHANGE = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "code": {"type": "string"},
        "files": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["description"],
}


def _operation_schema(properties: dict, required: list[str]) -> dict:
    return {
        "type": "object",
        "properties": {**COMMON_PROPERTIES, **properties},
        "required": COMMON_REQUIRED + required,
    }


TOOL_DEFINITIONS = [
    # =========================================================================
    # REVIEW TOOLS
    # =========================================================================

    Tool(
        name="thinking_validation",
        description="Validate reasoning and a proposed change BEFORE implementing it. "
                    "Returns confidence, go-ahead, critical issues, test cases.",
        inputSchema=_operation_schema(
            {
                "thinking": {"type": "string", "description": "Your reasoning so far"},
                "proposedChange": CHANGE,
                "context": {
                    "type": "object",
                    "properties": {
                        "problem": {"type": "string"},
                        "techStack": {"type": "string"},
                        "constraints": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["problem", "techStack"],
                },
                "urgency": {"type": "string", "enum": ["low", "medium", "high"]},
            },
            ["thinking", "proposedChange", "context"],
        ),
    ),

    Tool(
        name="impact_analysis",
        description="Predict what a change affects, including cascading risks. Returns risk level and quick tests.",
        inputSchema=_operation_schema(
            {
                "change": CHANGE,
                "systemContext": {
                    "type": "object",
                    "properties": {
                        "architecture": {"type": "string"},
                        "keyDependencies": {"type": "array", "items": {"type": "string"}},
                    },
                },
            },
            ["change"],
        ),
    ),

    Tool(
        name="assumption_checker",
        description="Check which assumptions hold and which are risky, with quick verifications.",
        inputSchema=_operation_schema(
            {
                "assumptions": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                "context": {
                    "type": "object",
                    "properties": {
                        "component": {"type": "string"},
                        "environment": {
                            "type": "string",
                            "enum": ["production", "development", "staging", "testing"],
                        },
                    },
                    "required": ["component"],
                },
            },
            ["assumptions", "context"],
        ),
    ),

    Tool(
        name="dependency_mapper",
        description="Map critical and secondary dependencies of a change and where to focus tests.",
        inputSchema=_operation_schema(
            {
                "change": {
                    "type": "object",
                    "properties": {
                        "description": {"type": "string"},
                        "files": {"type": "array", "items": {"type": "string"}},
                        "components": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["description"],
                },
            },
            ["change"],
        ),
    ),

    Tool(
        name="thinking_optimizer",
        description="Recommend a strategy and time split for a task given its type, complexity and deadline.",
        inputSchema=_operation_schema(
            {
                "problemType": {"type": "string", "enum": ["bug_fix", "feature_impl", "refactor"]},
                "complexity": {"type": "string", "enum": ["simple", "moderate", "complex"]},
                "timeConstraint": {"type": "string", "enum": ["tight", "moderate", "flexible"]},
                "currentApproach": {"type": "string"},
            },
            ["problemType", "complexity", "timeConstraint", "currentApproach"],
        ),
    ),

    # =========================================================================
    # STATUS AND SESSIONS
    # =========================================================================

    Tool(
        name="health_check",
        description="Report configured providers, the active default, configuration validation and session stats.",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),

    Tool(
        name="session_management",
        description="Sessions group related reviews. Actions: create, get, update, list, delete (no-op).",
        inputSchema={
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["create", "get", "update", "list", "delete"]},
                "sessionId": {"type": "string"},
                "context": {"type": "object", "description": "Task metadata (problem, techStack, ...)"},
            },
            "required": ["action"],
        },
    ),

    # =========================================================================
    # FILE-SYSTEM HELPERS
    # =========================================================================

    Tool(
        name="read_files",
        description="Read up to 50 files or file sections at once (full, head, tail or line range).",
        inputSchema={
            "type": "object",
            "properties": {
                "files": {
                    "type": "array",
                    "minItems": 1,
                    "maxItems": 50,
                    "items": {
                        "type": "object",
                        "properties": {
                            "path": {"type": "string"},
                            "mode": {"type": "string", "enum": ["full", "head", "tail", "range"]},
                            "lines": {"type": "integer", "minimum": 1},
                            "startLine": {"type": "integer", "minimum": 1},
                            "endLine": {"type": "integer", "minimum": 1},
                        },
                        "required": ["path"],
                    },
                },
            },
            "required": ["files"],
        },
    ),

    Tool(
        name="list_files",
        description="List a directory, optionally recursively (skips vendored and build dirs).",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "recursive": {"type": "boolean"},
            },
            "required": ["path"],
        },
    ),

    Tool(
        name="grep",
        description="Regex search across allowed text files.",
        inputSchema={
            "type": "object",
            "properties": {
                "pattern": {"type": "string"},
                "path": {"type": "string"},
                "recursive": {"type": "boolean"},
                "caseSensitive": {"type": "boolean"},
            },
            "required": ["pattern", "path"],
        },
    ),

    Tool(
        name="execute_command",
        description="Run a whitelisted read-only shell command (git status, ls, ...). Bounded by a time limit.",
        inputSchema={
            "type": "object",
            "properties": {
                "command": {"type": "string"},
                "cwd": {"type": "string"},
            },
            "required": ["command"],
        },
    ),

    Tool(
        name="write_to_file",
        description="Create or overwrite a file with an allowed extension. Disabled unless TOOL_CALLING_WRITE_TO_FILE_ENABLED is set.",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "content": {"type": "string"},
            },
            "required": ["path", "content"],
        },
    ),

    Tool(
        name="replace_in_file",
        description="Replace every occurrence of a text snippet in a file. Disabled unless TOOL_CALLING_REPLACE_IN_FILE_ENABLED is set.",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "search": {"type": "string"},
                "replace": {"type": "string"},
            },
            "required": ["path", "search", "replace"],
        },
    ),
]
