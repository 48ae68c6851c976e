"""
Tool Service - gated file-system helpers

The orchestrator (and MCP callers) can read, list, grep, run a few
whitelisted commands and, when explicitly enabled, write files. Every
operation passes through is_allowed() first. A refused operation is a
terminal, reported failure and is never retried.
"""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

from ..config.settings import ToolCallingConfig
from .read_files import FileReadRequest, FileReadResult, MultiReadResult, read_file, read_multiple_files

logger = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 1024 * 1024
MAX_GREP_MATCHES = 200
MAX_LISTING = 500

SKIP_DIRS = {
    "node_modules", ".git", "__pycache__", ".venv", "venv", "dist", "build",
    ".next", ".nuxt", "target", "coverage", ".pytest_cache", ".mypy_cache", ".tox",
}


def _extension(path: str) -> str:
    name = Path(path).name
    return f".{name.rsplit('.', 1)[-1].lower()}" if "." in name else ""


class ToolCallingService:
    """File-system helpers behind the tool-calling allowlists."""

    def __init__(self, config: Optional[ToolCallingConfig] = None):
        self.config = config or ToolCallingConfig()

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    def check(self, operation: str, params: dict[str, Any]) -> Optional[str]:
        """Return the refusal reason, or None when allowed."""
        cfg = self.config
        enabled = {
            "read_file": cfg.read_file,
            "list_files": cfg.list_files,
            "grep": cfg.grep,
            "execute_command": cfg.execute_command,
            "write_to_file": cfg.write_to_file,
            "replace_in_file": cfg.replace_in_file,
        }
        if not enabled.get(operation, False):
            return f"Tool '{operation}' is disabled"

        if operation in ("read_file", "write_to_file", "replace_in_file"):
            ext = _extension(params.get("path", ""))
            if ext not in cfg.allowed_file_extensions:
                return f"File extension '{ext or '(none)'}' is not allowed"

        if operation == "execute_command":
            command = (params.get("command") or "").strip()
            if not self._command_allowed(command):
                return f"Command not allowed: {command.split(' ')[0] if command else '(empty)'}"

        return None

    def is_allowed(self, operation: str, params: dict[str, Any]) -> bool:
        return self.check(operation, params) is None

    def _command_allowed(self, command: str) -> bool:
        if not command or re.search(r"[;&|`$<>]", command):
            return False
        return any(
            command == allowed or command.startswith(allowed + " ")
            for allowed in self.config.allowed_commands
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _enforce_size(self, result: FileReadResult) -> FileReadResult:
        limit = self.config.max_file_size_kb * 1024
        if result.success and result.content is not None and len(result.content.encode("utf-8")) > limit:
            return FileReadResult(
                path=result.path,
                success=False,
                error=f"Content exceeds the {self.config.max_file_size_kb}KB limit; use head, tail or range",
            )
        return result

    async def read_file(self, request: FileReadRequest) -> FileReadResult:
        reason = self.check("read_file", {"path": request.path})
        if reason:
            return FileReadResult(path=request.path, success=False, error=reason)
        return self._enforce_size(await read_file(request))

    async def read_many_files(self, requests: list[FileReadRequest]) -> MultiReadResult:
        """
        Batch read with per-file gating. Refused files keep their slot.
        """
        if not self.config.read_file:
            return MultiReadResult(success=False, error="Tool 'read_file' is disabled")

        refused = {i: self.check("read_file", {"path": r.path}) for i, r in enumerate(requests)}
        allowed = [r for i, r in enumerate(requests) if not refused[i]]
        outcome = await read_multiple_files(allowed) if allowed else MultiReadResult(success=True)
        if not outcome.success:
            return outcome

        read_results = iter(outcome.results)
        merged = []
        for i, request in enumerate(requests):
            if refused[i]:
                merged.append(FileReadResult(path=request.path, success=False, error=refused[i]))
            else:
                merged.append(self._enforce_size(next(read_results)))
        return MultiReadResult(success=True, results=merged)

    async def list_files(self, path: str, recursive: bool = False, limit: int = MAX_LISTING) -> dict:
        reason = self.check("list_files", {"path": path})
        if reason:
            return {"success": False, "error": reason}

        root = Path(path).expanduser()
        if not root.is_dir():
            return {"success": False, "error": f"Not a directory: {path}"}

        def _walk() -> list[str]:
            found = []
            if recursive:
                for dirpath, dirnames, filenames in os.walk(root):
                    dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
                    for name in sorted(filenames):
                        found.append(str(Path(dirpath, name).relative_to(root)))
                        if len(found) >= limit:
                            return found
            else:
                for entry in sorted(root.iterdir()):
                    found.append(entry.name + ("/" if entry.is_dir() else ""))
                    if len(found) >= limit:
                        break
            return found

        loop = asyncio.get_running_loop()
        files = await loop.run_in_executor(None, _walk)
        return {"success": True, "files": files, "truncated": len(files) >= limit}

    async def grep(
        self,
        pattern: str,
        path: str,
        recursive: bool = True,
        case_sensitive: bool = False,
    ) -> dict:
        reason = self.check("grep", {"path": path, "pattern": pattern})
        if reason:
            return {"success": False, "error": reason}
        try:
            regex = re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
        except re.error as e:
            return {"success": False, "error": f"Invalid pattern: {e}"}

        root = Path(path).expanduser()
        allowed = set(self.config.allowed_file_extensions)
        size_limit = self.config.max_file_size_kb * 1024

        def _candidates():
            if root.is_file():
                yield root
                return
            walker = os.walk(root) if recursive else [(str(root), [], [p.name for p in root.iterdir() if p.is_file()])]
            for dirpath, dirnames, filenames in walker:
                dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
                for name in filenames:
                    if _extension(name) in allowed:
                        yield Path(dirpath, name)

        def _search() -> list[dict]:
            matches = []
            for file in _candidates():
                try:
                    if file.stat().st_size > size_limit:
                        continue
                    with open(file, encoding="utf-8", errors="replace") as f:
                        for line_no, line in enumerate(f, 1):
                            if regex.search(line):
                                matches.append({"file": str(file), "line": line_no, "text": line.rstrip("\n")[:300]})
                                if len(matches) >= MAX_GREP_MATCHES:
                                    return matches
                except OSError as e:
                    logger.debug("grep skipped %s: %s", file, e)
            return matches

        if not root.exists():
            return {"success": False, "error": f"Path not found: {path}"}
        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(None, _search)
        return {"success": True, "matches": matches, "truncated": len(matches) >= MAX_GREP_MATCHES}

    # -------------------------------------------------------------------------
    # Command execution
    # -------------------------------------------------------------------------

    async def execute_command(self, command: str, cwd: Optional[str] = None) -> dict:
        reason = self.check("execute_command", {"command": command})
        if reason:
            return {"success": False, "error": reason}

        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.config.max_execution_time_sec
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return {
                "success": False,
                "error": f"Command timed out after {self.config.max_execution_time_sec}s",
            }

        return {
            "success": proc.returncode == 0,
            "exit_code": proc.returncode,
            "stdout": stdout[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace"),
            "stderr": stderr[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace"),
            "truncated": len(stdout) > MAX_OUTPUT_BYTES or len(stderr) > MAX_OUTPUT_BYTES,
        }

    # -------------------------------------------------------------------------
    # Writes (off unless enabled)
    # -------------------------------------------------------------------------

    async def write_file(self, path: str, content: str) -> dict:
        reason = self.check("write_to_file", {"path": path})
        if reason:
            return {"success": False, "error": reason}

        def _write():
            target = Path(path).expanduser()
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write)
        return {"success": True, "path": path, "bytes": len(content.encode("utf-8"))}

    async def replace_in_file(self, path: str, search: str, replace: str) -> dict:
        reason = self.check("replace_in_file", {"path": path})
        if reason:
            return {"success": False, "error": reason}

        def _replace() -> int:
            target = Path(path).expanduser()
            text = target.read_text(encoding="utf-8")
            count = text.count(search)
            if count:
                target.write_text(text.replace(search, replace), encoding="utf-8")
            return count

        loop = asyncio.get_running_loop()
        try:
            count = await loop.run_in_executor(None, _replace)
        except OSError as e:
            return {"success": False, "error": str(e)}
        if not count:
            return {"success": False, "error": "Search text not found"}
        return {"success": True, "path": path, "replacements": count}
