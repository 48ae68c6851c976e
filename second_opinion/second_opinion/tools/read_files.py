"""
Read Files - targeted partial reads over large files

Problem: Validation prompts only need a slice of each file (the top of a
module, the last lines of a log, lines 120-180 of a handler). Reading
whole files wastes memory and context.

Solution: Four read modes that stop as early as possible:
- full: the whole file
- head(n): forward buffered reads, stop after n lines
- tail(n): backward chunked reads from EOF, stitching lines split
  across chunk boundaries
- range(a, b): forward scan, stop once line b is reached

Every mode returns exactly what `content.split("\\n")` sliced the same
way would return, including files with no trailing newline and empty
files. Splitting happens on bytes, so a chunk boundary inside a
multi-byte character is harmless.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192
MAX_FILES_PER_BATCH = 50

ReadMode = Literal["full", "head", "tail", "range"]


class FileReadRequest(BaseModel):
    """One file and the slice of it to read."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    path: str = Field(min_length=1)
    mode: ReadMode = "full"
    lines: Optional[int] = Field(default=None, gt=0)
    start_line: Optional[int] = Field(default=None, gt=0, alias="startLine")
    end_line: Optional[int] = Field(default=None, gt=0, alias="endLine")

    @model_validator(mode="after")
    def _check_mode_parameters(self) -> "FileReadRequest":
        has_bounds = self.start_line is not None or self.end_line is not None
        match self.mode:
            case "full":
                if self.lines is not None or has_bounds:
                    raise ValueError("mode 'full' takes no lines, startLine or endLine")
            case "head" | "tail":
                if self.lines is None:
                    raise ValueError(f"mode '{self.mode}' requires lines")
                if has_bounds:
                    raise ValueError(f"mode '{self.mode}' does not accept startLine or endLine")
            case "range":
                if self.start_line is None or self.end_line is None:
                    raise ValueError("mode 'range' requires both startLine and endLine")
                if self.lines is not None:
                    raise ValueError("mode 'range' does not accept lines")
                if self.start_line > self.end_line:
                    raise ValueError("startLine must be less than or equal to endLine")
        return self

    def describe(self) -> str:
        match self.mode:
            case "head" | "tail":
                return f"{self.mode} ({self.lines} lines)"
            case "range":
                return f"lines {self.start_line}-{self.end_line}"
            case _:
                return "full"


class FileReadResult(BaseModel):
    path: str
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None


class MultiReadResult(BaseModel):
    success: bool
    results: list[FileReadResult] = Field(default_factory=list)
    error: Optional[str] = None


# =============================================================================
# Read strategies (blocking)
# =============================================================================

def _decode(lines: list[bytes]) -> str:
    return b"\n".join(lines).decode("utf-8", errors="replace")


def read_full(path: Union[str, Path]) -> str:
    return Path(path).read_bytes().decode("utf-8", errors="replace")


def read_head(path: Union[str, Path], n: int, chunk_size: int = CHUNK_SIZE) -> str:
    """First n lines, reading forward only as far as needed."""
    lines: list[bytes] = []
    buffer = b""
    with open(path, "rb") as f:
        while len(lines) < n:
            chunk = f.read(chunk_size)
            if not chunk:
                # EOF: whatever is buffered is the last (possibly empty) line
                lines.append(buffer)
                break
            buffer += chunk
            parts = buffer.split(b"\n")
            buffer = parts.pop()
            lines.extend(parts)
    return _decode(lines[:n])


def read_tail(path: Union[str, Path], n: int, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Last n lines, reading fixed-size chunks backward from EOF.

    State: `carry` is the leading fragment of the earliest chunk read so
    far (its start may lie in the previous chunk); `collected` holds
    complete lines newest first. Memory stays bounded by n lines plus one
    fragment.
    """
    collected: list[bytes] = []
    carry = b""
    with open(path, "rb") as f:
        pos = f.seek(0, 2)
        while pos > 0 and len(collected) < n:
            step = min(chunk_size, pos)
            pos -= step
            f.seek(pos)
            parts = (f.read(step) + carry).split(b"\n")
            carry = parts[0]
            for part in reversed(parts[1:]):
                collected.append(part)
                if len(collected) == n:
                    break
        if len(collected) < n:
            # reached the start of the file: the carry is line one
            collected.append(carry)
    collected.reverse()
    return _decode(collected)


def read_range(path: Union[str, Path], start: int, end: int, chunk_size: int = CHUNK_SIZE) -> str:
    """Lines start..end, 1-indexed and inclusive. Stops reading at line end."""
    collected: list[bytes] = []
    buffer = b""
    line_no = 1
    with open(path, "rb") as f:
        while line_no <= end:
            chunk = f.read(chunk_size)
            if not chunk:
                if start <= line_no <= end:
                    collected.append(buffer)
                break
            buffer += chunk
            parts = buffer.split(b"\n")
            buffer = parts.pop()
            for part in parts:
                if line_no >= start:
                    collected.append(part)
                line_no += 1
                if line_no > end:
                    break
    return _decode(collected)


def read_file_sync(request: FileReadRequest, chunk_size: int = CHUNK_SIZE) -> str:
    match request.mode:
        case "head":
            return read_head(request.path, request.lines, chunk_size)
        case "tail":
            return read_tail(request.path, request.lines, chunk_size)
        case "range":
            return read_range(request.path, request.start_line, request.end_line, chunk_size)
        case _:
            return read_full(request.path)


# =============================================================================
# Async API
# =============================================================================

def _coerce(request: Union[FileReadRequest, dict[str, Any]]) -> FileReadRequest:
    if isinstance(request, FileReadRequest):
        return request
    return FileReadRequest.model_validate(request)


def _validation_message(error: ValidationError) -> str:
    return "; ".join(e["msg"].removeprefix("Value error, ") for e in error.errors())


async def read_file(request: Union[FileReadRequest, dict[str, Any]]) -> FileReadResult:
    """
    Read one file slice. Never raises; failures land in the result.
    """
    raw_path = request.path if isinstance(request, FileReadRequest) else str(request.get("path", ""))
    try:
        req = _coerce(request)
    except ValidationError as e:
        return FileReadResult(path=raw_path, success=False, error=f"Invalid read request: {_validation_message(e)}")

    loop = asyncio.get_running_loop()
    try:
        content = await loop.run_in_executor(None, read_file_sync, req)
    except OSError as e:
        logger.debug("Read failed for %s: %s", req.path, e)
        return FileReadResult(path=req.path, success=False, error=f"{type(e).__name__}: {e.strerror or e}")
    return FileReadResult(path=req.path, success=True, content=content)


async def read_multiple_files(
    requests: list[Union[FileReadRequest, dict[str, Any]]],
) -> MultiReadResult:
    """
    Read up to 50 slices concurrently.

    The batch succeeds as a whole; each result carries its own success
    flag and results come back in request order.
    """
    if not requests:
        return MultiReadResult(success=False, error="At least one file is required")
    if len(requests) > MAX_FILES_PER_BATCH:
        return MultiReadResult(
            success=False,
            error=f"At most {MAX_FILES_PER_BATCH} files can be read at once (got {len(requests)})",
        )
    results = await asyncio.gather(*(read_file(r) for r in requests))
    return MultiReadResult(success=True, results=list(results))
