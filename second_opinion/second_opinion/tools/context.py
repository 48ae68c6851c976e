"""
Context Assembler - priority-ordered file context for prompts

Callers name the code sections that matter and rank them:
critical, important (the default) or supplementary. Each tier is read
as one concurrent batch, tiers run strictly in that order, and the
output keeps tier order then the caller's order within a tier, no
matter which read finishes first. A failed read keeps its slot and
shows the error instead of content.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from pydantic import ConfigDict, Field, ValidationError, field_validator, model_validator

from .read_files import (
    MAX_FILES_PER_BATCH,
    FileReadRequest,
    FileReadResult,
    MultiReadResult,
    read_multiple_files,
)

logger = logging.getLogger(__name__)

Priority = Literal["critical", "important", "supplementary"]
PRIORITY_ORDER: tuple[str, ...] = ("critical", "important", "supplementary")

BatchReader = Callable[[list[FileReadRequest]], Awaitable[MultiReadResult]]


class AnalysisTarget(FileReadRequest):
    """A file section plus how much it matters. Accepts `file` or `path`."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    path: str = Field(min_length=1, alias="file")
    priority: Priority = "important"

    @model_validator(mode="before")
    @classmethod
    def _infer_mode(cls, data: Any) -> Any:
        # no explicit mode: bounds mean range, a line count means head
        if isinstance(data, dict) and not data.get("mode"):
            data = dict(data)
            if data.get("startLine") is not None or data.get("start_line") is not None \
                    or data.get("endLine") is not None or data.get("end_line") is not None:
                data["mode"] = "range"
            elif data.get("lines") is not None:
                data["mode"] = "head"
            else:
                data["mode"] = "full"
        return data

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value: Any) -> Any:
        return "important" if value is None else value


@dataclass
class Section:
    """One slot in the assembled output."""
    index: int
    priority: str
    path: str
    description: str
    content: Optional[str] = None
    error: Optional[str] = None

    def render(self) -> str:
        lines = [f"### {self.path} [{self.priority.upper()}]", f"**Mode: {self.description}**"]
        if self.error is not None:
            lines.append(f"Failed to read section: {self.error}")
        else:
            lines.append("```")
            lines.append(self.content or "")
            lines.append("```")
        return "\n".join(lines) + "\n"


@dataclass
class AssembledContext:
    content: str
    files_analyzed: int
    sections: list[Section]


def resolve_target_path(path: str, project_root: str, working_directory: Optional[str] = None) -> Path:
    """Absolute paths as given; otherwise the working directory if the file is there, else the project root."""
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return candidate
    if working_directory:
        in_wd = Path(working_directory).expanduser() / candidate
        if in_wd.exists():
            return in_wd
    return Path(project_root).expanduser() / candidate


def _raw_priority(raw: Any) -> str:
    value = raw.get("priority") if isinstance(raw, dict) else getattr(raw, "priority", None)
    return value if value in PRIORITY_ORDER else "important"


async def assemble_targeted_context(
    targets: list[Union[AnalysisTarget, dict[str, Any]]],
    project_root: str,
    working_directory: Optional[str] = None,
    batch_reader: BatchReader = read_multiple_files,
) -> AssembledContext:
    """
    Read every target and render the sections in priority order.

    Tiers are awaited one after another; within a tier all reads are in
    flight together.
    """
    buckets: dict[str, list[Section]] = {p: [] for p in PRIORITY_ORDER}
    requests: dict[int, FileReadRequest] = {}

    for index, raw in enumerate(targets):
        try:
            target = raw if isinstance(raw, AnalysisTarget) else AnalysisTarget.model_validate(raw)
        except ValidationError as e:
            path = str(raw.get("file") or raw.get("path") or "<unknown>") if isinstance(raw, dict) else "<unknown>"
            message = "; ".join(err["msg"].removeprefix("Value error, ") for err in e.errors())
            buckets[_raw_priority(raw)].append(
                Section(index, _raw_priority(raw), path, "invalid", error=f"Invalid target: {message}")
            )
            continue

        resolved = resolve_target_path(target.path, project_root, working_directory)
        section = Section(index, target.priority, target.path, target.describe())
        buckets[target.priority].append(section)
        requests[index] = FileReadRequest(
            path=str(resolved),
            mode=target.mode,
            lines=target.lines,
            start_line=target.start_line,
            end_line=target.end_line,
        )

    ordered: list[Section] = []
    files: set[str] = set()
    for priority in PRIORITY_ORDER:
        bucket = buckets[priority]
        readable = [s for s in bucket if s.index in requests]
        for start in range(0, len(readable), MAX_FILES_PER_BATCH):
            batch = readable[start:start + MAX_FILES_PER_BATCH]
            outcome = await batch_reader([requests[s.index] for s in batch])
            results: list[Optional[FileReadResult]] = list(outcome.results) if outcome.success else [None] * len(batch)
            for section, result in zip(batch, results):
                files.add(requests[section.index].path)
                if result is None:
                    section.error = outcome.error or "batch read failed"
                elif result.success:
                    section.content = result.content
                else:
                    section.error = result.error
        ordered.extend(bucket)
        logger.debug("Read %d %s target(s)", len(readable), priority)

    body = "".join(s.render() + "\n" for s in ordered)
    header = "## Targeted Code Analysis\n*(Caller-specified code sections, most important first)*\n\n"
    return AssembledContext(
        content=header + body if ordered else "",
        files_analyzed=len(files),
        sections=ordered,
    )
