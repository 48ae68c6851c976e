"""Tests for the priority-ordered context assembler."""

import asyncio

import pytest

from second_opinion.tools.context import AnalysisTarget, assemble_targeted_context, resolve_target_path
from second_opinion.tools.read_files import FileReadResult, MultiReadResult, read_multiple_files


def _headers(content):
    return [line for line in content.splitlines() if line.startswith("### ")]


def test_target_mode_inference():
    assert AnalysisTarget.model_validate({"file": "a.py"}).mode == "full"
    assert AnalysisTarget.model_validate({"file": "a.py", "lines": 20}).mode == "head"
    assert AnalysisTarget.model_validate({"file": "a.py", "startLine": 1, "endLine": 9}).mode == "range"
    assert AnalysisTarget.model_validate({"path": "a.py", "mode": "tail", "lines": 3}).mode == "tail"


def test_target_priority_defaults_to_important():
    assert AnalysisTarget.model_validate({"file": "a.py"}).priority == "important"
    assert AnalysisTarget.model_validate({"file": "a.py", "priority": None}).priority == "important"


def test_resolve_target_path_prefers_working_directory(project):
    wd = project / "src"
    assert resolve_target_path("a.py", str(project), str(wd)) == wd / "a.py"
    assert resolve_target_path("README.md", str(project), str(wd)) == project / "README.md"
    assert resolve_target_path(str(project / "src" / "c.py"), "/elsewhere") == project / "src" / "c.py"


@pytest.mark.asyncio
async def test_sections_follow_priority_order_not_completion_order(project):
    # supplementary reads finish instantly, critical ones slowly
    delays = {"a.py": 0.0, "b.py": 0.05, "c.py": 0.02}
    calls = []

    async def slow_reader(requests):
        calls.append([r.path.rsplit("/", 1)[-1] for r in requests])
        await asyncio.sleep(max(delays[r.path.rsplit("/", 1)[-1]] for r in requests))
        return await read_multiple_files(requests)

    assembled = await assemble_targeted_context(
        [
            {"file": "src/a.py", "priority": "supplementary"},
            {"file": "src/b.py", "priority": "critical"},
            {"file": "src/c.py"},
        ],
        project_root=str(project),
        batch_reader=slow_reader,
    )

    assert _headers(assembled.content) == [
        "### src/b.py [CRITICAL]",
        "### src/c.py [IMPORTANT]",
        "### src/a.py [SUPPLEMENTARY]",
    ]
    assert calls == [["b.py"], ["c.py"], ["a.py"]]
    assert assembled.files_analyzed == 3
    assert assembled.content.startswith("## Targeted Code Analysis")


@pytest.mark.asyncio
async def test_caller_order_kept_within_a_tier(project):
    assembled = await assemble_targeted_context(
        [{"file": "src/c.py"}, {"file": "src/a.py"}, {"file": "src/b.py"}],
        project_root=str(project),
    )
    assert _headers(assembled.content) == [
        "### src/c.py [IMPORTANT]",
        "### src/a.py [IMPORTANT]",
        "### src/b.py [IMPORTANT]",
    ]


@pytest.mark.asyncio
async def test_failed_read_keeps_its_slot(project):
    assembled = await assemble_targeted_context(
        [
            {"file": "src/a.py", "priority": "critical", "lines": 1},
            {"file": "src/missing.py", "priority": "critical"},
            {"file": "src/b.py", "priority": "critical", "startLine": 2, "endLine": 2},
        ],
        project_root=str(project),
    )

    sections = assembled.sections
    assert [s.path for s in sections] == ["src/a.py", "src/missing.py", "src/b.py"]
    assert sections[0].content == "import b"
    assert sections[1].error is not None
    assert sections[2].content == "    return 1"
    assert "Failed to read section:" in assembled.content
    assert "**Mode: head (1 lines)**" in assembled.content
    assert "**Mode: lines 2-2**" in assembled.content


@pytest.mark.asyncio
async def test_invalid_target_reports_error_in_place(project):
    assembled = await assemble_targeted_context(
        [
            {"file": "src/a.py", "priority": "supplementary"},
            {"file": "src/b.py", "priority": "supplementary", "mode": "head"},
        ],
        project_root=str(project),
    )

    assert [s.path for s in assembled.sections] == ["src/a.py", "src/b.py"]
    assert assembled.sections[1].error.startswith("Invalid target:")
    assert assembled.files_analyzed == 1


@pytest.mark.asyncio
async def test_batch_failure_marks_every_section(project):
    async def broken_reader(requests):
        return MultiReadResult(success=False, error="disk on fire")

    assembled = await assemble_targeted_context(
        [{"file": "src/a.py"}, {"file": "src/b.py"}], project_root=str(project), batch_reader=broken_reader
    )
    assert all(s.error == "disk on fire" for s in assembled.sections)


@pytest.mark.asyncio
async def test_large_tier_is_read_in_batches(project):
    sizes = []

    async def counting_reader(requests):
        sizes.append(len(requests))
        return MultiReadResult(
            success=True,
            results=[FileReadResult(path=r.path, success=True, content="x") for r in requests],
        )

    await assemble_targeted_context(
        [{"file": "src/c.py"}] * 120, project_root=str(project), batch_reader=counting_reader
    )
    assert sizes == [50, 50, 20]


@pytest.mark.asyncio
async def test_no_targets_gives_empty_context(project):
    assembled = await assemble_targeted_context([], project_root=str(project))
    assert assembled.content == ""
    assert assembled.files_analyzed == 0
