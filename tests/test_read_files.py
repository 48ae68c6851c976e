"""Tests for targeted file reads."""

import pytest

from second_opinion.tools.read_files import (
    FileReadRequest,
    read_file,
    read_file_sync,
    read_head,
    read_multiple_files,
    read_range,
    read_tail,
)


def _split(path):
    return path.read_bytes().decode("utf-8").split("\n")


# =============================================================================
# Strategies match a naive split
# =============================================================================

def test_head_of_large_file(big_file):
    assert read_head(big_file, 50) == "\n".join(_split(big_file)[:50])


def test_tail_of_large_file(big_file):
    assert read_tail(big_file, 50) == "\n".join(_split(big_file)[-50:])


def test_range_of_large_file(big_file):
    content = read_range(big_file, 100, 150)
    lines = content.split("\n")
    assert len(lines) == 51
    assert lines[0].startswith("line 100 ")
    assert lines[-1].startswith("line 150 ")
    assert content == "\n".join(_split(big_file)[99:150])


@pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 64])
@pytest.mark.parametrize(
    "text",
    [
        "",
        "\n",
        "single line",
        "single line\n",
        "a\nb\nc",
        "a\nb\nc\n",
        "\n\n\nx\n\n",
        "héllo\nwörld ✓\n日本語\nend",
    ],
    ids=["empty", "newline", "no-eol", "eol", "three", "three-eol", "blank-lines", "multibyte"],
)
def test_strategies_agree_with_split_at_any_chunk_size(tmp_path, text, chunk_size):
    path = tmp_path / "f.txt"
    path.write_bytes(text.encode("utf-8"))
    lines = text.split("\n")

    for n in (1, 2, 5, 100):
        assert read_head(path, n, chunk_size) == "\n".join(lines[:n])
        assert read_tail(path, n, chunk_size) == "\n".join(lines[-n:])
    for start, end in ((1, 1), (1, 3), (2, 4), (3, 100), (50, 60)):
        assert read_range(path, start, end, chunk_size) == "\n".join(lines[start - 1:end])


def test_tail_larger_than_file_returns_everything(tmp_path):
    path = tmp_path / "short.txt"
    path.write_text("one\ntwo\nthree")
    assert read_tail(path, 1000, chunk_size=4) == "one\ntwo\nthree"


def test_read_file_sync_dispatches_on_mode(big_file):
    request = FileReadRequest(path=str(big_file), mode="range", startLine=10, endLine=12)
    assert read_file_sync(request).split("\n")[0].startswith("line 10 ")


# =============================================================================
# Request validation
# =============================================================================

@pytest.mark.parametrize(
    "params",
    [
        {"mode": "head"},
        {"mode": "tail", "lines": 0},
        {"mode": "head", "lines": 5, "startLine": 1},
        {"mode": "range", "startLine": 5},
        {"mode": "range", "startLine": 10, "endLine": 5},
        {"mode": "range", "startLine": 1, "endLine": 5, "lines": 2},
        {"mode": "full", "lines": 10},
        {"mode": "middle"},
        {"mode": "full", "offset": 3},
    ],
)
def test_invalid_requests_are_rejected(params):
    with pytest.raises(ValueError):
        FileReadRequest(path="x.py", **params)


def test_describe():
    assert FileReadRequest(path="a", mode="tail", lines=5).describe() == "tail (5 lines)"
    assert FileReadRequest(path="a", mode="range", start_line=3, end_line=9).describe() == "lines 3-9"
    assert FileReadRequest(path="a").describe() == "full"


# =============================================================================
# Async API
# =============================================================================

@pytest.mark.asyncio
async def test_read_file_success(big_file):
    result = await read_file({"path": str(big_file), "mode": "head", "lines": 2})
    assert result.success is True
    assert result.content.split("\n")[1].startswith("line 2 ")


@pytest.mark.asyncio
async def test_read_file_missing_is_a_result_not_an_exception(tmp_path):
    result = await read_file({"path": str(tmp_path / "missing.py"), "mode": "full"})
    assert result.success is False
    assert "FileNotFoundError" in result.error


@pytest.mark.asyncio
async def test_read_file_invalid_parameters_is_a_result(tmp_path):
    result = await read_file({"path": str(tmp_path / "x.py"), "mode": "head"})
    assert result.success is False
    assert result.error.startswith("Invalid read request:")
    assert "requires lines" in result.error


@pytest.mark.asyncio
async def test_read_multiple_files_isolates_failures(project):
    result = await read_multiple_files([
        {"path": str(project / "src" / "a.py"), "mode": "head", "lines": 1},
        {"path": str(project / "nope.py"), "mode": "full"},
        {"path": str(project / "src" / "b.py"), "mode": "tail", "lines": 2},
    ])

    assert result.success is True
    assert [r.success for r in result.results] == [True, False, True]
    assert result.results[0].content == "import b"
    assert result.results[2].content == "    return 1\n"


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [0, 51])
async def test_read_multiple_files_batch_limits(project, count):
    requests = [{"path": str(project / "src" / "c.py")}] * count
    result = await read_multiple_files(requests)
    assert result.success is False
    assert result.results == []


@pytest.mark.asyncio
async def test_full_read_of_empty_file_succeeds(tmp_path):
    empty = tmp_path / "empty.py"
    empty.write_bytes(b"")

    result = await read_file({"path": str(empty)})

    assert result.success is True
    assert result.content == ""
