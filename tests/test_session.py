"""Tests for SessionStore persistence and PerformanceMonitor."""

import asyncio
import json

import pytest

from second_opinion.tools.performance import PerformanceMonitor
from second_opinion.tools.session import SessionStore, ValidationAttempt


@pytest.mark.asyncio
async def test_sessions_survive_restart(tmp_path):
    store = SessionStore(storage_dir=str(tmp_path))
    session = await store.create_session({"problem": "flaky login", "custom": "kept"})
    await store.append_attempt(session.id, ValidationAttempt(tool="impact_analysis", confidence=90))

    reloaded = SessionStore(storage_dir=str(tmp_path))
    restored = await reloaded.get_session(session.id)

    assert restored is not None
    assert restored.context.problem == "flaky login"
    assert restored.context.model_dump()["custom"] == "kept"
    assert [a.tool for a in restored.validation_history] == ["impact_analysis"]
    assert not (tmp_path / "sessions.json.tmp").exists()


@pytest.mark.asyncio
async def test_corrupted_file_is_moved_aside(tmp_path):
    (tmp_path / "sessions.json").write_text("{not json")

    store = SessionStore(storage_dir=str(tmp_path))

    assert await store.list_session_ids() == []
    assert (tmp_path / "sessions.json.corrupted").exists()
    assert "corrupted" in store.get_health()["load_error"]


@pytest.mark.asyncio
async def test_history_is_capped():
    store = SessionStore(storage_dir=None, max_history=3)
    for i in range(5):
        await store.append_attempt("s1", ValidationAttempt(tool=f"t{i}"))

    session = await store.get_session("s1")
    assert [a.tool for a in session.validation_history] == ["t2", "t3", "t4"]


@pytest.mark.asyncio
async def test_concurrent_appends_are_all_recorded(tmp_path):
    store = SessionStore(storage_dir=str(tmp_path))
    await asyncio.gather(*(store.append_attempt("s", ValidationAttempt(tool=str(i))) for i in range(20)))

    data = json.loads((tmp_path / "sessions.json").read_text())
    assert len(data["sessions"]["s"]["validation_history"]) == 20


@pytest.mark.asyncio
async def test_get_or_create_and_update_context():
    store = SessionStore(storage_dir=None)
    created = await store.get_or_create("abc", {"component": "auth"})
    same = await store.get_or_create("abc", {"component": "ignored"})
    updated = await store.update_context("abc", {"environment": "prod"})

    assert created is same
    assert updated.context.component == "auth"
    assert updated.context.environment == "prod"
    assert await store.update_context("missing", {}) is None


@pytest.mark.asyncio
async def test_delete_is_not_supported():
    store = SessionStore(storage_dir=None)
    session = await store.create_session()
    assert await store.delete_session(session.id) is False
    assert await store.get_session(session.id) is not None
    assert store.get_health()["storage"] == "memory"


def test_performance_summary():
    monitor = PerformanceMonitor(max_records=10, slow_threshold_ms=100)
    monitor.record("impact_analysis", "openai", 50, True)
    monitor.record("impact_analysis", "anthropic", 150, False, "timeout")
    monitor.record("dependency_mapper", "openai", 10, True)

    summary = monitor.summary()

    assert summary["total"] == 3
    assert summary["by_operation"]["impact_analysis"] == {"count": 2, "failures": 1, "avg_ms": 100, "max_ms": 150}
    assert summary["by_provider"]["openai"]["count"] == 2
    assert summary["success_rate"] == round(2 / 3, 3)


def test_empty_performance_summary():
    assert PerformanceMonitor().summary()["success_rate"] is None
