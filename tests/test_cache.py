"""Tests for EnvironmentCache: TTL, invalidation and single-flight."""

import asyncio

import pytest

from second_opinion.config.cache import EnvironmentCache


def test_value_returned_before_ttl_and_absent_after(clock):
    cache = EnvironmentCache(default_ttl=10, clock=clock)
    cache.set("k", "v")

    clock.advance(9.999)
    assert cache.get("k") == "v"

    clock.advance(0.002)
    assert cache.get("k") is None
    assert cache.stats()["size"] == 0


def test_boundary_at_exact_ttl_is_still_valid(clock):
    cache = EnvironmentCache(default_ttl=10, clock=clock)
    cache.set("k", "v")
    clock.advance(10)
    assert cache.get("k") == "v"


def test_call_site_ttl_overrides_stored_ttl(clock):
    cache = EnvironmentCache(default_ttl=100, clock=clock)
    cache.set("k", "v")
    clock.advance(5)
    assert cache.get("k", ttl=10) == "v"
    assert cache.get("k", ttl=1) is None


def test_per_entry_ttl(clock):
    cache = EnvironmentCache(default_ttl=100, clock=clock)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2)
    clock.advance(2)
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_no_default_ttl_never_expires(clock):
    cache = EnvironmentCache(default_ttl=None, clock=clock)
    cache.set("k", "v")
    clock.advance(10**9)
    assert cache.get("k") == "v"


def test_cached_none_is_distinguishable_from_missing(clock):
    cache = EnvironmentCache(clock=clock)
    cache.set("k", None)
    missing = object()
    assert cache.get("k", default=missing) is None
    assert cache.get("other", default=missing) is missing
    assert cache.has("k")


@pytest.mark.parametrize(
    "pattern,expected_left",
    [
        ("env:OPENAI*", {"env:ANTHROPIC_MODEL", "provider:openai"}),
        ("*_MODEL", {"env:OPENAI_API_KEY", "provider:openai"}),
        ("OPENAI", {"env:ANTHROPIC_MODEL", "provider:openai"}),
        ("openai", {"env:OPENAI_API_KEY", "env:OPENAI_MODEL", "env:ANTHROPIC_MODEL"}),
        (None, set()),
    ],
)
def test_invalidate_patterns(pattern, expected_left):
    cache = EnvironmentCache()
    for key in ("env:OPENAI_API_KEY", "env:OPENAI_MODEL", "env:ANTHROPIC_MODEL", "provider:openai"):
        cache.set(key, 1)

    cache.invalidate(pattern)

    assert {k for k in ("env:OPENAI_API_KEY", "env:OPENAI_MODEL", "env:ANTHROPIC_MODEL", "provider:openai")
            if cache.has(k)} == expected_left


def test_sweep_removes_only_expired(clock):
    cache = EnvironmentCache(default_ttl=10, clock=clock)
    cache.set("old", 1, ttl=1)
    cache.set("new", 2)
    clock.advance(5)

    assert cache.sweep() == 1
    assert cache.stats()["size"] == 1


@pytest.mark.asyncio
async def test_get_or_compute_runs_resolver_once_for_concurrent_callers():
    cache = EnvironmentCache()
    calls = 0

    async def resolver():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return {"value": 42}

    results = await asyncio.gather(*(cache.get_or_compute("k", resolver) for _ in range(25)))

    assert calls == 1
    assert all(r is results[0] for r in results)
    assert cache.stats()["in_flight"] == 0


@pytest.mark.asyncio
async def test_get_or_compute_uses_cache_after_first_result():
    cache = EnvironmentCache()
    calls = []

    def resolver():
        calls.append(1)
        return "sync-value"

    assert await cache.get_or_compute("k", resolver) == "sync-value"
    assert await cache.get_or_compute("k", resolver) == "sync-value"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_get_or_compute_failure_clears_in_flight_and_allows_retry():
    cache = EnvironmentCache()
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        await asyncio.sleep(0)
        if attempts == 1:
            raise RuntimeError("boom")
        return "ok"

    results = await asyncio.gather(
        cache.get_or_compute("k", flaky), cache.get_or_compute("k", flaky), return_exceptions=True
    )
    assert all(isinstance(r, RuntimeError) for r in results)
    assert cache.stats()["in_flight"] == 0
    assert not cache.has("k")

    assert await cache.get_or_compute("k", flaky) == "ok"
    assert attempts == 2


@pytest.mark.asyncio
async def test_clear_during_computation_does_not_store_stale_value():
    cache = EnvironmentCache()
    gate = asyncio.Event()

    async def slow():
        await gate.wait()
        return "stale"

    task = asyncio.ensure_future(cache.get_or_compute("k", slow))
    await asyncio.sleep(0)
    cache.clear()
    gate.set()

    assert await task == "stale"
    assert not cache.has("k")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "drop",
    [
        lambda cache: cache.delete("provider:openai"),
        lambda cache: cache.invalidate("provider:*"),
        lambda cache: cache.invalidate("openai"),
    ],
    ids=["delete", "prefix", "substring"],
)
async def test_invalidate_during_computation_does_not_store_stale_value(drop):
    cache = EnvironmentCache()
    gate = asyncio.Event()

    async def slow():
        await gate.wait()
        return "stale"

    task = asyncio.ensure_future(cache.get_or_compute("provider:openai", slow))
    await asyncio.sleep(0)
    drop(cache)
    gate.set()

    assert await task == "stale"
    assert not cache.has("provider:openai")
    assert cache.stats()["in_flight"] == 0


@pytest.mark.asyncio
async def test_recompute_after_invalidate_stores_fresh_value():
    cache = EnvironmentCache()
    old_gate, new_gate = asyncio.Event(), asyncio.Event()

    async def old():
        await old_gate.wait()
        return "stale"

    async def new():
        await new_gate.wait()
        return "fresh"

    first = asyncio.ensure_future(cache.get_or_compute("k", old))
    await asyncio.sleep(0)
    cache.invalidate("k")
    second = asyncio.ensure_future(cache.get_or_compute("k", new))
    await asyncio.sleep(0)

    old_gate.set()
    assert await first == "stale"
    assert not cache.has("k")

    new_gate.set()
    assert await second == "fresh"
    assert cache.get("k") == "fresh"


@pytest.mark.asyncio
async def test_sweeper_runs_periodically(clock):
    cache = EnvironmentCache(default_ttl=1, sweep_interval=0.01, clock=clock)
    cache.set("k", 1)
    clock.advance(5)

    cache.start_sweeper()
    await asyncio.sleep(0.05)

    assert cache.stats()["size"] == 0
    cache.reset()
    assert cache.stats()["sweeping"] is False
