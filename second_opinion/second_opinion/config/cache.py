"""
EnvironmentCache - TTL cache with single-flight computation

Resolved configuration values are cached for a short time so repeated
lookups skip parsing and validation. Concurrent requests for the same
uncached key share one computation.

Expiry is lazy: an entry is dropped when a read finds it older than its
ttl. An optional background sweep bounds memory for keys nobody reads.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30.0  # seconds

Resolver = Callable[[], Union[Any, Awaitable[Any]]]

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    timestamp: float
    ttl: float

    def expired(self, now: float, ttl: Optional[float] = None) -> bool:
        effective = self.ttl if ttl is None else ttl
        return now - self.timestamp > effective


class EnvironmentCache:
    """
    Cache owned by the composition root and injected into resolvers.

    Boundary rule: an entry read exactly ttl seconds after it was stored
    is still valid; only strictly older entries expire.
    """

    def __init__(
        self,
        default_ttl: Optional[float] = DEFAULT_TTL,
        sweep_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Basic operations
    # -------------------------------------------------------------------------

    def _lookup(self, key: str, ttl: Optional[float] = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if entry.expired(self._clock(), ttl):
            del self._entries[key]
            return _MISSING
        return entry.value

    def get(self, key: str, ttl: Optional[float] = None, default: Any = None) -> Any:
        """Return the cached value, or default when absent or expired."""
        value = self._lookup(key, ttl)
        return default if value is _MISSING else value

    def has(self, key: str, ttl: Optional[float] = None) -> bool:
        return self._lookup(key, ttl) is not _MISSING

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        if ttl is None:
            ttl = self.default_ttl if self.default_ttl is not None else float("inf")
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock(), ttl=ttl)

    def delete(self, key: str) -> bool:
        self._in_flight.pop(key, None)
        return self._entries.pop(key, None) is not None

    def clear(self):
        self._entries.clear()
        self._in_flight.clear()

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """
        Drop matching entries and return how many were removed.

        "X*" matches by prefix, "*X" by suffix, anything else by
        substring. No pattern clears everything.
        """
        if not pattern:
            removed = len(self._entries)
            self.clear()
            return removed

        if pattern.endswith("*"):
            prefix = pattern[:-1]
            matches = lambda k: k.startswith(prefix)
        elif pattern.startswith("*"):
            suffix = pattern[1:]
            matches = lambda k: k.endswith(suffix)
        else:
            matches = lambda k: pattern in k

        doomed = [k for k in self._entries if matches(k)]
        for key in doomed:
            self.delete(key)
        for key in [k for k in self._in_flight if matches(k)]:
            self._in_flight.pop(key, None)
        return len(doomed)

    # -------------------------------------------------------------------------
    # Single-flight
    # -------------------------------------------------------------------------

    async def get_or_compute(self, key: str, resolver: Resolver, ttl: Optional[float] = None) -> Any:
        """
        Return the cached value or compute it exactly once.

        Checking the cache, checking the in-flight map and registering the
        new task all happen before the first await, so no second caller
        can slip in between.
        """
        value = self._lookup(key, ttl)
        if value is not _MISSING:
            return value

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(key, resolver, ttl))
            self._in_flight[key] = task

        # shield: one cancelled waiter must not cancel the shared computation
        return await asyncio.shield(task)

    async def _compute(self, key: str, resolver: Resolver, ttl: Optional[float]) -> Any:
        me = asyncio.current_task()
        try:
            value = resolver()
            if inspect.isawaitable(value):
                value = await value
            # dropped from _in_flight while computing means invalidated: do not store
            if self._in_flight.get(key) is me:
                self.set(key, value, ttl)
            return value
        finally:
            if self._in_flight.get(key) is me:
                del self._in_flight[key]

    # -------------------------------------------------------------------------
    # Sweeping
    # -------------------------------------------------------------------------

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        doomed = [k for k, e in self._entries.items() if e.expired(now)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Swept %d expired cache entries", len(doomed))
        return len(doomed)

    def start_sweeper(self, interval: Optional[float] = None) -> Optional[asyncio.Task]:
        """Start periodic sweeping on the running loop."""
        interval = interval or self.sweep_interval
        if not interval or self._sweeper is not None:
            return self._sweeper

        async def _run():
            while True:
                await asyncio.sleep(interval)
                self.sweep()

        self._sweeper = asyncio.get_running_loop().create_task(_run())
        return self._sweeper

    def stop_sweeper(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None

    def reset(self):
        """Clear everything and stop sweeping. Used between tests."""
        self.stop_sweeper()
        self.clear()

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "in_flight": len(self._in_flight),
            "sweeping": self._sweeper is not None,
        }
