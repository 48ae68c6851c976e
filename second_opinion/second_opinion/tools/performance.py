"""Per-operation timing, aggregated by operation and by provider."""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

SLOW_OPERATION_MS = 60_000


@dataclass
class OperationMetric:
    operation: str
    provider: Optional[str]
    duration_ms: int
    success: bool
    error_category: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class PerformanceMonitor:
    def __init__(self, max_records: int = 1000, slow_threshold_ms: int = SLOW_OPERATION_MS):
        self.slow_threshold_ms = slow_threshold_ms
        self._records: deque[OperationMetric] = deque(maxlen=max_records)

    def record(
        self,
        operation: str,
        provider: Optional[str],
        duration_ms: int,
        success: bool,
        error_category: Optional[str] = None,
    ) -> OperationMetric:
        metric = OperationMetric(operation, provider, duration_ms, success, error_category)
        self._records.append(metric)
        if duration_ms > self.slow_threshold_ms:
            logger.warning("Slow operation: %s on %s took %.1fs", operation, provider, duration_ms / 1000)
        return metric

    @staticmethod
    def _aggregate(metrics: list[OperationMetric]) -> dict:
        durations = [m.duration_ms for m in metrics]
        failures = sum(1 for m in metrics if not m.success)
        return {
            "count": len(metrics),
            "failures": failures,
            "avg_ms": int(sum(durations) / len(durations)) if durations else 0,
            "max_ms": max(durations, default=0),
        }

    def summary(self) -> dict:
        records = list(self._records)
        by_operation: dict[str, list[OperationMetric]] = {}
        by_provider: dict[str, list[OperationMetric]] = {}
        for m in records:
            by_operation.setdefault(m.operation, []).append(m)
            by_provider.setdefault(m.provider or "none", []).append(m)
        return {
            "total": len(records),
            "success_rate": round(sum(m.success for m in records) / len(records), 3) if records else None,
            "by_operation": {k: self._aggregate(v) for k, v in by_operation.items()},
            "by_provider": {k: self._aggregate(v) for k, v in by_provider.items()},
        }
