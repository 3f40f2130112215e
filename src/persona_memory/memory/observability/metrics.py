# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Operation metrics for the memory core.

Every MemoryManager operation runs inside ``track()``, which counts its
outcome and times it. Domain events such as tier moves and new edges are
counted with ``count()`` and broken down by label. ``get_stats()`` feeds
the ``operations`` section of the health report.
"""

import time
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional

# Metric name prefix for all memory metrics
METRIC_PREFIX: str = "persona_memory"


@dataclass
class Timing:
    """Running latency aggregate for one operation, in milliseconds."""

    calls: int = 0
    total: float = 0.0
    fastest: Optional[float] = None
    slowest: float = 0.0

    def add(self, elapsed_ms: float) -> None:
        self.calls += 1
        self.total += elapsed_ms
        self.fastest = elapsed_ms if self.fastest is None else min(self.fastest, elapsed_ms)
        self.slowest = max(self.slowest, elapsed_ms)

    def to_dict(self) -> dict[str, float]:
        return {
            "count": self.calls,
            "avg_ms": self.total / self.calls if self.calls else 0.0,
            "min_ms": self.fastest if self.fastest is not None else 0.0,
            "max_ms": self.slowest,
        }


class MemoryMetrics:
    """In-process counters and timings for memory operations.

    Example:
        >>> metrics = MemoryMetrics()
        >>> with metrics.track("create_memory"):
        ...     ...
        >>> metrics.get_stats()["counters"]["create_memory_success"]
        1
    """

    def __init__(self) -> None:
        self._counters: Counter[str] = Counter()
        self._timings: dict[str, Timing] = defaultdict(Timing)
        self._breakdowns: dict[str, Counter[str]] = defaultdict(Counter)

    def record_operation(self, operation: str, success: bool = True, latency_ms: Optional[float] = None) -> None:
        """Count one outcome of ``operation`` as ``<operation>_success`` or ``<operation>_error``."""
        outcome = "success" if success else "error"
        self._counters.update((f"{operation}_total", f"{operation}_{outcome}"))
        if latency_ms is not None:
            self._timings[operation].add(latency_ms)

    def count(self, name: str, labels: Optional[Mapping[str, str]] = None, amount: int = 1) -> None:
        """Add to a named counter and to one breakdown per label.

        ``count("tier_transitions", {"to_tier": "cold"})`` bumps
        ``tier_transitions`` and the ``cold`` bucket of
        ``tier_transitions_to_tier``.
        """
        self._counters[name] += amount
        for key, value in (labels or {}).items():
            self._breakdowns[f"{name}_{key}"][value] += amount

    @contextmanager
    def track(self, operation: str) -> Iterator[None]:
        """Time a block and record its outcome; exceptions propagate."""
        start = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            self.record_operation(operation, success=success, latency_ms=(time.perf_counter() - start) * 1000)

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of counters, per-operation latency and label breakdowns."""
        return {
            "prefix": METRIC_PREFIX,
            "counters": dict(self._counters),
            "latencies": {operation: timing.to_dict() for operation, timing in self._timings.items()},
            "labels": {name: dict(buckets) for name, buckets in self._breakdowns.items()},
        }
